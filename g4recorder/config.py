"""
Recorder configuration.

Three sources, in this order of precedence:
  1. environment variables (a .env file is loaded first via python-dotenv)
  2. the project manifest (manifest.json, as used by the G4 editor tooling)
  3. BASE_MANIFEST below

Environment variables:
  G4_MANIFEST          path to manifest.json or to a project directory
  G4_RECORDERS         path to a JSON list of recorder endpoints
  G4_OUT_DIR           where workflow.json / buffers.json are written
  G4_LOG_LEVEL         DEBUG, INFO, ...
  G4_LOG_FILE          optional rotating log file
  G4_LOG_MAX_SIZE      e.g. 10MB
  G4_RECORD_SECONDS    default recording length for `record`
"""

from __future__ import annotations

import json
import os
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from g4recorder.logger import get_logger
from g4recorder.models import ConnectionOptions

logger = get_logger(__name__)

BASE_MANIFEST: Dict[str, Any] = {
    "g4Server": {
        "schema": "http",
        "host": "localhost",
        "port": "9944",
    },
    "authentication": {
        "password": None,
        "token": "",
        "username": None,
    },
    "driverParameters": {
        "driver": "ChromeDriver",
        "driverBinaries": "http://localhost:4444/wd/hub",
    },
    "settings": {
        "automationSettings": {
            "loadTimeout": 60000,
            "maxParallel": 1,
            "returnFlatResponse": True,
            "returnStructuredResponse": True,
            "searchTimeout": 15000,
        },
        "environmentsSettings": {
            "defaultEnvironment": "SystemParameters",
            "environmentVariables": None,
            "returnEnvironment": False,
        },
        "exceptionsSettings": {
            "returnExceptions": True,
        },
    },
}


@dataclass
class RecorderConfig:
    manifest_path: Optional[Path] = None
    connections_path: Optional[Path] = None
    out_dir: Path = Path("./recordings")
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    log_max_size: str = "10MB"
    seconds: int = 300

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "RecorderConfig":
        if env_file is not None:
            load_dotenv(env_file)
        else:
            load_dotenv()

        def _path(name: str) -> Optional[Path]:
            value = os.getenv(name)
            return Path(value) if value else None

        return cls(
            manifest_path=_path("G4_MANIFEST"),
            connections_path=_path("G4_RECORDERS"),
            out_dir=Path(os.getenv("G4_OUT_DIR", "./recordings")),
            log_level=os.getenv("G4_LOG_LEVEL", "INFO"),
            log_file=_path("G4_LOG_FILE"),
            log_max_size=os.getenv("G4_LOG_MAX_SIZE", "10MB"),
            seconds=int(os.getenv("G4_RECORD_SECONDS", "300")),
        )


def _manifest_file(path: Path) -> Path:
    if path.is_file():
        return path
    # A project directory keeps its manifest under src/ unless it *is* src/.
    if path.name == "src":
        return path / "manifest.json"
    return path / "src" / "manifest.json"


def load_manifest(path: Optional[Path] = None, use_default: bool = True) -> Optional[Dict[str, Any]]:
    """
    Read the project manifest. Missing or unparsable manifests fall back to a
    copy of BASE_MANIFEST (or None when use_default is False).
    """
    candidate = _manifest_file(Path(path)) if path else _manifest_file(Path.cwd())
    try:
        data = json.loads(candidate.read_text(encoding="utf-8"))
        if isinstance(data, dict):
            return data
        logger.warning("Manifest %s is not a JSON object; ignoring it", candidate)
    except FileNotFoundError:
        logger.debug("No manifest at %s", candidate)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Could not read manifest %s: %s", candidate, e)
    return deepcopy(BASE_MANIFEST) if use_default else None


def g4_endpoint(manifest: Optional[Dict[str, Any]]) -> str:
    """'<schema>://<host>:<port>' of the manifest's G4 server, or ''."""
    server = (manifest or {}).get("g4Server")
    if not server:
        return ""
    return f"{server.get('schema', 'http')}://{server.get('host', 'localhost')}:{server.get('port', '9944')}"


def load_connection_options(
    path: Optional[Path],
    manifest: Dict[str, Any],
) -> List[ConnectionOptions]:
    """
    Recorder endpoints come from, in order: the JSON file at `path`, the
    manifest's "recorders" list, or a single endpoint at the G4 server.
    Entries that fail validation are skipped with an error.
    """
    entries: List[Any]
    if path is not None and Path(path).exists():
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        entries = raw if isinstance(raw, list) else raw.get("recorders", [])
    elif manifest.get("recorders"):
        entries = list(manifest["recorders"])
    else:
        endpoint = g4_endpoint(manifest)
        entries = [{"url": endpoint}] if endpoint else []

    options: List[ConnectionOptions] = []
    for entry in entries:
        if isinstance(entry, str):
            entry = {"url": entry}
        try:
            options.append(ConnectionOptions.model_validate(entry))
        except ValidationError as e:
            logger.error("Skipping invalid recorder endpoint %r: %s", entry, e)
    return options
