from __future__ import annotations
import datetime as dt
import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from g4recorder.models import ConnectionOptions, RawEvent
from g4recorder.normalizer import encode_event

def iso_now() -> str:
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")

def write_json(path: Path, obj: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, indent=2, ensure_ascii=False), encoding="utf-8")

def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))

# buffers.json: {"savedAt": ..., "connections": {url: {"options": {...}, "events": [...]}}}

def dump_buffers(
    buffers: Mapping[str, Sequence[RawEvent]],
    options: Mapping[str, ConnectionOptions],
) -> Dict[str, Any]:
    return {
        "savedAt": iso_now(),
        "connections": {
            url: {
                "options": options[url].model_dump(mode="json", by_alias=True),
                "events": [encode_event(e) for e in events],
            }
            for url, events in buffers.items()
        },
    }

def load_buffers(path: Path) -> List[Tuple[ConnectionOptions, List[Any]]]:
    """Options and raw event payloads per saved connection; the url key fills a missing baseUrl."""
    connections: Dict[str, Any] = read_json(path).get("connections", {})
    out: List[Tuple[ConnectionOptions, List[Any]]] = []
    for url, entry in connections.items():
        opt = dict(entry.get("options") or {})
        opt.setdefault("baseUrl", url)
        out.append((ConnectionOptions.model_validate(opt), list(entry.get("events") or [])))
    return out
