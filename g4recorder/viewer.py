from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Protocol

from g4recorder.logger import get_logger
from g4recorder.util import write_json

logger = get_logger(__name__)


class WorkflowViewer(Protocol):
    """Receives a finished automation document, by value."""

    def show(self, payload: Dict[str, Any]) -> None:
        ...


class FileWorkflowViewer:
    """Writes the document where the workflow designer can import it."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def show(self, payload: Dict[str, Any]) -> None:
        write_json(self.path, payload)
        logger.info("Wrote workflow: %s", self.path)

