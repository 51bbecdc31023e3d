from __future__ import annotations

import re
from typing import Any, Dict, Iterable, Optional

from pydantic import ValidationError

from g4recorder.logger import get_logger
from g4recorder.models import (
    RAW_EVENT_ADAPTER,
    Bounds,
    EventPhase,
    KeyEvent,
    MouseButton,
    NormalizedEvent,
    PointerEvent,
    RawEvent,
)

logger = get_logger(__name__)

# Events captured on the editor window that hosts the recorder itself.
RECORDER_SURFACE_PATTERN = re.compile(r"Extension Development Host", re.IGNORECASE)

_DOWN = re.compile(r"down", re.IGNORECASE)
_UP = re.compile(r"up", re.IGNORECASE)
_TOKEN_SPLIT = re.compile(r"[\s\-_]+")


def parse_phase(event: str) -> Optional[EventPhase]:
    # "down" wins: "mousedown" must never be read as a release.
    if _DOWN.search(event or ""):
        return EventPhase.DOWN
    if _UP.search(event or ""):
        return EventPhase.UP
    return None


def parse_button(event: str) -> MouseButton:
    """'left up', 'Right-Up', 'middle_up' -> button; anything else is UNKNOWN."""
    tokens = [t for t in _TOKEN_SPLIT.split((event or "").strip().lower()) if t]
    if not tokens:
        return MouseButton.UNKNOWN
    try:
        return MouseButton(tokens[0])
    except ValueError:
        return MouseButton.UNKNOWN


def _event_kind(value: Any) -> Optional[str]:
    text = str(value or "").lower()
    if "mouse" in text:
        return "mouse"
    if "keyboard" in text:
        return "keyboard"
    return None


def decode_event(payload: Any) -> Optional[RawEvent]:
    """
    Decode one wire message into a PointerEvent or KeyEvent.

    Accepts the flat shape
      {timestamp, machineName, type, event, chain, value: {key, x, y}}
    as well as the engine's envelope {"value": {...same...}}.

    Returns None (and logs at DEBUG) for anything that does not decode;
    recordings are noisy and a bad message must not stop the stream.
    """
    if not isinstance(payload, dict):
        logger.debug("Dropping non-object event payload: %r", payload)
        return None

    body = payload
    if "type" not in body and isinstance(body.get("value"), dict):
        body = body["value"]

    kind = _event_kind(body.get("type"))
    if kind is None:
        logger.debug("Dropping event with unknown type: %r", body.get("type"))
        return None

    timestamp = body.get("timestamp", payload.get("timestamp"))
    if timestamp is None:
        logger.debug("Dropping %s event without timestamp", kind)
        return None

    data = body.get("value") if isinstance(body.get("value"), dict) else {}
    event_name = str(body.get("event") or "")
    chain = body.get("chain") if isinstance(body.get("chain"), dict) else {}
    path = chain.get("path") if isinstance(chain.get("path"), list) else []

    decoded: Dict[str, Any] = {
        "type": kind,
        "timestamp": timestamp,
        "machineName": body.get("machineName") or "",
        "event": event_name,
        "phase": parse_phase(event_name),
        "chain": {
            "locator": chain.get("locator") or "",
            "path": [n for n in path if n],
        },
    }
    if kind == "mouse":
        decoded["button"] = parse_button(event_name)
        decoded["x"] = data.get("x", body.get("x"))
        decoded["y"] = data.get("y", body.get("y"))
    else:
        decoded["key"] = str(data.get("key", body.get("key")) or "")

    try:
        return RAW_EVENT_ADAPTER.validate_python(decoded)
    except ValidationError as e:
        logger.debug("Dropping malformed %s event: %s", kind, e)
        return None


def encode_event(raw: RawEvent) -> Dict[str, Any]:
    """Flat wire form of a decoded event; decode_event(encode_event(e)) == e."""
    value: Dict[str, Any] = {}
    if isinstance(raw, KeyEvent):
        value["key"] = raw.key
    elif isinstance(raw, PointerEvent):
        if raw.x is not None:
            value["x"] = raw.x
        if raw.y is not None:
            value["y"] = raw.y
    return {
        "timestamp": raw.timestamp,
        "machineName": raw.machine_name,
        "type": raw.type,
        "event": raw.event,
        "chain": raw.chain.model_dump(mode="json", by_alias=True, exclude_none=True),
        "value": value,
    }


def is_recorder_surface(locator: str, extra_patterns: Iterable[str] = ()) -> bool:
    if RECORDER_SURFACE_PATTERN.search(locator or ""):
        return True
    return any(re.search(p, locator or "", re.IGNORECASE) for p in extra_patterns)


def element_id(bounds: Bounds) -> str:
    return ";".join(f"{v:g}" for v in (bounds.height, bounds.x, bounds.y, bounds.width))


def normalize(raw: RawEvent, ignore_locators: Iterable[str] = ()) -> Optional[NormalizedEvent]:
    """
    Keep only completed interactions on a resolvable element.

    A release ("up") confirms the interaction finished; presses are dropped,
    as are events with an empty chain and events from the recorder's own UI.
    """
    if raw.phase is not EventPhase.UP:
        return None

    locator = raw.chain.locator
    if is_recorder_surface(locator, ignore_locators):
        return None

    trigger = raw.chain.trigger
    if trigger is None:
        return None

    bounds = trigger.bounds or Bounds()
    return NormalizedEvent(
        element_id=element_id(bounds),
        locator=locator,
        bounds=bounds,
        event=raw,
    )
