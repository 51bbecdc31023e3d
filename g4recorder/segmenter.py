from __future__ import annotations

from typing import Iterable, List, Mapping, Optional, Sequence

from g4recorder.connection import EventConnection
from g4recorder.logger import get_logger
from g4recorder.models import BufferGroup, NormalizedEvent, RawEvent
from g4recorder.normalizer import normalize

logger = get_logger(__name__)

Snapshots = Mapping[str, Sequence[RawEvent]]


def take_snapshots(connections: Mapping[str, EventConnection]) -> dict:
    """Copy every connection's buffer at one point in time."""
    return {url: conn.snapshot() for url, conn in connections.items()}


def merge(snapshots: Snapshots, ignore_locators: Iterable[str] = ()) -> List[NormalizedEvent]:
    """
    Flatten all buffers into one timeline ordered by timestamp.

    sorted() is stable, so events sharing a timestamp keep their per-buffer
    order (and buffers keep the mapping's order among themselves).
    """
    patterns = tuple(ignore_locators)
    tagged: List[NormalizedEvent] = []
    dropped = 0
    for base_url, events in snapshots.items():
        for raw in events:
            ev = normalize(raw, patterns)
            if ev is None:
                dropped += 1
                continue
            tagged.append(ev.model_copy(update={"base_url": base_url}))

    if dropped:
        logger.debug("Filtered %d non-release or untargeted events", dropped)
    return sorted(tagged, key=lambda e: e.timestamp)


def segment(events: Sequence[NormalizedEvent]) -> List[BufferGroup]:
    """
    Split the merged timeline into contiguous runs per machine.

    A machine that reappears after another machine opens a new group; it is
    never folded back into its earlier group.
    """
    groups: List[BufferGroup] = []
    current: Optional[BufferGroup] = None
    for ev in events:
        if current is None or current.machine_name != ev.machine_name:
            current = BufferGroup(
                id=len(groups) + 1,
                machine_name=ev.machine_name,
                base_url=ev.base_url,
            )
            groups.append(current)
        current.events.append(ev)
    return groups


def merge_and_segment(
    connections: Mapping[str, EventConnection],
    ignore_locators: Iterable[str] = (),
) -> List[BufferGroup]:
    return segment(merge(take_snapshots(connections), ignore_locators))


def earliest_source(snapshots: Snapshots) -> Optional[str]:
    """Key of the buffer holding the earliest event; ties go to the first buffer."""
    if len(snapshots) == 1:
        return next(iter(snapshots))

    best_url: Optional[str] = None
    best_ts: Optional[int] = None
    for url, events in snapshots.items():
        for raw in events:
            if best_ts is None or raw.timestamp < best_ts:
                best_ts = raw.timestamp
                best_url = url
    return best_url
