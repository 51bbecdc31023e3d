"""Shared builders for recorder tests: wire payloads, connections, groups."""

import pytest

from g4recorder.connection import EventConnection
from g4recorder.models import BufferGroup, ConnectionOptions, ThinkTimeSettings
from g4recorder.normalizer import decode_event, normalize


def element(x=10, y=20, width=100, height=30, **extra):
    node = {"bounds": {"X": x, "Y": y, "width": width, "height": height}}
    node.update(extra)
    return node


def chain(locator="//Button[@Name='OK']", path=None):
    return {"locator": locator, "path": [element()] if path is None else path}


def mouse(ts, event="left up", machine="HOST-A", locator="//Button[@Name='OK']", x=15, y=25, path=None):
    return {
        "timestamp": ts,
        "machineName": machine,
        "type": "mouse",
        "event": event,
        "chain": chain(locator, path),
        "value": {"x": x, "y": y},
    }


def key(ts, k, event="keyup", machine="HOST-A", locator="//Edit[@Name='Search']", path=None):
    return {
        "timestamp": ts,
        "machineName": machine,
        "type": "keyboard",
        "event": event,
        "chain": chain(locator, path),
        "value": {"key": k},
    }


def typed(ts, text, machine="HOST-A", step=100):
    """keydown/keyup pairs for every character of text."""
    payloads = []
    for i, ch in enumerate(text):
        t = ts + i * step
        payloads.append(key(t, ch, event="keydown", machine=machine))
        payloads.append(key(t + 10, ch, event="keyup", machine=machine))
    return payloads


def group_of(*payloads, machine="HOST-A", think_time=None, group_id=1):
    events = []
    for p in payloads:
        ev = normalize(decode_event(p))
        if ev is not None:
            events.append(ev)
    return BufferGroup(
        id=group_id,
        machine_name=machine,
        events=events,
        think_time_settings=think_time or ThinkTimeSettings(),
    )


def connection(url="http://host-a:9955", payloads=(), **options):
    conn = EventConnection(ConnectionOptions(base_url=url, **options))
    for p in payloads:
        conn.ingest(p)
    return conn


@pytest.fixture
def manifest():
    return {
        "authentication": {"token": "secret-token"},
        "driverParameters": {"driver": "ChromeDriver"},
        "settings": {"automationSettings": {"maxParallel": 1}},
    }
