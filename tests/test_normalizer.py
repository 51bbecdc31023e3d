"""Decoding wire payloads and filtering them down to completed interactions."""

from conftest import chain, element, key, mouse

from g4recorder.models import EventPhase, KeyEvent, MouseButton, PointerEvent
from g4recorder.normalizer import (
    decode_event,
    element_id,
    encode_event,
    normalize,
    parse_button,
    parse_phase,
)


class TestDecode:
    def test_decode_mouse(self):
        ev = decode_event(mouse(1000, event="Right Up", x=5, y=6))
        assert isinstance(ev, PointerEvent)
        assert ev.phase is EventPhase.UP
        assert ev.button is MouseButton.RIGHT
        assert (ev.x, ev.y) == (5, 6)
        assert ev.machine_name == "HOST-A"

    def test_decode_keyboard(self):
        ev = decode_event(key(1000, "a"))
        assert isinstance(ev, KeyEvent)
        assert ev.key == "a"
        assert ev.phase is EventPhase.UP

    def test_decode_engine_envelope(self):
        ev = decode_event({"timestamp": 5, "value": key(7, "x")})
        assert isinstance(ev, KeyEvent)
        assert ev.timestamp == 7

    def test_envelope_without_inner_timestamp_uses_outer(self):
        inner = key(7, "x")
        del inner["timestamp"]
        ev = decode_event({"timestamp": 5, "value": inner})
        assert ev.timestamp == 5

    def test_malformed_payloads_are_dropped(self):
        assert decode_event(None) is None
        assert decode_event("left up") is None
        assert decode_event({"type": "touch", "timestamp": 1}) is None
        no_ts = key(1, "a")
        del no_ts["timestamp"]
        assert decode_event(no_ts) is None
        bad_ts = key("not-a-number", "a")
        assert decode_event(bad_ts) is None

    def test_non_list_path_is_treated_as_empty(self):
        payload = {**mouse(1), "chain": {"locator": "//Pane", "path": 5}}
        ev = decode_event(payload)
        assert ev is not None
        assert ev.chain.locator == "//Pane"
        assert ev.chain.trigger is None
        assert normalize(ev) is None

    def test_non_object_chain_is_treated_as_empty(self):
        ev = decode_event({**key(1, "a"), "chain": ["//Pane"]})
        assert ev is not None
        assert ev.chain.locator == ""

    def test_missing_chain_decodes_with_empty_path(self):
        payload = key(1, "a")
        del payload["chain"]
        ev = decode_event(payload)
        assert ev is not None
        assert ev.chain.trigger is None

    def test_encode_roundtrip(self):
        ev = decode_event(mouse(42, event="middle-up", x=1.5, y=2))
        assert decode_event(encode_event(ev)) == ev


class TestParsers:
    def test_phase(self):
        assert parse_phase("keydown") is EventPhase.DOWN
        assert parse_phase("Left Down") is EventPhase.DOWN
        assert parse_phase("keyup") is EventPhase.UP
        assert parse_phase("left-up") is EventPhase.UP
        assert parse_phase("move") is None
        assert parse_phase("") is None

    def test_button(self):
        assert parse_button("left up") is MouseButton.LEFT
        assert parse_button("Middle-Up") is MouseButton.MIDDLE
        assert parse_button("right_up") is MouseButton.RIGHT
        assert parse_button("x1 up") is MouseButton.UNKNOWN
        assert parse_button("") is MouseButton.UNKNOWN


class TestNormalize:
    def test_release_event_is_kept(self):
        ev = normalize(decode_event(mouse(1, locator="//Pane/Button")))
        assert ev is not None
        assert ev.locator == "//Pane/Button"
        assert ev.timestamp == 1

    def test_down_events_are_dropped(self):
        assert normalize(decode_event(mouse(1, event="left down"))) is None
        assert normalize(decode_event(key(1, "a", event="keydown"))) is None

    def test_events_without_phase_are_dropped(self):
        assert normalize(decode_event(mouse(1, event="move"))) is None

    def test_empty_path_is_dropped(self):
        assert normalize(decode_event(mouse(1, path=[]))) is None

    def test_recorder_surface_is_dropped(self):
        payload = mouse(1, locator="//Window[@Name='app.py - Extension Development Host']/Button")
        assert normalize(decode_event(payload)) is None

    def test_extra_ignore_patterns(self):
        payload = mouse(1, locator="//Window[@Name='Recorder Panel']")
        assert normalize(decode_event(payload)) is not None
        assert normalize(decode_event(payload), ignore_locators=[r"recorder panel"]) is None

    def test_element_id_uses_trigger_geometry(self):
        payload = mouse(1, path=[element(x=0, y=0, width=800, height=600), element(x=10, y=20, width=100, height=30)])
        ev = normalize(decode_event(payload))
        assert ev.element_id == "30;10;20;100"
        assert ev.bounds.width == 100

    def test_element_id_format(self):
        ev = decode_event({**mouse(1), "chain": chain(path=[{"bounds": {"x": 1.5, "y": 2, "width": 3, "height": 4}}])})
        assert element_id(normalize(ev).bounds) == "4;1.5;2;3"

    def test_trigger_without_bounds(self):
        ev = normalize(decode_event(mouse(1, path=[{"name": "OK"}])))
        assert ev.element_id == "0;0;0;0"

    def test_normalize_is_pure(self):
        raw = decode_event(key(1, "a"))
        first = normalize(raw)
        second = normalize(raw)
        assert first == second
        assert raw.key == "a"
