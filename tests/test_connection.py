import asyncio
import json

import pytest
from conftest import connection, key, mouse

from g4recorder.connection import RECORD_SEPARATOR, EventConnection, HubHandshakeError
from g4recorder.models import ConnectionOptions, ConnectionState, KeyEvent


def frame(*messages):
    return "".join(json.dumps(m) + RECORD_SEPARATOR for m in messages)


def invocation(*arguments, target="ReceiveRecordingEvent"):
    return {"type": 1, "target": target, "arguments": list(arguments)}


class TestEventConnection:
    def test_hub_url(self):
        assert connection("http://host-a:9955/").hub_url == "ws://host-a:9955/hub/v4/g4/notifications"
        assert connection("https://g4.local", hubPath="/hub/rec").hub_url == "wss://g4.local/hub/rec"

    def test_ingest_appends_in_arrival_order(self):
        conn = connection(payloads=[key(3, "a"), mouse(1), key(2, "b")])
        assert [e.timestamp for e in conn.buffer] == [3, 1, 2]

    def test_ingest_drops_malformed(self):
        conn = connection()
        assert conn.ingest({"type": "mouse"}) is None
        assert conn.buffer == ()

    def test_buffer_is_read_only_view(self):
        conn = connection(payloads=[mouse(1)])
        snap = conn.snapshot()
        snap.clear()
        assert len(conn.buffer) == 1
        conn.clear_buffer()
        assert conn.buffer == ()

    def test_handle_frames(self):
        conn = connection()
        text = frame(
            invocation(key(1, "a"), key(2, "b")),
            {"type": 6},
            invocation(mouse(3), target="ReceiveLog"),
        )
        assert conn.handle_frames(text) is True
        assert [e.key for e in conn.buffer] == ["a", "b"]
        assert all(isinstance(e, KeyEvent) for e in conn.buffer)

    def test_handle_frames_custom_target(self):
        conn = connection(eventTarget="OnEvent")
        conn.handle_frames(frame(invocation(mouse(1), target="OnEvent")))
        assert len(conn.buffer) == 1

    def test_bad_argument_does_not_stop_the_frame(self):
        conn = connection()
        bad = {**mouse(1), "chain": {"locator": "//Pane", "path": 5}}
        assert conn.handle_frames(frame(invocation(bad, key(2, "a")))) is True
        assert [e.timestamp for e in conn.buffer] == [1, 2]

    def test_non_list_arguments_are_ignored(self):
        conn = connection()
        text = frame({"type": 1, "target": "ReceiveRecordingEvent", "arguments": 5}, invocation(mouse(3)))
        assert conn.handle_frames(text) is True
        assert [e.timestamp for e in conn.buffer] == [3]

    def test_close_frame(self):
        conn = connection()
        assert conn.handle_frames(frame({"type": 7, "error": "server shutting down"})) is False

    def test_garbage_records_are_skipped(self):
        conn = connection()
        assert conn.handle_frames("not json" + RECORD_SEPARATOR + frame(invocation(mouse(1))))
        assert len(conn.buffer) == 1

    def test_handshake(self):
        conn = connection()
        conn.complete_handshake("{}" + RECORD_SEPARATOR + frame(invocation(mouse(1))))
        assert len(conn.buffer) == 1

    def test_handshake_error(self):
        conn = connection()
        with pytest.raises(HubHandshakeError, match="protocol"):
            conn.complete_handshake(json.dumps({"error": "protocol 'json' not supported"}) + RECORD_SEPARATOR)
        with pytest.raises(HubHandshakeError):
            conn.complete_handshake("<html>" + RECORD_SEPARATOR)

    @pytest.mark.asyncio
    async def test_disconnect_without_start(self):
        conn = EventConnection(ConnectionOptions(base_url="http://host-a:9955"))
        await conn.disconnect()
        assert conn.state is ConnectionState.DISCONNECTED
        assert not conn.is_connected

    @pytest.mark.asyncio
    async def test_disconnect_cancels_reconnect_loop(self):
        # Nothing listens on this port; the loop keeps retrying until cancelled.
        conn = EventConnection(ConnectionOptions(base_url="http://127.0.0.1:9", reconnectDelay=0.01))
        await conn.start()
        assert conn.state in (ConnectionState.CONNECTING, ConnectionState.RECONNECTING)
        await conn.disconnect()
        assert conn.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_unexpected_error_reconnects(self, caplog):
        conn = EventConnection(ConnectionOptions(base_url="http://host-a:9955", reconnectDelay=0.01))
        attempts = []
        retried = asyncio.Event()

        async def connect_once():
            attempts.append(len(attempts) + 1)
            if len(attempts) == 1:
                raise TypeError("'int' object is not iterable")
            retried.set()
            await asyncio.Event().wait()

        conn._connect_once = connect_once
        await conn.start()
        await asyncio.wait_for(retried.wait(), timeout=2)

        assert attempts == [1, 2]
        assert "Capture from http://host-a:9955 failed" in caplog.text
        await conn.disconnect()
        assert conn.state is ConnectionState.DISCONNECTED
