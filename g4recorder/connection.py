from __future__ import annotations

import asyncio
import json
import re
from typing import Any, List, Optional, Tuple

import aiohttp

from g4recorder.logger import get_logger
from g4recorder.models import ConnectionOptions, ConnectionState, RawEvent
from g4recorder.normalizer import decode_event

logger = get_logger(__name__)

# SignalR JSON hub protocol framing.
RECORD_SEPARATOR = "\x1e"
HANDSHAKE = json.dumps({"protocol": "json", "version": 1}) + RECORD_SEPARATOR
MSG_INVOCATION = 1
MSG_PING = 6
MSG_CLOSE = 7


class HubHandshakeError(ConnectionError):
    pass


class EventConnection:
    """
    One capture channel to a remote recorder endpoint.

    Events pushed by the hub are decoded and appended to a private,
    append-only buffer. Nothing outside this object mutates the buffer;
    readers take a snapshot() copy.
    """

    def __init__(self, options: ConnectionOptions, handshake_timeout: float = 10.0):
        self.options = options
        self.handshake_timeout = handshake_timeout
        self.state = ConnectionState.DISCONNECTED

        self._buffer: List[RawEvent] = []
        self._task: Optional[asyncio.Task] = None
        self._closing = False

    def __repr__(self) -> str:
        return f"EventConnection({self.base_url!r}, state={self.state.value}, buffered={len(self._buffer)})"

    @property
    def base_url(self) -> str:
        return self.options.base_url

    @property
    def hub_url(self) -> str:
        # http -> ws, https -> wss
        url = self.options.base_url.rstrip("/") + self.options.hub_path
        return re.sub(r"^http", "ws", url, flags=re.IGNORECASE)

    @property
    def buffer(self) -> Tuple[RawEvent, ...]:
        return tuple(self._buffer)

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def snapshot(self) -> List[RawEvent]:
        return list(self._buffer)

    def clear_buffer(self) -> None:
        self._buffer.clear()

    # -------- ingestion --------

    def ingest(self, payload: Any) -> Optional[RawEvent]:
        event = decode_event(payload)
        if event is not None:
            self._buffer.append(event)
        return event

    def handle_frames(self, text: str) -> bool:
        """
        Dispatch every record in a text frame. Returns False once the hub
        sent a close message.
        """
        open_ = True
        for record in text.split(RECORD_SEPARATOR):
            if not record.strip():
                continue
            try:
                message = json.loads(record)
            except json.JSONDecodeError:
                logger.debug("Ignoring undecodable hub record from %s: %r", self.base_url, record[:200])
                continue
            if not isinstance(message, dict):
                continue

            msg_type = message.get("type")
            if msg_type == MSG_INVOCATION and message.get("target") == self.options.event_target:
                arguments = message.get("arguments")
                if not isinstance(arguments, list):
                    logger.debug("Ignoring invocation without an argument list from %s", self.base_url)
                    continue
                for argument in arguments:
                    self.ingest(argument)
            elif msg_type == MSG_CLOSE:
                logger.info("Hub at %s closed the connection: %s", self.base_url, message.get("error") or "no error")
                open_ = False
            # pings and other targets are not ours to handle
        return open_

    def complete_handshake(self, text: str) -> None:
        records = text.split(RECORD_SEPARATOR)
        try:
            response = json.loads(records[0] or "{}")
        except json.JSONDecodeError as e:
            raise HubHandshakeError(f"invalid handshake response: {records[0][:200]!r}") from e
        if isinstance(response, dict) and response.get("error"):
            raise HubHandshakeError(str(response["error"]))
        # The server may piggyback messages on the handshake frame.
        rest = RECORD_SEPARATOR.join(records[1:])
        if rest.strip():
            self.handle_frames(rest)

    # -------- lifecycle --------

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            logger.warning("Connection to %s already running", self.base_url)
            return
        self._closing = False
        self.state = ConnectionState.CONNECTING
        self._task = asyncio.create_task(self._run(), name=f"g4-capture:{self.base_url}")

    async def disconnect(self) -> None:
        self._closing = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error("Error disconnecting from %s: %s", self.base_url, e)
        if self.state is not ConnectionState.DISCONNECTED:
            logger.info("Disconnected from recorder hub at %s", self.base_url)
        self.state = ConnectionState.DISCONNECTED

    async def _run(self) -> None:
        delay = self.options.reconnect_delay
        while not self._closing:
            try:
                await self._connect_once()
                if self._closing:
                    break
                logger.warning("Connection to %s dropped; reconnecting in %ss", self.base_url, delay)
            except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
                if self._closing:
                    break
                logger.warning("Failed to connect to recorder hub at %s: %s; retrying in %ss", self.base_url, e, delay)
            except Exception:
                if self._closing:
                    break
                logger.exception("Capture from %s failed; reconnecting in %ss", self.base_url, delay)
            self.state = ConnectionState.RECONNECTING
            await asyncio.sleep(delay)
        self.state = ConnectionState.DISCONNECTED

    async def _connect_once(self) -> None:
        async with aiohttp.ClientSession() as session:
            async with session.ws_connect(self.hub_url, heartbeat=30.0) as ws:
                await ws.send_str(HANDSHAKE)
                reply = await ws.receive(timeout=self.handshake_timeout)
                if reply.type != aiohttp.WSMsgType.TEXT:
                    raise HubHandshakeError(f"unexpected handshake frame {reply.type!r}")
                self.complete_handshake(reply.data)

                self.state = ConnectionState.CONNECTED
                logger.info("Connected to recorder hub at %s", self.base_url)

                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        if not self.handle_frames(msg.data):
                            break
                    elif msg.type == aiohttp.WSMsgType.ERROR:
                        raise ws.exception() or ConnectionError("websocket error")
