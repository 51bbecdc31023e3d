from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from g4recorder.assembler import BaseConfig, assemble
from g4recorder.compiler import RuleCompiler
from g4recorder.connection import EventConnection
from g4recorder.logger import get_logger
from g4recorder.models import Automation, BufferGroup, ConnectionOptions, Job, RawEvent, ThinkTimeSettings
from g4recorder.segmenter import earliest_source, merge, segment, take_snapshots
from g4recorder.viewer import WorkflowViewer

logger = get_logger(__name__)

NO_CONNECTIONS = "no active connections"
NO_EVENTS = "no recorded events"


class CompileInProgressError(RuntimeError):
    pass


@dataclass
class CompileResult:
    automation: Optional[Automation] = None
    groups: List[BufferGroup] = field(default_factory=list)
    buffers: Dict[str, List[RawEvent]] = field(default_factory=dict)
    reason: Optional[str] = None

    @property
    def recorded(self) -> bool:
        return self.automation is not None


class RecordingSession:
    """
    Owns the capture connections of one recording and turns their buffers
    into an automation document when the recording stops.

    Connections are keyed by base URL. A session is single-use: stop()
    disconnects everything.
    """

    def __init__(
        self,
        options: Iterable[ConnectionOptions],
        manifest: Optional[Dict[str, Any]] = None,
        compiler: Optional[RuleCompiler] = None,
        ignore_locators: Iterable[str] = (),
        connection_factory: Callable[[ConnectionOptions], EventConnection] = EventConnection,
    ):
        self.manifest = manifest or {}
        self.compiler = compiler or RuleCompiler()
        self.ignore_locators = tuple(ignore_locators)
        self.connections: Dict[str, EventConnection] = {}
        for opt in options:
            if opt.base_url in self.connections:
                logger.warning("Duplicate recorder endpoint %s ignored", opt.base_url)
                continue
            self.connections[opt.base_url] = connection_factory(opt)
        self._compile_lock = asyncio.Lock()

    async def start(self) -> None:
        urls = list(self.connections)
        for url in urls:
            logger.info("Starting recorder for endpoint: %s", url)
        results = await asyncio.gather(
            *(conn.start() for conn in self.connections.values()),
            return_exceptions=True,
        )
        for url, result in zip(urls, results):
            if isinstance(result, Exception):
                logger.error("Failed to start recorder for endpoint %s: %s", url, result)

    def connection_status(self) -> List[Dict[str, Any]]:
        return [
            {
                "url": url,
                "state": conn.state.value,
                "ok": conn.is_connected,
                "buffered": len(conn.buffer),
            }
            for url, conn in self.connections.items()
        ]

    def compile(self) -> CompileResult:
        """
        One compile pass over a snapshot of every buffer. Events that arrive
        after the snapshot is taken are not part of this pass.
        """
        if not self.connections:
            logger.warning("No active capture connections to compile")
            return CompileResult(reason=NO_CONNECTIONS)

        buffers = take_snapshots(self.connections)
        groups = segment(merge(buffers, self.ignore_locators))
        if not groups:
            logger.info("No recorded events found in the buffers")
            return CompileResult(groups=groups, buffers=buffers, reason=NO_EVENTS)

        primary = self.connections[earliest_source(buffers)]
        base = BaseConfig.from_manifest(self.manifest, primary.options.driver_parameters)

        jobs: List[Job] = []
        for index, group in enumerate(groups):
            connection = self.connections.get(group.base_url or "")
            mode = connection.options.mode if connection else "standard"
            group.think_time_settings = (
                connection.options.think_time_settings.model_copy() if connection else ThinkTimeSettings()
            )

            job = self.compiler.compile(group, mode)
            # The first job runs with the document-level (primary) parameters.
            if index > 0 and connection is not None:
                job.driver_parameters = dict(connection.options.driver_parameters)
            jobs.append(job)

        automation = assemble(jobs, base)
        logger.info(
            "Compiled %d group(s) from %d connection(s) into %d rule(s)",
            len(groups), len(buffers), sum(len(j.rules) for j in jobs),
        )
        return CompileResult(automation=automation, groups=groups, buffers=buffers)

    async def stop(self, viewer: Optional[WorkflowViewer] = None) -> CompileResult:
        """
        Finalize the recording: compile, hand the document to the viewer,
        clear buffers, and always tear the connections down.

        Buffers are only cleared once a document (or an empty result) has
        been produced; on failure they are kept for inspection.
        """
        if self._compile_lock.locked():
            raise CompileInProgressError("a compile pass is already running for this session")

        async with self._compile_lock:
            try:
                result = self.compile()
                if result.automation is not None and viewer is not None:
                    await asyncio.to_thread(viewer.show, result.automation.to_payload())
                for conn in self.connections.values():
                    conn.clear_buffer()
                return result
            except Exception:
                logger.exception(
                    "Failed to compile recording from %d connection(s): %s",
                    len(self.connections), ", ".join(self.connections),
                )
                raise
            finally:
                await self.disconnect()

    async def disconnect(self) -> None:
        results = await asyncio.gather(
            *(conn.disconnect() for conn in self.connections.values()),
            return_exceptions=True,
        )
        for url, result in zip(self.connections, results):
            if isinstance(result, Exception):
                logger.error("Error disconnecting from %s: %s", url, result)
