from __future__ import annotations

import argparse
import asyncio
import contextlib
import signal
from pathlib import Path

from g4recorder.config import RecorderConfig, load_connection_options, load_manifest
from g4recorder.logger import setup_logging
from g4recorder.session import CompileResult, RecordingSession
from g4recorder.util import dump_buffers, load_buffers, write_json
from g4recorder.viewer import FileWorkflowViewer


def _report(result: CompileResult, workflow_path: Path) -> None:
    if not result.recorded:
        print(f"Nothing to compile: {result.reason}.")
        return
    jobs = result.automation.jobs
    print(f"Wrote workflow: {workflow_path} ({len(jobs)} job(s), {sum(len(j.rules) for j in jobs)} rule(s))")


async def _record(session: RecordingSession, seconds: int, viewer: FileWorkflowViewer) -> CompileResult:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        # Not available on Windows event loops; Ctrl-C then raises KeyboardInterrupt.
        loop.add_signal_handler(signal.SIGINT, stop.set)

    await session.start()
    print(f"Recording from {len(session.connections)} endpoint(s)... press Ctrl-C to stop.")
    try:
        await asyncio.wait_for(stop.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass
    return await session.stop(viewer)


def cmd_record(args, cfg: RecorderConfig) -> None:
    manifest = load_manifest(args.manifest or cfg.manifest_path)
    options = load_connection_options(args.recorders or cfg.connections_path, manifest)
    if not options:
        raise SystemExit("No recorder endpoints configured (see G4_RECORDERS / manifest g4Server).")

    out = Path(args.out or cfg.out_dir)
    workflow_path = out / "workflow.json"

    session = RecordingSession(options, manifest)
    result = asyncio.run(_record(session, args.seconds or cfg.seconds, FileWorkflowViewer(workflow_path)))

    if args.save_buffers:
        by_url = {url: conn.options for url, conn in session.connections.items()}
        write_json(out / "buffers.json", dump_buffers(result.buffers, by_url))
        print(f"Saved: {out / 'buffers.json'}")
    _report(result, workflow_path)


def cmd_compile(args, cfg: RecorderConfig) -> None:
    buffers_path = Path(args.buffers)
    if not buffers_path.exists():
        raise FileNotFoundError(f"Missing {buffers_path}")

    manifest = load_manifest(args.manifest or cfg.manifest_path)
    saved = load_buffers(buffers_path)
    if args.mode:
        saved = [(opt.model_copy(update={"mode": args.mode}), events) for opt, events in saved]

    session = RecordingSession([opt for opt, _ in saved], manifest)
    for opt, events in saved:
        conn = session.connections[opt.base_url]
        for payload in events:
            conn.ingest(payload)

    workflow_path = Path(args.out) if args.out else buffers_path.with_name("workflow.json")
    result = asyncio.run(session.stop(FileWorkflowViewer(workflow_path)))
    _report(result, workflow_path)


def cmd_status(args, cfg: RecorderConfig) -> None:
    manifest = load_manifest(args.manifest or cfg.manifest_path)
    options = load_connection_options(args.recorders or cfg.connections_path, manifest)
    if not options:
        print("No recorder endpoints configured.")
        return
    for opt in options:
        tt = opt.think_time_settings
        think = f"think time {tt.min_think_time}-{tt.max_think_time}ms" if tt.enabled else "no think time"
        print(f"{opt.base_url}  mode={opt.mode}  {think}")


def main() -> None:
    cfg = RecorderConfig.from_env()

    p = argparse.ArgumentParser("g4recorder")
    p.add_argument("--manifest", default=None, help="manifest.json or project directory")
    p.add_argument("--log-level", default=None)
    sub = p.add_subparsers(dest="cmd", required=True)

    r = sub.add_parser("record", help="record from the configured endpoints and compile a workflow")
    r.add_argument("--recorders", default=None, help="JSON list of recorder endpoints")
    r.add_argument("--out", default=None)
    r.add_argument("--seconds", type=int, default=None)
    r.add_argument("--save-buffers", action="store_true", help="also write the raw event buffers")
    r.set_defaults(func=cmd_record)

    cp = sub.add_parser("compile", help="compile a saved buffers.json into workflow.json")
    cp.add_argument("--buffers", required=True)
    cp.add_argument("--out", default=None)
    cp.add_argument("--mode", choices=["standard", "user32", "coordinate"], default=None,
                    help="override the capture mode of every connection")
    cp.set_defaults(func=cmd_compile)

    sp = sub.add_parser("status", help="list configured recorder endpoints")
    sp.add_argument("--recorders", default=None)
    sp.set_defaults(func=cmd_status)

    args = p.parse_args()
    setup_logging(args.log_level or cfg.log_level, cfg.log_file, cfg.log_max_size)
    args.func(args, cfg)


if __name__ == "__main__":
    main()
