from __future__ import annotations

import argparse
import time
from datetime import datetime

from faceclock.config.settings import ClockSettings, get_settings
from faceclock.database.storage import JsonProfileStore
from faceclock.exceptions import ClockError
from faceclock.pipeline.frame_processor import TickResult
from faceclock.service import ClockService
from faceclock.utils.logger import configure_logger


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Face recognition attendance clock")
    parser.add_argument("--data-dir", default=None, help="Directory holding identities and attendance events")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run the live camera clock until interrupted")
    serve = subparsers.add_parser("serve", help="Serve the HTTP API with the live camera clock")
    for sub in (run, serve):
        sub.add_argument("--camera", type=int, default=None, help="Camera index")
        sub.add_argument("--threshold", type=float, default=None, help="Match threshold (inner product)")
        sub.add_argument("--interval", type=float, default=None, help="Tick interval in seconds")
        sub.add_argument("--timeout", type=float, default=None, help="Capture/detect/embed deadline in seconds")
        sub.add_argument("--grace", type=float, default=None, help="Auto clock grace period in seconds")
        sub.add_argument("--min-samples", type=int, default=None, help="Consecutive detections before recognizing")
        sub.add_argument("--model", default=None, help="InsightFace model pack name")
        sub.add_argument("--no-gpu", action="store_true", help="Disable GPU usage")
    serve.add_argument("--host", default=None, help="Bind host")
    serve.add_argument("--port", type=int, default=None, help="Bind port")
    serve.add_argument("--no-autostart", action="store_true", help="Wait for POST /session/start")

    subparsers.add_parser("identities", help="List enrolled identities")

    events = subparsers.add_parser("events", help="List attendance events, newest first")
    events.add_argument("--start", type=datetime.fromisoformat, default=None, help="Inclusive ISO start")
    events.add_argument("--end", type=datetime.fromisoformat, default=None, help="Inclusive ISO end")
    return parser


def _apply_overrides(settings: ClockSettings, args: argparse.Namespace) -> ClockSettings:
    updates = {}
    if args.data_dir is not None:
        updates["data_dir"] = args.data_dir
    for arg_name, field_name in (
        ("camera", "camera_index"),
        ("threshold", "match_threshold"),
        ("interval", "tick_interval_seconds"),
        ("timeout", "perception_timeout_seconds"),
        ("grace", "grace_period_seconds"),
        ("min_samples", "min_consecutive_samples"),
        ("model", "insightface_model"),
        ("host", "host"),
        ("port", "port"),
    ):
        value = getattr(args, arg_name, None)
        if value is not None:
            updates[field_name] = value
    if getattr(args, "no_gpu", False):
        updates["prefer_gpu"] = False
    if not updates:
        return settings
    return ClockSettings(**{**settings.model_dump(), **updates})


def _open_store(settings: ClockSettings) -> JsonProfileStore:
    return JsonProfileStore(
        identities_path=settings.identities_path,
        events_path=settings.events_path,
        embedding_dim=settings.embedding_dim,
    )


def _build_live_service(settings: ClockSettings):
    from faceclock.face_module.camera import CameraFrameSource
    from faceclock.face_module.insight_engine import InsightFacePerception

    camera = CameraFrameSource(
        camera_index=settings.camera_index,
        frame_width=settings.frame_width,
        frame_height=settings.frame_height,
    )
    perception = InsightFacePerception(
        model_name=settings.insightface_model,
        det_size=(settings.detection_size, settings.detection_size),
        prefer_gpu=settings.prefer_gpu,
    )
    camera.open()
    return camera, ClockService(settings=settings, frame_source=camera, perception=perception)


def _print_tick(result: TickResult) -> None:
    line = f"[tick {result.tick_id}] {result.state.value}: {result.outcome.value}"
    if result.confidence is not None:
        line += f" ({result.confidence:.2f})"
    if result.event is not None:
        line += f" -> {result.event.kind.value} {result.event.identity_name_snapshot}"
    print(line)


def _run_command(settings: ClockSettings) -> int:
    camera, service = _build_live_service(settings)
    service.subscribe(_print_tick)
    try:
        service.start()
        print("Clock running. Press Ctrl+C to stop.")
        while service.running:
            time.sleep(0.5)
    finally:
        service.stop()
        camera.close()
    return 0


def _serve_command(settings: ClockSettings, autostart: bool) -> int:
    import uvicorn

    from faceclock.api import create_app

    camera, service = _build_live_service(settings)
    try:
        app = create_app(service, settings, autostart=autostart)
        uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
    finally:
        service.stop()
        camera.close()
    return 0


def _identities_command(settings: ClockSettings) -> int:
    store = _open_store(settings)
    identities = store.list_identities()
    if not identities:
        print("No identities enrolled.")
        return 0
    for identity in identities:
        presence = "IN" if identity.is_currently_in else "OUT"
        print(f"{identity.external_id:<16} {identity.display_name:<32} {presence:<4} {identity.id}")
    return 0


def _events_command(settings: ClockSettings, start: datetime | None, end: datetime | None) -> int:
    store = _open_store(settings)
    events = store.query_events(start=start, end=end)
    if not events:
        print("No attendance events in range.")
        return 0
    for event in events:
        print(
            f"{event.timestamp.isoformat(timespec='seconds')} {event.kind.value:<5} "
            f"{event.identity_name_snapshot:<32} {event.confidence:.2f}"
        )
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        settings = _apply_overrides(get_settings(), args)
        settings.ensure_directories()
        configure_logger(settings.log_dir, level=settings.log_level)
        if args.command == "run":
            return _run_command(settings)
        if args.command == "serve":
            return _serve_command(settings, autostart=not args.no_autostart)
        if args.command == "identities":
            return _identities_command(settings)
        if args.command == "events":
            return _events_command(settings, args.start, args.end)
    except KeyboardInterrupt:
        print("\nStopped by user.")
        return 1
    except ClockError as exc:
        print(f"Error: {exc}")
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
