"""
main.py — DriveSense application entry point.

Parses CLI args, loads configuration, builds the pipeline controller and
either runs images through it headlessly (printing the HUD) or serves the
FastAPI web boundary.
"""

from __future__ import annotations

import argparse
import mimetypes
import random
import sys
import traceback
from pathlib import Path
from typing import Optional, Sequence

_BANNER = r"""
  ____       _           ____
 |  _ \ _ __(_)_   _____/ ___|  ___ _ __  ___  ___
 | | | | '__| \ \ / / _ \___ \ / _ \ '_ \/ __|/ _ \
 | |_| | |  | |\ V /  __/___) |  __/ | | \__ \  __/
 |____/|_|  |_| \_/ \___|____/ \___|_| |_|___/\___|

   perception → knowledge graph → driving decision
"""

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_REJECTED = 2


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="drivesense",
        description="DriveSense — simulated perception and knowledge-graph driving demo",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument(
        "images",
        nargs="*",
        type=Path,
        help="Image files to run through the pipeline (headless mode)",
    )
    p.add_argument("--config", type=Path, default=None, help="Path to drivesense.yaml")
    p.add_argument("--seed", type=int, default=None, help="Seed for repeatable synthesis")
    p.add_argument(
        "--latency",
        type=float,
        default=None,
        help="Override the simulated pipeline latency in seconds",
    )
    p.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARN", "ERROR"],
        default=None,
        help="Minimum level written to the JSONL log",
    )
    p.add_argument("--web", action="store_true", help="Serve the FastAPI web boundary")
    p.add_argument("--host", default=None, help="Bind address for --web")
    p.add_argument("--port", type=int, default=None, help="Port for --web")
    p.add_argument("--no-banner", action="store_true", help="Do not print the banner")
    return p


def _check_python() -> None:
    """Abort if Python version is below 3.11."""
    if sys.version_info < (3, 11):
        print(f"[ERROR] Python 3.11+ required; running {sys.version}", file=sys.stderr)
        sys.exit(EXIT_ERROR)


def _overrides(args: argparse.Namespace) -> dict:
    """Translate CLI flags into a nested config override mapping."""
    out: dict = {}
    if args.latency is not None:
        out.setdefault("pipeline", {})["latency_s"] = args.latency
    if args.log_level is not None:
        out.setdefault("logging", {})["level"] = args.log_level
    if args.host is not None:
        out.setdefault("web", {})["host"] = args.host
    if args.port is not None:
        out.setdefault("web", {})["port"] = args.port
    return out


def _run_headless(controller, images: Sequence[Path]) -> int:
    """Submit each image in turn, wait for its result and print the HUD."""
    from perception.image_handle import InvalidInputError
    from ui.surfaces import render_hud

    exit_code = EXIT_OK
    timeout = controller.config.pipeline.latency_s + 5.0
    for path in images:
        print(f"\n── {path} ─────────────────────────────")
        try:
            payload = path.read_bytes()
        except OSError as exc:
            print(f"[ERROR] cannot read {path}: {exc}", file=sys.stderr)
            exit_code = EXIT_REJECTED
            continue

        mime, _ = mimetypes.guess_type(path.name)
        try:
            controller.submit(payload, mime_type=mime)
        except InvalidInputError as exc:
            print(f"[REJECTED] {path}: {exc}", file=sys.stderr)
            exit_code = EXIT_REJECTED
            continue

        print(render_hud(controller.current_state()))
        snapshot = controller.wait_until_complete(timeout=timeout)
        if snapshot is None:
            print(f"[WARN] no result for {path} within {timeout:.1f}s", file=sys.stderr)
            exit_code = EXIT_ERROR
            continue
        print(render_hud(snapshot))
    return exit_code


def _run_web(controller) -> int:
    from ui.web_app import start_web_server

    web = controller.config.web
    print(f"[INFO] Web boundary → http://localhost:{web.port}/state")
    print("       Press Ctrl-C to stop.")
    start_web_server(controller, host=web.host, port=web.port)
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Application entry point. Returns process exit code."""
    args = _build_parser().parse_args(argv)
    if not args.no_banner:
        print(_BANNER)

    _check_python()

    from core.config import load_config
    from core.logger import configure_logger
    from pipeline.controller import PipelineController

    try:
        config = load_config(args.config, overrides=_overrides(args))
    except (FileNotFoundError, ValueError) as exc:
        print(f"[ERROR] configuration: {exc}", file=sys.stderr)
        return EXIT_ERROR

    log = configure_logger(log_dir=config.logging.log_dir, level=config.logging.level)
    log.info("main", "args_parsed", {
        "images": [str(p) for p in args.images],
        "seed": args.seed,
        "web": args.web,
    })

    rng = random.Random(args.seed) if args.seed is not None else None
    try:
        controller = PipelineController.from_config(config, rng=rng)
    except (FileNotFoundError, ValueError) as exc:
        print(f"[ERROR] knowledge table: {exc}", file=sys.stderr)
        return EXIT_ERROR

    exit_code = EXIT_OK
    try:
        if args.web:
            exit_code = _run_web(controller)
        elif args.images:
            exit_code = _run_headless(controller, args.images)
        else:
            print("[INFO] No images given — pass image paths or --web")
    except KeyboardInterrupt:
        print("\n[INFO] Interrupted — shutting down…")
    except Exception:  # noqa: BLE001
        tb = traceback.format_exc()
        print(tb, file=sys.stderr)
        log.critical("main", "unhandled_exception", {"traceback": tb})
        exit_code = EXIT_ERROR
    finally:
        controller.shutdown()
        log.flush()

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
