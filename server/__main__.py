"""Run the job API: ``python -m server --port 8000 --workers 4``."""
from __future__ import annotations

import argparse
import logging

from config import JOB_MAX_RUNTIME_S, JOB_WORKERS, LOG_JSON
from observability.logger import configure_logging

from . import build_services, create_app


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the quiz factory job API server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind (default: 8000)")
    parser.add_argument("--workers", type=int, default=JOB_WORKERS, help="Generation worker threads")
    parser.add_argument(
        "--max-runtime",
        type=float,
        default=JOB_MAX_RUNTIME_S,
        help="Seconds before a running job is failed as stalled",
    )
    parser.add_argument("--plain-logs", action="store_true", help="Log key=value lines instead of JSON")
    parser.add_argument("--debug", action="store_true", help="Enable Flask debug mode and DEBUG logging")
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = _parse_args(argv)
    configure_logging(
        json_lines=LOG_JSON and not args.plain_logs,
        level=logging.DEBUG if args.debug else logging.INFO,
        force=True,
    )

    services = build_services(runner_kwargs={"workers": args.workers, "max_runtime_s": args.max_runtime})
    services.runner.start()
    app = create_app(services)

    print(f"Server running: API on http://{args.host}:{args.port} ({args.workers} workers)", flush=True)
    try:
        # The reloader would fork a second process with its own job workers.
        app.run(host=args.host, port=args.port, debug=args.debug, use_reloader=False, threaded=True)
    finally:
        services.runner.stop()


if __name__ == "__main__":  # pragma: no cover
    main()
