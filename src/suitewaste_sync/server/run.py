"""Run the reconciliation server."""

import argparse
from pathlib import Path

import uvicorn

from ..config import Config, setup_logging
from .app import create_app


def parse_args(argv=None) -> argparse.Namespace:
    config = Config.load()
    parser = argparse.ArgumentParser(description="SuiteWaste sync reconciliation server")
    parser.add_argument("--host", type=str, default=config.server.host, help="Bind host")
    parser.add_argument("--port", type=int, default=config.server.port, help="Bind port")
    parser.add_argument(
        "--db",
        type=str,
        default=config.server.db_path,
        help="SQLite file for persisted records",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.debug)

    app = create_app(db_path=Path(args.db).expanduser() if args.db else None)
    uvicorn.run(app, host=args.host, port=args.port, log_level="debug" if args.debug else "info")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
