"""
Credit Card Application Backend — development launcher.

Usage:
    python run.py
    python run.py --port 9000 --reload
    python run.py --init-db
"""
import argparse

import uvicorn

from card_application.config import get_settings
from card_application.database import init_db
from card_application.utils.logger import get_logger, setup_logging


def build_parser(settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=f"{settings.APP_NAME} server")
    parser.add_argument("--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Restart on source changes")
    parser.add_argument("--log-level", default=settings.LOG_LEVEL.lower(), help="Uvicorn log level")
    parser.add_argument("--init-db", action="store_true", help="Create the draft tables and exit")
    return parser


def main():
    settings = get_settings()
    args = build_parser(settings).parse_args()

    setup_logging()
    logger = get_logger("card_application.run")

    if args.init_db:
        init_db()
        logger.info(f"Tables created in {settings.DATABASE_URL}")
        return

    # Rate-limit windows live in process memory, so a single worker is served.
    logger.info(f"Serving {settings.APP_NAME} on http://{args.host}:{args.port} (docs at /docs)")
    uvicorn.run(
        "card_application.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
