"""
Run the API server.

Usage:
    python -m abordo            # HOST/PORT from settings
    abordo-api --reload         # same, via the installed console script
"""
import argparse

import uvicorn

from .config import settings


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the A Bordo API server")
    parser.add_argument("--host", default=settings.host)
    parser.add_argument("--port", type=int, default=settings.port)
    parser.add_argument("--reload", action="store_true", help="Restart on code changes (development)")
    args = parser.parse_args()
    uvicorn.run("abordo.main:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
