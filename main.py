"""
TSX Quote Feed - entry point.

Serves the FastAPI app with uvicorn using HOST/PORT from the environment.
"""

import argparse

import uvicorn

from quotefeed.config import settings


def main():
    parser = argparse.ArgumentParser(description="TSX Quote Feed server")
    parser.add_argument("--host", default=settings.HOST, help="Bind address")
    parser.add_argument("--port", type=int, default=settings.PORT, help="Bind port")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes (dev only)")
    args = parser.parse_args()

    uvicorn.run("quotefeed.main:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
