"""Run the web UI with uvicorn: `python -m bgremover_web`."""

from __future__ import annotations

import argparse

import uvicorn


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve the background removal web UI")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind")
    parser.add_argument("--port", type=int, default=8000, help="Port to listen on")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    uvicorn.run("bgremover_web.api:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
