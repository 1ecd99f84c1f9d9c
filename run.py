#!/usr/bin/env python3
"""
Development server for the listing pipeline API.

Usage:
    python run.py [--host HOST] [--port PORT] [--reload]

HOST, PORT and DEBUG from the environment are the defaults.
"""

import argparse

import uvicorn

from utils.config import Config


def main():
    config = Config.load()

    parser = argparse.ArgumentParser(description="Serve the listing pipeline API locally")
    parser.add_argument("--host", default=config.host, help=f"Bind address (default {config.host})")
    parser.add_argument("--port", type=int, default=config.port, help=f"Port (default {config.port})")
    parser.add_argument("--reload", action="store_true", default=config.debug, help="Reload on code changes")
    args = parser.parse_args()

    config.configure_logging()
    print(f"Serving on http://{args.host}:{args.port} (data in {config.data_dir})")

    uvicorn.run(
        "web.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
