"""Entry point for ``python -m gatekeeper``."""

from __future__ import annotations

import argparse

import uvicorn

from gatekeeper.config import settings


def main() -> None:
    parser = argparse.ArgumentParser(description="Gatekeeper rate-limited API")
    parser.add_argument(
        "--host",
        default=settings.host,
        help=f"Interface to bind (default: {settings.host})",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.port,
        help=f"Port to listen on (default: {settings.port})",
    )
    args = parser.parse_args()
    # Counters are per process, so a single worker keeps quotas exact
    uvicorn.run("gatekeeper.api.main:app", host=args.host, port=args.port, workers=1)


if __name__ == "__main__":
    main()
