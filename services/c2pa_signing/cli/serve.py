"""
Run the API server.

Run via: python -m c2pa_signing.cli.serve [--host HOST] [--port PORT]
"""

import argparse

import uvicorn

from c2pa_signing.config import settings


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run the C2PA signing API server")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--workers", type=int, default=1)
    args = parser.parse_args(argv)

    uvicorn.run(
        "c2pa_signing.api.app:app",
        host=args.host,
        port=args.port,
        workers=args.workers,
        log_config=None,  # logging is configured in the application lifespan
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
