from __future__ import annotations

import argparse

import uvicorn

from archiv.apps.api.main import create_app


def main() -> None:
    # Serve the API directly for local development; deployments run uvicorn from the image.
    parser = argparse.ArgumentParser(description="Run the Archiv API")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()
    uvicorn.run(create_app(), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
