"""Serve the limiter API: ``python -m window_limiter``."""

from __future__ import annotations

import os

import uvicorn


def main() -> None:
    uvicorn.run(
        "window_limiter.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        # request_id_middleware already logs one line per request
        access_log=False,
    )


if __name__ == "__main__":
    main()
