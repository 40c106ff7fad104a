"""Run the engine API with uvicorn.

Run with:  python3 serve.py
"""

from __future__ import annotations

import os

import uvicorn

from ruckplan.logging_config import get_logger
from ruckplan_api.main import create_app

logger = get_logger(__name__)


def main() -> None:
    host = os.getenv("RUCKPLAN_HOST", "127.0.0.1")
    port = int(os.getenv("RUCKPLAN_PORT", "8000"))
    app = create_app()
    logger.info("api_starting", extra={"ctx_host": host, "ctx_port": port})
    uvicorn.run(app, host=host, port=port, log_level="warning")


if __name__ == "__main__":
    main()
