from __future__ import annotations

import os

import uvicorn

from autocat.logging_setup import setup_logging


def main() -> None:
    setup_logging(os.getenv("AUTOCAT_LOG_LEVEL", "INFO"))
    host = os.getenv("AUTOCAT_HOST", "0.0.0.0")
    port = int(os.getenv("AUTOCAT_PORT", "8080"))
    uvicorn.run("autocat.web_admin:create_app", host=host, port=port, reload=False, factory=True, log_config=None)


if __name__ == "__main__":
    main()
