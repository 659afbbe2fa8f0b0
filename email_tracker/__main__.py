"""Entry point: ``python -m email_tracker``."""

from __future__ import annotations

import uvicorn

from .config import Settings
from .logging import setup_logging


def main() -> None:
    settings = Settings()
    setup_logging(json=settings.log_json, level=settings.log_level)

    uvicorn.run(
        "email_tracker.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
