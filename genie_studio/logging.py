from __future__ import annotations

import logging
import os
from typing import Optional

from pythonjsonlogger import jsonlogger

from genie_studio.config import settings

# Third-party loggers that are chatty at INFO (every request / token refresh).
_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "google.auth", "azure.core")


def configure_logging(level_name: Optional[str] = None) -> None:
    level = getattr(logging, (level_name or settings.LOG_LEVEL).upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # Avoid duplicate handlers (uvicorn --reload, repeated create_app in tests)
    if root.handlers:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            static_fields={"service": os.getenv("SERVICE_NAME", "genie-studio")},
        )
    )
    root.addHandler(handler)

    noisy_level = os.getenv("THIRD_PARTY_LOG_LEVEL", "WARNING")
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)
