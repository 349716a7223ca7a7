from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler

import uvicorn

from voicenote.api.main import create_app
from voicenote.config import Config

_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_LOG_MAX_BYTES = 5 * 1024 * 1024


def configure_logging(config: Config) -> None:
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    try:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                config.log_dir / "main.log",
                maxBytes=_LOG_MAX_BYTES,
                backupCount=3,
                encoding="utf-8",
            )
        )
    except OSError as exc:
        print(f"File logging disabled: {exc}", file=sys.stderr)
    logging.basicConfig(level=level, format=_LOG_FORMAT, handlers=handlers)


def run() -> None:
    config = Config()
    configure_logging(config)
    host = os.getenv("VOICENOTE_HOST", "127.0.0.1")
    port = int(os.getenv("VOICENOTE_PORT", "8765"))
    uvicorn.run(create_app(config), host=host, port=port, log_level=config.log_level)


if __name__ == "__main__":
    run()
