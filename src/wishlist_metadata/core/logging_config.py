from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

from wishlist_metadata.core.config import AppConfig


def configure_logging(config: AppConfig, *, to_file: bool = True) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))

    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    root.handlers.clear()

    if to_file:
        config.paths.log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            config.paths.log_path,
            maxBytes=2_000_000,
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setFormatter(fmt)
        root.addHandler(file_handler)

    # stdout carries JSON results; log lines go to stderr.
    console = logging.StreamHandler()
    console.setFormatter(fmt)
    root.addHandler(console)
