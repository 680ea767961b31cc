# content_refresher/logging_setup.py

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Union

NOISY_LOGGERS = ("httpx", "httpcore", "openai")


def setup_logging(log_dir: Union[str, Path] = "logs", level: int = logging.INFO) -> None:
    """Attach file + stream handlers to the root logger once per process."""
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    _root = logging.getLogger()
    if not _root.handlers:
        handler_file = RotatingFileHandler(
            log_dir / "content_refresher.log", maxBytes=10_000_000, backupCount=5, encoding="utf-8"
        )
        handler_stream = logging.StreamHandler()
        logging.basicConfig(
            level=level,  # switch to DEBUG when tuning
            format="%(asctime)s - %(levelname)s - %(message)s",
            handlers=[handler_file, handler_stream],
        )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
