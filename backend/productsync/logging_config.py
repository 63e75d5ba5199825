import logging
import os

from productsync.config import settings

SYNC_LOGGER = "productsync.services"


def configure_logging(log_file: str | None = None) -> None:
    logging.basicConfig(level=logging.INFO)

    path = settings.sync_log_file if log_file is None else log_file
    if not path:
        return

    sync_logger = logging.getLogger(SYNC_LOGGER)
    sync_logger.setLevel(logging.INFO)
    if any(isinstance(h, logging.FileHandler) and h.baseFilename == os.path.abspath(path) for h in sync_logger.handlers):
        return
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter("[%(asctime)s] %(message)s", "%Y-%m-%d %H:%M:%S"))
    sync_logger.addHandler(handler)
