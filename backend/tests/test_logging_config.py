import logging

from productsync.logging_config import SYNC_LOGGER, configure_logging


def test_sync_log_file_receives_service_lines(tmp_path):
    log_file = tmp_path / "sync-log.txt"
    sync_logger = logging.getLogger(SYNC_LOGGER)
    before = list(sync_logger.handlers)
    try:
        configure_logging(str(log_file))
        configure_logging(str(log_file))
        added = [h for h in sync_logger.handlers if h not in before]

        logging.getLogger("productsync.services.replicator").info("Synced product ID %s to tenant %s as %s", 5, "shop-a", 9)
        for handler in added:
            handler.flush()

        assert len(added) == 1
        assert "Synced product ID 5 to tenant shop-a as 9" in log_file.read_text()
    finally:
        for handler in sync_logger.handlers[:]:
            if handler not in before:
                sync_logger.removeHandler(handler)
                handler.close()


def test_no_file_handler_without_path():
    sync_logger = logging.getLogger(SYNC_LOGGER)
    before = list(sync_logger.handlers)

    configure_logging("")

    assert sync_logger.handlers == before
