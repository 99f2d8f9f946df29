import logging

from utils.logger import setup_logging


def test_setup_logging_replaces_its_handlers(tmp_path):
    root = logging.getLogger()
    before = list(root.handlers)
    try:
        setup_logging(log_level="warning", log_file=str(tmp_path / "first.log"))
        setup_logging(log_level="debug", log_file=str(tmp_path / "second.log"))

        added = [h for h in root.handlers if h not in before]
        assert len(added) == 2
        assert logging.getLogger("slack_sdk").level == logging.WARNING

        logging.getLogger("engagement.test").info("written to file")
        for handler in added:
            handler.flush()
        assert "written to file" in (tmp_path / "second.log").read_text()
    finally:
        for handler in [h for h in root.handlers if h not in before]:
            root.removeHandler(handler)
            handler.close()
