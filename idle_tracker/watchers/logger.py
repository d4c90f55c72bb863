import logging
import sys
from pathlib import Path

__all__ = ["LOG_FORMAT", "configure_logger", "logger"]

LOG_FORMAT = "[%(asctime)s] %(message)s"
LOG_DATEFMT = "%H:%M:%S"

logger = logging.getLogger("idle_tracker")


def configure_logger(log_path: Path) -> logging.Logger:
    """ログをファイルへ出力する. 開けない場合はコンソールに切り替える."""
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.INFO)

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        _h: logging.Handler = logging.FileHandler(log_path, encoding="utf-8")
    except OSError:
        _h = logging.StreamHandler(sys.stdout)
    _h.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    logger.addHandler(_h)
    return logger
