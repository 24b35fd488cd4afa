import logging
import sys

from docvault.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s [%(module)s:%(lineno)d] - %(message)s"


def setup_logging(level: str = None) -> None:
    """Configure the root logger once for the whole service"""
    root = logging.getLogger()
    if getattr(root, "_docvault_configured", False):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel((level or settings.LOG_LEVEL).upper())

    # MinIO / urllib3 are chatty at debug level
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    root._docvault_configured = True
