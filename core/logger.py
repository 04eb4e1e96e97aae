import logging

from core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

log = logging.getLogger("risk")


def setup_logging(level: str | None = None) -> None:
    """
    Configure root logging once (idempotent).
    """
    root = logging.getLogger()
    lvl = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)
    root.setLevel(lvl)

    if root.handlers:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
