# backend/qachat/init_db.py
"""Create the messaging tables on the configured database."""

import logging

from .database import Base, engine
from . import models  # noqa: F401

logger = logging.getLogger(__name__)


def init_db() -> None:
    logger.info("Creating tables on %s", engine.url.render_as_string(hide_password=True))
    Base.metadata.create_all(bind=engine)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
