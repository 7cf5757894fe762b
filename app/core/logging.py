import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Set root logger format and level. Safe to call more than once."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger().setLevel(level.upper())
    # SQL echo is controlled by the engine, keep the sqlalchemy logger quiet by default
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
