"""Logging setup"""
import logging

from streamdash.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str = None):
    """Configure root logging once per process"""
    level_name = (level or settings.LOG_LEVEL).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)
    # influxdb_client logs every HTTP exchange at DEBUG
    logging.getLogger("influxdb_client").setLevel(logging.WARNING)
