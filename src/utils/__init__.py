from .logger_config import setup_logger
from .exceptions import IncidentMapException, DataLoadError, SnapshotFormatError, ConfigError

__all__ = [
    "setup_logger",
    "IncidentMapException",
    "DataLoadError",
    "SnapshotFormatError",
    "ConfigError",
]
