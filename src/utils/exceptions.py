class IncidentMapException(Exception):
    """Base Exception Class"""
    pass
class DataLoadError(IncidentMapException):
    """Error class for when theres an issue fetching or reading a data snapshot"""
    pass
class SnapshotFormatError(IncidentMapException):
    """Error for records that cannot be normalized"""
    pass
class ConfigError(IncidentMapException):
    """Config Error"""
    pass
