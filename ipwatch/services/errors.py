class MonitoringError(Exception):
    """Base class for failures scoped to a single monitoring operation."""


class AlertNotFound(MonitoringError):
    pass


class InvalidStatus(MonitoringError):
    pass


class InvalidUser(MonitoringError):
    pass


class InvalidAction(MonitoringError):
    pass


class DuplicateAlert(MonitoringError):
    pass


class AlertAlreadyConverted(MonitoringError):
    pass


class ConversionFailed(MonitoringError):
    pass


class ScanInProgress(MonitoringError):
    pass
