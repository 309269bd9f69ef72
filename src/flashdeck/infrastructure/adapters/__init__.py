from .error_log import HttpErrorReporter, LoggingErrorReporter
from .http_gateway import HttpSchedulingGateway

__all__ = ["HttpSchedulingGateway", "HttpErrorReporter", "LoggingErrorReporter"]
