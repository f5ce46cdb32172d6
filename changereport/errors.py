from enum import Enum


class ErrorCategory(str, Enum):
    GENERAL = "General"
    CONFIGURATION = "Configuration"
    DATABASE = "Database"
    AUTHENTICATION = "Authentication"
    EMAIL = "Email"
    ALREADY_RUNNING = "AlreadyRunning"

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self]


_EXIT_CODES = {
    ErrorCategory.GENERAL: 1,
    ErrorCategory.CONFIGURATION: 2,
    ErrorCategory.DATABASE: 3,
    ErrorCategory.AUTHENTICATION: 3,
    ErrorCategory.EMAIL: 4,
    ErrorCategory.ALREADY_RUNNING: 5,
}


class ReportError(Exception):
    category = ErrorCategory.GENERAL


class ConfigurationError(ReportError):
    category = ErrorCategory.CONFIGURATION


class DatabaseError(ReportError):
    category = ErrorCategory.DATABASE


class AuthenticationError(DatabaseError):
    category = ErrorCategory.AUTHENTICATION


class EmailError(ReportError):
    category = ErrorCategory.EMAIL


class NoRecipientsError(EmailError):
    pass


class AlreadyRunningError(ReportError):
    category = ErrorCategory.ALREADY_RUNNING


def classify_error(exc: BaseException) -> ErrorCategory:
    if isinstance(exc, ReportError):
        return exc.category
    return ErrorCategory.GENERAL
