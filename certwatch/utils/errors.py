class DatabaseError(Exception):
    """Custom exception for database-related errors."""

    def __init__(self, message: str, error_code: str = "DB_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class BusinessLogicError(Exception):
    """Custom exception for business logic errors."""

    def __init__(self, message: str, error_code: str = "BLOC_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class NotFoundError(Exception):
    """Custom exception for resource not found errors."""

    def __init__(
        self, message: str = "Resource not found", error_code: str = "NOT_FOUND"
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class CertificationValidationError(BusinessLogicError):
    """A certification must name either a certification type or a custom name, not both."""

    def __init__(
        self,
        message: str = "Either certificationTypeId or customName is required",
        error_code: str = "CERTIFICATION_INVALID",
    ):
        super().__init__(message, error_code)


class MaterializationError(BusinessLogicError):
    """Reminder events cannot be computed from the given certification or rules."""

    def __init__(self, message: str, error_code: str = "MATERIALIZATION_ERROR"):
        super().__init__(message, error_code)


class DuplicateReminderRuleError(BusinessLogicError):
    """A provider already has a rule for this offset."""

    def __init__(
        self,
        message: str = "A reminder rule for this offset already exists",
        error_code: str = "REMINDER_RULE_EXISTS",
    ):
        super().__init__(message, error_code)


class EmailTransportError(Exception):
    """Raised by email transports when a message could not be handed off."""

    def __init__(self, message: str, error_code: str = "EMAIL_TRANSPORT_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
