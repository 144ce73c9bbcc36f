"""Error taxonomy raised by the grading services and rendered by the HTTP layer."""


class GradingError(Exception):
    """Base class. `status_code` is the HTTP status the error maps to."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(GradingError):
    status_code = 404


class Unauthorized(GradingError):
    status_code = 401


class Forbidden(GradingError):
    status_code = 403


class ExamUnavailable(Forbidden):
    """Candidate tried to start an exam that is not published."""


class InvalidInput(GradingError, ValueError):
    status_code = 400


class Conflict(GradingError):
    """The submission is in a state that does not allow the requested change."""

    status_code = 409


class Internal(GradingError):
    status_code = 500


class StaleWrite(Conflict):
    """Another request updated the submission between our read and our write."""
