"""Error types raised by the gradebook services and rendered by the app error handler."""


class GradebookError(Exception):
    """Base error for the gradebook API"""

    status_code = 500

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self):
        payload = {'success': False, 'error': self.message}
        if self.details:
            payload['details'] = self.details
        return payload


class ValidationError(GradebookError):
    """Missing or malformed input; nothing was written"""

    status_code = 400


class NotFoundError(GradebookError):
    """Referenced AC/LO/RO/student does not exist"""

    status_code = 404

    def __init__(self, kind, identifier):
        super().__init__(f"{kind} '{identifier}' not found",
                         details={'kind': kind, 'id': identifier})


class ConflictError(GradebookError):
    """Duplicate unique-key insert"""

    status_code = 409


class StorageError(GradebookError):
    """Underlying database failure; the whole request was rolled back"""

    status_code = 500
