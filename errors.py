class SplitBillError(Exception):
    """Base class for errors surfaced to API callers"""
    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'error': self.message}


class ValidationError(SplitBillError):
    """Rejected input: negative amount, empty name, bad quantity"""
    status_code = 400


class NotFound(SplitBillError):
    status_code = 404


class Conflict(SplitBillError):
    """Duplicate item assignment"""
    status_code = 409


class ExternalWorkflowError(SplitBillError):
    """The receipt extraction workflow could not be reached or failed"""
    status_code = 502
