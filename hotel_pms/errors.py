"""Errors raised by the status engine and surfaced by the API."""


class StatusError(Exception):
    """Base class. `status_code` is the HTTP status the API answers with."""
    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'success': False, 'message': self.message}


class InvalidTransition(StatusError):
    """A manual operation was attempted from a status that does not allow it"""
    status_code = 400

    def __init__(self, action, current_status, message=None):
        super().__init__(message or f"Cannot {action} a stay that is {current_status}")
        self.action = action
        self.current_status = current_status

    def to_dict(self):
        data = super().to_dict()
        data['current_status'] = self.current_status
        data['action'] = self.action
        return data


class NotFound(StatusError):
    """Stay or room missing, or outside the caller's hotel"""
    status_code = 404


class PersistenceFailure(StatusError):
    """The storage layer failed; the unit of work was rolled back"""
    status_code = 500
