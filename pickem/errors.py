"""
Exception taxonomy for pick submission, settlement and upstream data access.

Every error carries an HTTP status so the API layer can translate it without
a lookup table; services raise them and never return (ok, message) tuples.
"""


class PickemError(Exception):
    """Base class for all domain errors"""

    status_code = 400

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        data = {"error": self.message, "type": self.__class__.__name__}
        if self.details:
            data["details"] = self.details
        return data


class ValidationError(PickemError):
    """Malformed or missing selection fields, unknown references"""

    status_code = 400


class AuthorizationError(PickemError):
    """Actor is not allowed to perform the operation"""

    status_code = 403


class PickLockedError(AuthorizationError):
    """Pick window for the (league, game) is closed for this actor"""

    status_code = 403

    def __init__(self, message, reason=None, **details):
        super().__init__(message, **details)
        self.reason = reason
        if reason:
            self.details["reason"] = reason


class NotFoundError(PickemError):
    status_code = 404


class NotReadyError(PickemError):
    """Settlement attempted before the game is final"""

    status_code = 409


class AlreadySettledError(PickemError):
    """Settlement re-run guard; callers treat this as a no-op"""

    status_code = 409


class UpstreamDataError(PickemError):
    """Box score or game state could not be fetched or understood"""

    status_code = 502


class ConstraintViolationError(PickemError):
    """Unique constraint hit on an upsert; handled by switching to update"""

    status_code = 409
