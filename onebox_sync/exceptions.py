"""Exception taxonomy for the sync service."""


class OneboxError(Exception):
    """Base exception for all onebox-sync errors."""


class AuthError(OneboxError):
    """IMAP credentials were rejected. Terminal: the operator must fix them."""


class CapabilityError(OneboxError):
    """The IMAP client or server lacks IDLE / keep-alive support. Terminal."""


class NetworkError(OneboxError):
    """Transport failure or server-initiated close. Drives reconnection."""


class ParseError(OneboxError):
    """A single message could not be parsed into an EmailRecord."""


class ClassificationError(OneboxError):
    """The classifier call failed; callers fall back to the default label."""


class NotificationError(OneboxError):
    """A notification sink rejected or did not receive an event."""


class StoreError(OneboxError):
    """The record store rejected a write or a refresh."""
