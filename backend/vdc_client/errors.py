# vdc_client/errors.py
#
# Every failure the client surfaces is a ClientError. The flow turns them
# into banner state; nothing here is retried automatically.


class ClientError(Exception):
    default_message = "Something went wrong"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidArgumentError(ClientError, ValueError):
    default_message = "Invalid argument"


class TransientError(ClientError):
    """Transport failure or 5xx. Safe to retry by hand, never retried for you."""
    default_message = "Network error, please try again"


class ApiError(ClientError):
    """4xx answer from the backend."""

    def __init__(self, message=None, status_code=None, payload=None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}


class ConflictError(ApiError):
    """409: the consultation already ended, or a party is busy elsewhere."""
    default_message = "Consultation state changed, refreshing"


class MediaPermissionError(ClientError):
    default_message = "Camera or microphone is unavailable; the call cannot start"


class MediaTransportError(ClientError):
    default_message = "Could not connect to the video room"
