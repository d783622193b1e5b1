# teleconsult/exceptions.py
#
# Raised by services.py, turned into {success: false, message} responses by
# the views.

from rest_framework import status


class ConsultationError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidRequestError(ConsultationError):
    pass


class NotFoundError(ConsultationError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ForbiddenError(ConsultationError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "You are not a participant of this consultation"


class ConflictError(ConsultationError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflicting consultation state"
