"""Error taxonomy shared by the storage, model and HTTP layers.

Every error carries a stable ``kind`` that clients can switch on and the HTTP
status the API answers with.
"""


class GalleryError(Exception):
    kind = 'GalleryError'
    status_code = 500

    def __init__(self, message=None):
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self):
        return {'error': self.message, 'kind': self.kind}


class ValidationError(GalleryError):
    """Missing or malformed input."""
    kind = 'ValidationError'
    status_code = 400


class NotFound(GalleryError):
    kind = 'NotFound'
    status_code = 404


class UserNotFound(NotFound):
    kind = 'UserNotFound'


class DuplicateError(GalleryError):
    kind = 'DuplicateError'
    status_code = 409


class InvalidCredentials(GalleryError):
    kind = 'InvalidCredentials'
    status_code = 401


class PermissionDenied(GalleryError):
    kind = 'PermissionDenied'
    status_code = 403


class InvalidShare(GalleryError):
    kind = 'InvalidShare'
    status_code = 404


class UnsupportedType(GalleryError):
    kind = 'UnsupportedType'
    status_code = 415


class IOFailure(GalleryError):
    """Underlying storage read or write failed. Never retried automatically."""
    kind = 'IOFailure'
    status_code = 500


class Conflict(GalleryError):
    """A document changed between read and write; the caller may retry."""
    kind = 'Conflict'
    status_code = 409
