# bniconnect/errors.py


class BniError(Exception):
    status_code: int = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(BniError):
    """Missing or malformed input. Never retried automatically."""
    status_code = 400


class NotFoundError(BniError):
    status_code = 404


class StoreDegradedError(BniError):
    """
    Raised by a document store backend when it cannot be reached.
    The fallback store catches it and switches backend for the rest of the process.
    """
    status_code = 500


class ImageStoreError(BniError):
    """Inline media could not be externalized; the enclosing save must abort."""
    status_code = 500
