"""Error kinds raised by the file lifecycle and its stores"""


class TempCloudError(Exception):
    """Base class for every error returned to callers of the lifecycle engine"""

    code = "INTERNAL_ERROR"
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidRequestError(TempCloudError):
    """Raised when required upload fields are missing or malformed"""

    code = "INVALID_REQUEST"
    status_code = 400
    default_message = "Missing required fields: filename, size"


class FileTooLargeError(TempCloudError):
    """Raised when a declared or written size exceeds the configured ceiling"""

    code = "FILE_TOO_LARGE"
    status_code = 413
    default_message = "File too large"


class RecordNotFoundError(TempCloudError):
    """Raised when no pending or active record exists for an id"""

    code = "NOT_FOUND"
    status_code = 404
    default_message = "File not found or expired"


class UploadIncompleteError(TempCloudError):
    """Raised when finalizing an upload whose bytes never reached the blob store"""

    code = "UPLOAD_INCOMPLETE"
    status_code = 409
    default_message = "File not found in storage. Did the upload complete?"


class AlreadyExpiredError(TempCloudError):
    """Raised when an upload is finalized after its own expiry time"""

    code = "EXPIRED"
    status_code = 410
    default_message = "File has already expired"


class FileExpiredError(TempCloudError):
    """Raised when an active record is accessed past its expiry time"""

    code = "EXPIRED"
    status_code = 410
    default_message = "File has expired"


class DownloadLimitReachedError(TempCloudError):
    """Raised when an active record has no downloads left"""

    code = "LIMIT_REACHED"
    status_code = 410
    default_message = "Download limit reached"


class PasswordRequiredError(TempCloudError):
    code = "PASSWORD_REQUIRED"
    status_code = 401
    default_message = "Password required"


class InvalidPasswordError(TempCloudError):
    code = "INVALID_PASSWORD"
    status_code = 403
    default_message = "Invalid password"


class FileMissingError(TempCloudError):
    """Raised when metadata exists but the blob it points at does not"""

    code = "FILE_MISSING"
    status_code = 404
    default_message = "File missing from storage"


class StoreUnavailableError(TempCloudError):
    """Raised when a backing store times out or cannot be reached. Safe to retry."""

    code = "STORE_UNAVAILABLE"
    status_code = 503
    default_message = "Storage temporarily unavailable"
