"""Filename helpers for building storage keys"""

from pathlib import PurePosixPath

from tempcloud.utils.logger import get_logger

logger = get_logger(__name__)


# Prefix under which every uploaded blob is stored
BLOB_KEY_PREFIX = "uploads"

# Longest filename component kept in a blob key
MAX_KEY_FILENAME_LENGTH = 200


def get_safe_filename(filename: str) -> str:
    """
    Get a safe version of filename (remove dangerous characters)

    The original filename is kept verbatim in the metadata record; this
    version is only used inside storage keys.

    Args:
        filename: Original filename

    Returns:
        Safe filename, never empty
    """
    # Remove path separators and other dangerous characters
    safe_name = filename.replace('/', '_').replace('\\', '_')
    safe_name = safe_name.replace('..', '_')
    safe_name = ''.join(ch for ch in safe_name if ch.isprintable())

    # Remove leading/trailing spaces and dots
    safe_name = safe_name.strip('. ')

    if len(safe_name) > MAX_KEY_FILENAME_LENGTH:
        suffix = PurePosixPath(safe_name).suffix[:20]
        safe_name = safe_name[:MAX_KEY_FILENAME_LENGTH - len(suffix)] + suffix

    if not safe_name:
        logger.debug(f"Filename {filename!r} reduced to nothing, using placeholder")
        safe_name = "file"

    return safe_name


def build_blob_key(file_id: str, filename: str) -> str:
    """
    Derive the stable blob key for an upload

    Args:
        file_id: Upload identifier
        filename: User-supplied filename

    Returns:
        Key of the form ``uploads/<id>/<safe filename>``
    """
    return f"{BLOB_KEY_PREFIX}/{file_id}/{get_safe_filename(filename)}"


def file_id_from_blob_key(blob_key: str):
    """Return the upload id encoded in a blob key, or None if it is not one of ours"""
    parts = blob_key.split("/")
    if len(parts) != 3 or parts[0] != BLOB_KEY_PREFIX or not parts[1]:
        return None
    return parts[1]
