"""Serialize file records to and from metadata store values"""

import json

from pydantic import ValidationError

from tempcloud.models.file_record import FileRecord


class RecordDecodeError(ValueError):
    """Raised when a stored value cannot be turned back into a FileRecord"""
    pass


def encode_record(record: FileRecord) -> str:
    """
    Encode a record as a flat JSON object

    Optional fields are always written, so ``null`` (unlimited / no password)
    survives the round trip distinctly from a present value.
    """
    return json.dumps(record.model_dump(mode="json"), separators=(",", ":"), sort_keys=True)


def decode_record(value) -> FileRecord:
    """
    Decode a stored value into a FileRecord

    Args:
        value: JSON text (or bytes) as returned by the metadata store

    Raises:
        RecordDecodeError: If the value is not valid JSON or misses fields
    """
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8", errors="replace")

    try:
        data = json.loads(value)
    except (TypeError, json.JSONDecodeError) as e:
        raise RecordDecodeError(f"Stored record is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise RecordDecodeError("Stored record is not a JSON object")

    try:
        return FileRecord.model_validate(data)
    except ValidationError as e:
        raise RecordDecodeError(f"Stored record is malformed: {e.error_count()} error(s)") from e
