"""Unit tests for storage key helpers"""

from tempcloud.utils.file_security import build_blob_key, file_id_from_blob_key, get_safe_filename


def test_plain_filename_is_kept():
    assert get_safe_filename("holiday photo.jpg") == "holiday photo.jpg"


def test_path_separators_are_removed():
    assert "/" not in get_safe_filename("../../etc/passwd")
    assert "\\" not in get_safe_filename("..\\windows\\system32")
    assert ".." not in get_safe_filename("../../etc/passwd")


def test_empty_result_gets_placeholder():
    assert get_safe_filename(". .") == "file"


def test_long_filename_is_truncated_keeping_extension():
    safe = get_safe_filename("a" * 500 + ".tar.gz")

    assert len(safe) <= 200
    assert safe.endswith(".gz")


def test_blob_key_layout():
    assert build_blob_key("abc-123", "a.txt") == "uploads/abc-123/a.txt"
    assert build_blob_key("abc-123", "../x/y.txt").count("/") == 2


def test_file_id_from_blob_key():
    assert file_id_from_blob_key("uploads/abc-123/a.txt") == "abc-123"
    assert file_id_from_blob_key("other/abc-123/a.txt") is None
    assert file_id_from_blob_key("uploads/a.txt") is None
