"""Unit tests for password hashing"""

import pytest

from tempcloud.services.password_verifier import PasswordVerifier


@pytest.fixture
def verifier():
    return PasswordVerifier(iterations=1000)


def test_hash_is_not_plaintext(verifier):
    hashed = verifier.hash("correct horse")

    assert "correct horse" not in hashed
    assert hashed.startswith("pbkdf2_sha256$1000$")


def test_hashes_are_salted(verifier):
    assert verifier.hash("same") != verifier.hash("same")


def test_verify_matching_password(verifier):
    hashed = verifier.hash("correct horse")
    assert verifier.verify("correct horse", hashed) is True


def test_verify_wrong_password(verifier):
    hashed = verifier.hash("correct horse")

    assert verifier.verify("correct horsE", hashed) is False
    assert verifier.verify("", hashed) is False


def test_verify_uses_iterations_from_hash():
    """Test that hashes stay valid when the work factor changes"""
    old_hash = PasswordVerifier(iterations=500).hash("pw")
    assert PasswordVerifier(iterations=2000).verify("pw", old_hash) is True


@pytest.mark.parametrize(
    "stored_hash",
    ["", "plain-sha256-hex", "md5$1000$salt$digest", "pbkdf2_sha256$zero$salt$digest", "pbkdf2_sha256$0$s$d"],
)
def test_verify_rejects_unknown_formats(verifier, stored_hash):
    assert verifier.verify("pw", stored_hash) is False


def test_iterations_must_be_positive():
    with pytest.raises(ValueError):
        PasswordVerifier(iterations=0)
