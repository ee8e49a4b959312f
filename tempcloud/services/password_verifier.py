"""One-way hashing and verification of per-file passwords"""

import hashlib
import hmac
import secrets

from tempcloud.utils.logger import get_logger

logger = get_logger(__name__)


HASH_SCHEME = "pbkdf2_sha256"
SALT_BYTES = 16


class PasswordVerifier:
    """
    Salted PBKDF2-SHA256 password hashing

    Hashes are self-describing strings ``pbkdf2_sha256$<iterations>$<salt>$<digest>``
    so the work factor can change without invalidating stored records.
    Comparison uses ``hmac.compare_digest`` so its cost does not depend on
    where the first mismatching byte is.
    """

    def __init__(self, iterations: int = 200_000):
        if iterations <= 0:
            raise ValueError("iterations must be positive")
        self.iterations = iterations

    def hash(self, password: str) -> str:
        """Hash a plaintext password with a fresh random salt"""
        salt = secrets.token_hex(SALT_BYTES)
        digest = self._derive(password, salt, self.iterations)
        return f"{HASH_SCHEME}${self.iterations}${salt}${digest}"

    def verify(self, password: str, stored_hash: str) -> bool:
        """
        Check a plaintext password against a stored hash

        Returns:
            True if the password matches, False otherwise (including for
            hashes this verifier does not understand)
        """
        try:
            scheme, iterations, salt, expected = stored_hash.split("$")
            rounds = int(iterations)
        except (AttributeError, ValueError):
            logger.warning("Unrecognized password hash format")
            return False

        if scheme != HASH_SCHEME or rounds <= 0:
            logger.warning(f"Unsupported password hash scheme: {scheme}")
            return False

        candidate = self._derive(password, salt, rounds)
        return hmac.compare_digest(candidate, expected)

    @staticmethod
    def _derive(password: str, salt: str, iterations: int) -> str:
        return hashlib.pbkdf2_hmac(
            "sha256", password.encode("utf-8"), salt.encode("utf-8"), iterations
        ).hex()
