import hashlib
import hmac
import logging
import secrets

from ..config import settings

logger = logging.getLogger(__name__)

SALT_BYTES = 16
KEY_BYTES = 32


class CredentialHasher:
    """
    Salted PBKDF2-HMAC-SHA256 hashing for link passwords.

    Hashes are stored as ``salt:hash`` (both hex). A fresh salt is drawn
    for every call, so hashing the same password twice never yields the
    same string.
    """

    def __init__(self, iterations: int = None):
        self.iterations = iterations or settings.PASSWORD_HASH_ITERATIONS

    def _derive(self, password: str, salt: str) -> str:
        key = hashlib.pbkdf2_hmac(
            "sha256",
            password.encode("utf-8"),
            salt.encode("utf-8"),
            self.iterations,
            dklen=KEY_BYTES,
        )
        return key.hex()

    def hash_password(self, password: str) -> str:
        """Hash a password"""
        salt = secrets.token_hex(SALT_BYTES)
        return f"{salt}:{self._derive(password, salt)}"

    def verify_password(self, plain_password: str, salted_hash: str) -> bool:
        """Verify a password against a ``salt:hash`` string"""
        if not plain_password or not salted_hash:
            return False

        salt, sep, expected = salted_hash.partition(":")
        if not sep or not salt or not expected:
            logger.warning("Malformed password hash, refusing verification")
            return False

        return hmac.compare_digest(self._derive(plain_password, salt), expected)
