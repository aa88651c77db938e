import logging
import random
import re
import string

from ..config import settings
from .errors import AliasTaken, GenerationExhausted, ValidationError

logger = logging.getLogger(__name__)

# Case-sensitive codes: A-Z, a-z, 0-9 (Base62)
CHARSET = string.ascii_uppercase + string.ascii_lowercase + string.digits

ALIAS_MIN_LENGTH = 3
ALIAS_MAX_LENGTH = 50
ALIAS_RE = re.compile(r'^[A-Za-z0-9_-]+$')


def validate_custom_alias(alias: str) -> tuple[bool, str]:
    """
    Validate custom alias for short code.

    Args:
        alias: The custom alias to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not alias or not isinstance(alias, str):
        return False, "Alias cannot be empty"

    # Check length
    if len(alias) < ALIAS_MIN_LENGTH:
        return False, f"Custom alias must be at least {ALIAS_MIN_LENGTH} characters long"

    if len(alias) > ALIAS_MAX_LENGTH:
        return False, f"Custom alias must be at most {ALIAS_MAX_LENGTH} characters"

    if not ALIAS_RE.match(alias):
        return False, "Alias can only contain letters, digits, hyphens and underscores"

    return True, ""


class ShortCodeGenerator:
    """
    Issues short codes.

    ``registry`` arguments only need an ``async is_code_available(code)``
    method; LinkRegistry provides it.

    Args:
        length: Length of generated codes
        max_attempts: Uniqueness checks before giving up
        rng: Random source, replaceable in tests
    """

    def __init__(self, length: int = None, max_attempts: int = None,
                 rng: random.Random = None):
        self.length = length or settings.SHORT_CODE_LENGTH
        self.max_attempts = max_attempts or settings.SHORT_CODE_MAX_ATTEMPTS
        self._rng = rng or random.SystemRandom()

    def generate(self) -> str:
        """Random code, no uniqueness check"""
        return ''.join(self._rng.choices(CHARSET, k=self.length))

    async def generate_unique(self, registry) -> str:
        """
        Generate a code not yet used by the registry.

        Bounded retries keep latency predictable as the keyspace fills.

        Raises:
            GenerationExhausted: If every attempt collided
        """
        for attempt in range(1, self.max_attempts + 1):
            code = self.generate()
            if await registry.is_code_available(code):
                return code
            logger.debug(f"Short code collision on attempt {attempt}: {code}")

        logger.error(f"Unable to generate unique short code after {self.max_attempts} attempts")
        raise GenerationExhausted()

    async def reserve(self, candidate: str, registry) -> str:
        """
        Validate a caller-supplied alias and check it is free.

        Raises:
            ValidationError: Bad length or characters
            AliasTaken: Already used, no retry
        """
        is_valid, error_msg = validate_custom_alias(candidate)
        if not is_valid:
            raise ValidationError(error_msg)

        if not await registry.is_code_available(candidate):
            raise AliasTaken(f"Alias '{candidate}' is already taken")

        return candidate
