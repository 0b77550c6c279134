"""
Short code generation strategies for URL shortener.
Uses Strategy Pattern to allow different generation algorithms.
"""

import string
import random
from abc import ABC, abstractmethod
from typing import Optional

from shortlinks_app.errors import ValidationError

ALPHABET = string.ascii_letters + string.digits  # 62 symbols
MIN_CODE_LENGTH = 3
MAX_CODE_LENGTH = 10

# Top-level app routes that win over the redirect route
RESERVED_CODES = frozenset({"health", "docs", "redoc"})


def validate_short_code(code: str) -> str:
    """
    Check a short code against the shared format rules.

    Applies to caller-supplied custom codes as well as generated ones:
    length 3-10, ASCII letters and digits only, and not one of the app's
    own top-level paths.

    Raises:
        ValidationError: If the code does not match the format
    """
    if not isinstance(code, str) or not MIN_CODE_LENGTH <= len(code) <= MAX_CODE_LENGTH:
        raise ValidationError(
            f"Short code must be between {MIN_CODE_LENGTH} and {MAX_CODE_LENGTH} characters",
            short_code=code,
        )
    if any(ch not in ALPHABET for ch in code):
        raise ValidationError("Short code may only contain letters and digits", short_code=code)
    if code in RESERVED_CODES:
        raise ValidationError("Short code is reserved", short_code=code)
    return code


class ShortCodeStrategy(ABC):
    """Abstract base class for short code generation strategies"""

    @abstractmethod
    def generate(self, length: int = 6) -> str:
        """
        Generate a candidate short code.

        Uniqueness is NOT guaranteed here; the URL store's unique constraint
        decides, and the service regenerates on conflict.

        Args:
            length: Number of characters (3-10)

        Returns:
            A candidate short code string
        """
        pass


class RandomShortCodeStrategy(ShortCodeStrategy):
    """
    Uniform random draw from the 62-symbol alphanumeric alphabet.

    Pure function, no I/O. With 6 characters there are 62^6 (~56.8 billion)
    codes, so collisions are rare and a retry is cheap.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()
        self.characters = ALPHABET

    def generate(self, length: int = 6) -> str:
        if not MIN_CODE_LENGTH <= length <= MAX_CODE_LENGTH:
            raise ValidationError(
                f"Short code length must be between {MIN_CODE_LENGTH} and {MAX_CODE_LENGTH}",
                length=length,
            )
        while True:
            code = ''.join(self.rng.choice(self.characters) for _ in range(length))
            if code not in RESERVED_CODES:
                return code
