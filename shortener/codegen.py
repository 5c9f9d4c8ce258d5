"""Random short code generation.

Codes are drawn with nanoid, which samples ``os.urandom`` and masks bytes onto the
alphabet without modulo bias, so every position is uniform over the 62 characters.
"""

from nanoid import generate

from shortener.config import get_settings

__all__ = ["ALPHABET", "generate_short_code"]

settings = get_settings()

ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"


def generate_short_code(length: int = settings.SHORT_CODE_LENGTH) -> str:
    assert isinstance(length, int) and length > 0, f"length must be a positive integer, got {length!r}"
    return generate(ALPHABET, length)
