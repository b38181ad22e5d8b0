"""Legacy credential decryption."""

from .legacy import DEFAULT_STRATEGIES, LegacyPasswordDecryptor, Strategy, looks_like_plaintext

__all__ = [
    "LegacyPasswordDecryptor",
    "Strategy",
    "DEFAULT_STRATEGIES",
    "looks_like_plaintext",
]
