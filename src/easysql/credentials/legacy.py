"""Decryption of passwords exported by a legacy connection-profile format.

Two generations of that format exist. The newer one uses AES-128-CBC with a
fixed key; the older one used Blowfish or plain XOR keyed by a fixed
passphrase. None of them needs user-supplied key material, so decryption is
an ordered walk over the known schemes, accepting the first result that
looks like a password.
"""

import hashlib
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

from cryptography.hazmat.decrepit.ciphers.algorithms import Blowfish
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ..core.exceptions import DecryptionFailed, ErrorCodes
from ..logging import get_logger

AES_KEY = b"libcckeylibcckey"
AES_IV = b"libcciv libcciv "
LEGACY_PASSPHRASE = b"3DC5CA39"
LEGACY_DIGEST = hashlib.sha1(LEGACY_PASSPHRASE).digest()
XOR_TABLE = AES_KEY

# Printable ASCII, then CJK punctuation, ideographs and fullwidth forms
_ALLOWED_RANGES: Tuple[Tuple[int, int], ...] = (
    (0x20, 0x7E),
    (0x3000, 0x303F),
    (0x3400, 0x4DBF),
    (0x4E00, 0x9FFF),
    (0xF900, 0xFAFF),
    (0xFF00, 0xFFEF),
)


def looks_like_plaintext(text: Optional[str]) -> bool:
    """Return True if ``text`` is non-empty printable ASCII or CJK."""
    if not text:
        return False
    return all(any(low <= ord(ch) <= high for low, high in _ALLOWED_RANGES) for ch in text)


def aes_iv_candidates() -> List[bytes]:
    """IV permutations seen in exported profiles, in trial order."""
    return [
        AES_IV,
        AES_IV[::-1],
        AES_KEY,
        hashlib.md5(AES_IV).digest(),
        AES_IV.hex()[:16].encode("ascii"),
        bytes(16),
    ]


def strip_padding(data: bytes, block_size: int) -> bytes:
    """Remove validated PKCS#7-style padding, else trailing NUL bytes."""
    if data:
        pad = data[-1]
        if 0 < pad <= block_size and pad <= len(data) and data[-pad:] == bytes([pad]) * pad:
            return data[:-pad]
    return data.rstrip(b"\x00")


def pkcs7_unpad(data: bytes, block_size: int) -> Optional[bytes]:
    unpadder = padding.PKCS7(block_size * 8).unpadder()
    try:
        return unpadder.update(data) + unpadder.finalize()
    except ValueError:
        return None


def xor_cycle(data: bytes, key: bytes) -> bytes:
    return bytes(b ^ key[i % len(key)] for i, b in enumerate(data))


def _decode(data: Optional[bytes]) -> Optional[str]:
    if data is None:
        return None
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


@dataclass(frozen=True)
class Strategy:
    """One decryption scheme yielding candidate plaintexts."""

    name: str
    candidates: Callable[[bytes], Iterator[Optional[bytes]]]


def _block_decrypt(cipher: Cipher, data: bytes, block_size: int) -> Optional[bytes]:
    if not data or len(data) % block_size:
        return None
    decryptor = cipher.decryptor()
    return decryptor.update(data) + decryptor.finalize()


def _unpadded(raw: Optional[bytes], block_size: int) -> Iterator[Optional[bytes]]:
    if raw is None:
        return
    yield pkcs7_unpad(raw, block_size)
    yield strip_padding(raw, block_size)


def _aes_candidates(data: bytes) -> Iterator[Optional[bytes]]:
    for iv in aes_iv_candidates():
        cipher = Cipher(algorithms.AES(AES_KEY), modes.CBC(iv))
        yield from _unpadded(_block_decrypt(cipher, data, 16), 16)


def _blowfish(key: bytes) -> Callable[[bytes], Iterator[Optional[bytes]]]:
    def candidates(data: bytes) -> Iterator[Optional[bytes]]:
        cipher = Cipher(Blowfish(key), modes.ECB())
        yield from _unpadded(_block_decrypt(cipher, data, 8), 8)

    return candidates


def _xor(key: bytes) -> Callable[[bytes], Iterator[Optional[bytes]]]:
    def candidates(data: bytes) -> Iterator[Optional[bytes]]:
        yield xor_cycle(data, key).rstrip(b"\x00")

    return candidates


DEFAULT_STRATEGIES: Tuple[Strategy, ...] = (
    Strategy("aes-128-cbc", _aes_candidates),
    Strategy("blowfish-ecb-sha1", _blowfish(LEGACY_DIGEST[:8])),
    Strategy("blowfish-ecb-passphrase", _blowfish(LEGACY_PASSPHRASE)),
    Strategy("xor-sha1", _xor(LEGACY_DIGEST)),
    Strategy("xor-table", _xor(XOR_TABLE)),
)


class LegacyPasswordDecryptor:
    """Recover plaintext passwords from legacy hex ciphertexts.

    Strategies run in a fixed order, newest scheme first, and the first
    candidate accepted by ``looks_like_plaintext`` wins.

    Example:
        >>> decryptor = LegacyPasswordDecryptor()
        >>> decryptor.decrypt("6d3c...")
        'secret'
    """

    def __init__(self, strategies: Sequence[Strategy] = DEFAULT_STRATEGIES) -> None:
        self.strategies = tuple(strategies)
        self.logger = get_logger("easysql.credentials")

    def decrypt(self, ciphertext_hex: str) -> str:
        """Return the plaintext, or an empty string when every scheme fails."""
        try:
            return self.decrypt_or_raise(ciphertext_hex)
        except DecryptionFailed as e:
            self.logger.debug("Legacy password not recovered", error_code=e.code)
            return ""

    def decrypt_or_raise(self, ciphertext_hex: str) -> str:
        """Return the plaintext.

        Raises:
            DecryptionFailed: If the input is not hex or no scheme yields a
                plausible plaintext.
        """
        text = (ciphertext_hex or "").strip()
        try:
            data = bytes.fromhex(text)
        except ValueError as e:
            raise DecryptionFailed(
                "Ciphertext is not valid hex",
                code=ErrorCodes.DECRYPTION_FAILED,
                context={"length": len(text)},
                cause=e,
            ) from e
        if not data:
            raise DecryptionFailed("Ciphertext is empty", code=ErrorCodes.DECRYPTION_FAILED)

        for strategy in self.strategies:
            for candidate in strategy.candidates(data):
                plaintext = _decode(candidate)
                if looks_like_plaintext(plaintext):
                    self.logger.debug("Legacy password recovered", strategy=strategy.name)
                    return plaintext

        raise DecryptionFailed(
            "No legacy scheme produced a valid password",
            code=ErrorCodes.DECRYPTION_FAILED,
            context={"length": len(data), "strategies": [s.name for s in self.strategies]},
        )
