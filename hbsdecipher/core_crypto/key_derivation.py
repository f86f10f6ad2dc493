"""
Key Derivation

Two password-based schemes, one per container family:

- Salted stream (OpenSSL ``enc``): EVP_BytesToKey with MD5, one iteration.
  Key and IV are taken from concatenated digest rounds over
  ``previous digest || password || salt``.
- QNAP v2: the password is repeated to 32 bytes and used as an AES-256 key
  to decrypt a 64-byte header (AES/ECB/NoPadding) holding the real content
  key, IV and plaintext size.

Decrypted v2 header layout:
    - Magic (8)
    - Content key (32)
    - Content IV (16)
    - Plaintext size (8): big-endian unsigned
"""

import struct
from dataclasses import dataclass
from typing import BinaryIO, Optional, Tuple

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ..errors import DecipherFailed


# Constants
KEY_SIZE = 32               # AES-256
IV_SIZE = 16
BLOCK_SIZE = 16
SALT_SIZE = 8
KDF_ITERATIONS = 1

# QNAP v2 header geometry
V2_PREAMBLE_SIZE = 16
V2_HEADER_SIZE = 64
V2_BODY_OFFSET = V2_PREAMBLE_SIZE + V2_HEADER_SIZE  # 80


@dataclass(frozen=True)
class HeaderInfo:
    """Content key material recovered for one decipher operation."""
    content_key: bytes
    content_iv: bytes
    expected_plain_size: Optional[int] = None

    def __post_init__(self):
        if len(self.content_key) != KEY_SIZE:
            raise ValueError(f"Key must be {KEY_SIZE} bytes")
        if len(self.content_iv) != IV_SIZE:
            raise ValueError(f"IV must be {IV_SIZE} bytes")

    def __repr__(self) -> str:
        return f"HeaderInfo(expected_plain_size={self.expected_plain_size})"


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = b""
    while len(data) < size:
        chunk = stream.read(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


# ============================================================================
# Salted stream (OpenSSL)
# ============================================================================

def evp_bytes_to_key(
    password: bytes,
    salt: Optional[bytes],
    key_len: int = KEY_SIZE,
    iv_len: int = IV_SIZE,
    algorithm: Optional[hashes.HashAlgorithm] = None,
    iterations: int = KDF_ITERATIONS
) -> Tuple[bytes, bytes]:
    """
    Derive key and IV the way OpenSSL's EVP_BytesToKey does.

    Args:
        password: Password bytes
        salt: 8-byte salt, or None for an unsalted derivation
        key_len: Key length in bytes
        iv_len: IV length in bytes
        algorithm: Digest algorithm (default MD5)
        iterations: Times each digest round is hashed

    Returns:
        Tuple of (key, iv)
    """
    if algorithm is None:
        algorithm = hashes.MD5()

    material = bytearray()
    md_buf = bytearray()

    while len(material) < key_len + iv_len:
        digest = hashes.Hash(algorithm)
        if md_buf:
            digest.update(bytes(md_buf))
        digest.update(password)
        if salt is not None:
            digest.update(salt[:SALT_SIZE])
        md_buf = bytearray(digest.finalize())

        for _ in range(1, iterations):
            digest = hashes.Hash(algorithm)
            digest.update(bytes(md_buf))
            md_buf = bytearray(digest.finalize())

        material += md_buf

    key = bytes(material[:key_len])
    iv = bytes(material[key_len:key_len + iv_len])

    # Wipe scratch buffers
    for i in range(len(md_buf)):
        md_buf[i] = 0
    for i in range(len(material)):
        material[i] = 0

    return key, iv


def derive_salted_stream_header(
    stream: BinaryIO,
    password: bytes,
    iterations: int = KDF_ITERATIONS
) -> HeaderInfo:
    """
    Read the salt that follows the "Salted__" magic and derive key and IV.

    The stream must already be positioned after the 8-byte magic.

    Raises:
        DecipherFailed: If the salt cannot be read in full
    """
    try:
        salt = _read_exact(stream, SALT_SIZE)
    except OSError as exc:
        raise DecipherFailed(f"failed to decipher file: {exc}") from exc

    if len(salt) < SALT_SIZE:
        raise DecipherFailed("failed to decipher file: premature end of file")

    key, iv = evp_bytes_to_key(password, salt, iterations=iterations)
    return HeaderInfo(content_key=key, content_iv=iv)


# ============================================================================
# QNAP v2
# ============================================================================

def stretch_password(password: bytes, length: int = KEY_SIZE) -> bytes:
    """Repeat the password end-to-end and truncate to ``length`` bytes."""
    if not password:
        raise ValueError("Password cannot be empty")
    repeat = 1 + length // len(password)
    return (password * repeat)[:length]


def parse_v2_header(plain_header: bytes) -> HeaderInfo:
    """Split a decrypted 64-byte v2 header into its fields."""
    size = struct.unpack('>Q', plain_header[56:64])[0]
    return HeaderInfo(
        content_key=plain_header[8:40],
        content_iv=plain_header[40:56],
        expected_plain_size=size
    )


def decipher_v2_header(stream: BinaryIO, password: bytes) -> HeaderInfo:
    """
    Decrypt the QNAP v2 header and recover the content key material.

    Each of the four 16-byte header blocks is decrypted on its own
    (AES/ECB/NoPadding) with the stretched password as key.

    Args:
        stream: Seekable container stream
        password: Password bytes

    Returns:
        HeaderInfo with content key, IV and expected plaintext size

    Raises:
        DecipherFailed: On an empty password or a truncated header
    """
    try:
        stretched = stretch_password(password)
    except ValueError as exc:
        raise DecipherFailed(f"failed to decipher file: {exc}") from exc

    try:
        stream.seek(V2_PREAMBLE_SIZE)
        encrypted = _read_exact(stream, V2_HEADER_SIZE)
    except OSError as exc:
        raise DecipherFailed(f"failed to decipher file: {exc}") from exc

    if len(encrypted) < V2_HEADER_SIZE:
        raise DecipherFailed(
            "failed to decipher file: failed to read file header (end of stream)"
        )

    decryptor = Cipher(algorithms.AES(stretched), modes.ECB()).decryptor()
    plain = b"".join(
        decryptor.update(encrypted[i:i + BLOCK_SIZE])
        for i in range(0, V2_HEADER_SIZE, BLOCK_SIZE)
    )
    decryptor.finalize()

    return parse_v2_header(plain)
