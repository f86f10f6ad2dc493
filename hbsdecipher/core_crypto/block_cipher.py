"""
Streaming AES/CBC/PKCS5Padding decryption.

The ciphertext is read in chunks of 16 blocks. Every chunk but the last is
decrypted and emitted whole; the last one must be a whole number of blocks
and has its trailing padding removed.
"""

from typing import BinaryIO, Generator

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ..errors import DecipherFailed


# Constants
BLOCK_SIZE = 16
KEY_SIZE = 32
CHUNK_SIZE = BLOCK_SIZE * BLOCK_SIZE  # 256 bytes


def pkcs5_trim(src: bytes, block_size: int = BLOCK_SIZE) -> bytes:
    """
    Remove trailing-byte padding from the final decrypted chunk.

    The last byte gives the padding length. It must be at least 1, at most
    one block, and shorter than the chunk itself.

    Raises:
        DecipherFailed: If the padding is invalid (usually a wrong password)
    """
    if not src:
        raise DecipherFailed("failed to decipher file: invalid padding, maybe incorrect password")

    padding_len = src[-1]
    if padding_len == 0 or padding_len > block_size or padding_len >= len(src):
        raise DecipherFailed("failed to decipher file: invalid padding, maybe incorrect password")

    return src[:len(src) - padding_len]


class CBCStreamDecryptor:
    """
    Streaming AES-256-CBC decryptor.

    Example:
        >>> decryptor = CBCStreamDecryptor(key, iv)
        >>> written = decryptor.decrypt_to(fin, fout)
    """

    def __init__(self, key: bytes, iv: bytes, chunk_size: int = CHUNK_SIZE):
        """
        Initialize the decryptor.

        Args:
            key: 256-bit content key
            iv: 16-byte initialization vector
            chunk_size: Read size, a multiple of the block size
        """
        if len(key) != KEY_SIZE:
            raise ValueError(f"Key must be {KEY_SIZE} bytes")
        if chunk_size <= 0 or chunk_size % BLOCK_SIZE != 0:
            raise ValueError(f"Chunk size must be a positive multiple of {BLOCK_SIZE}")

        self._decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        self._chunk_size = chunk_size

    def _read_chunk(self, reader: BinaryIO) -> bytes:
        """Read one chunk; a short result means end of stream."""
        data = b""
        try:
            while len(data) < self._chunk_size:
                part = reader.read(self._chunk_size - len(data))
                if not part:
                    break
                data += part
        except OSError as exc:
            raise DecipherFailed(f"failed to decipher file: {exc}") from exc
        return data

    def _decrypt_final(self, chunk: bytes) -> bytes:
        if not chunk or len(chunk) % BLOCK_SIZE != 0:
            raise DecipherFailed("failed to decipher file: invalid blocksize")

        decrypted = self._decryptor.update(chunk) + self._decryptor.finalize()
        return pkcs5_trim(decrypted, BLOCK_SIZE)

    def decrypt_stream(self, reader: BinaryIO) -> Generator[bytes, None, None]:
        """
        Decrypt a stream in chunks.

        Reads one chunk ahead so the final chunk is known even when the
        ciphertext length is an exact multiple of the chunk size.

        Args:
            reader: Stream positioned at the start of the ciphertext

        Yields:
            Decrypted chunks, the last one without padding
        """
        chunk = self._read_chunk(reader)
        while True:
            following = b""
            if len(chunk) == self._chunk_size:
                following = self._read_chunk(reader)

            if not following:
                yield self._decrypt_final(chunk)
                return

            yield self._decryptor.update(chunk)
            chunk = following

    def decrypt_to(self, reader: BinaryIO, writer: BinaryIO) -> int:
        """
        Decrypt ``reader`` into ``writer``.

        Returns:
            Number of plaintext bytes written
        """
        return write_chunks(self.decrypt_stream(reader), writer)


def write_chunks(chunks, writer: BinaryIO) -> int:
    """Write an iterable of byte chunks, returning the running byte count."""
    bytes_written = 0
    try:
        for chunk in chunks:
            writer.write(chunk)
            bytes_written += len(chunk)
        writer.flush()
    except OSError as exc:
        raise DecipherFailed(f"failed to decipher file: {exc}") from exc
    return bytes_written
