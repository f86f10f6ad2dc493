"""
File Decipher Module

Deciphers Hybrid Backup Sync containers into plain files:
- Generic salted stream (OpenSSL ``enc``, AES-256-CBC, MD5 key derivation),
  bzip2 decompressed when the deciphered body is a bzip2 stream
- QNAP v2 (encrypted header with content key, AES-256-CBC body),
  raw deflate decompressed when flagged, size verified against the header
- QNAP v1 is recognized and rejected

File Format (QNAP v2):
    [magic (8) | options (2) | reserved (6) | encrypted header (64) | body...]

File Format (salted stream):
    ["Salted__" (8) | salt (8) | body...]
"""

import itertools
import logging
import os
from dataclasses import dataclass, field
from typing import BinaryIO, Iterator, Optional, Union

from ..core_crypto.block_cipher import CHUNK_SIZE, CBCStreamDecryptor, write_chunks
from ..core_crypto.key_derivation import (
    KDF_ITERATIONS, V2_BODY_OFFSET, HeaderInfo,
    decipher_v2_header, derive_salted_stream_header
)
from ..errors import DecipherFailed, NotCipheredFile, SizeMismatch
from ..integration.event_logger import EventLogger, EventType
from .decompression import Codec, DecompressionPipeline, looks_like_bzip2
from .formats import ContainerFormat, FormatKind, detect_format


logger = logging.getLogger(__name__)

Password = Union[str, bytes]


def _password_bytes(password: Password) -> bytes:
    if isinstance(password, str):
        return password.encode("utf-8")
    return bytes(password)


@dataclass(frozen=True)
class DecipherRequest:
    """One input file to decipher into one output file."""
    input_path: str
    output_path: str
    password: Password = field(repr=False)
    verbose: bool = False


@dataclass(frozen=True)
class DecipherOutcome:
    """Result of a successful decipher operation."""
    bytes_written: int


class FileDecipher:
    """
    Decipher engine for a single password.

    Example:
        >>> decipher = FileDecipher("my_password")
        >>> decipher.decipher_file("report.txt.qnap.bz2", "report.txt")
        DecipherOutcome(bytes_written=1024)
    """

    def __init__(
        self,
        password: Password,
        verbose: bool = False,
        chunk_size: int = CHUNK_SIZE,
        kdf_iterations: int = KDF_ITERATIONS,
        temp_dir: Optional[str] = None,
        event_logger: Optional[EventLogger] = None
    ):
        """
        Initialize with password.

        Args:
            password: Decryption password
            verbose: Report progress at INFO level instead of DEBUG
            chunk_size: Ciphertext read size (multiple of 16)
            kdf_iterations: Digest iterations for salted streams
            temp_dir: Directory for intermediate files (default: output dir)
            event_logger: Optional event log to record outcomes in
        """
        self._password = _password_bytes(password)
        self._verbose = verbose
        self._chunk_size = chunk_size
        self._kdf_iterations = kdf_iterations
        self._temp_dir = temp_dir
        self._events = event_logger
        self._derivations = {
            FormatKind.GENERIC_SALTED: self._derive_salted_stream,
            FormatKind.VERSIONED_V2: self._derive_versioned,
        }

    def _log(self, message: str, *args) -> None:
        logger.log(logging.INFO if self._verbose else logging.DEBUG, message, *args)

    def _record(self, event_type: EventType, path: str, **details) -> None:
        if self._events is not None:
            self._events.log(event_type, path, **details)

    # ========================================================================
    # Key derivation
    # ========================================================================

    def _derive_salted_stream(self, stream: BinaryIO) -> HeaderInfo:
        return derive_salted_stream_header(stream, self._password, self._kdf_iterations)

    def _derive_versioned(self, stream: BinaryIO) -> HeaderInfo:
        return decipher_v2_header(stream, self._password)

    # ========================================================================
    # Deciphering
    # ========================================================================

    def decipher_file(self, input_path: str, output_path: str) -> DecipherOutcome:
        """
        Decipher a container file.

        Args:
            input_path: Path to the ciphered file
            output_path: Path for the plain output

        Returns:
            DecipherOutcome with the number of plaintext bytes written

        Raises:
            NotCipheredFile: If the input is not a (supported) container
            DecipherFailed: If a recognized container cannot be recovered
        """
        self._record(EventType.DECIPHER_START, input_path)
        try:
            outcome = self._decipher(input_path, output_path)
        except NotCipheredFile as exc:
            self._record(EventType.FORMAT_REJECTED, input_path, reason=str(exc))
            raise
        except SizeMismatch as exc:
            self._record(EventType.INTEGRITY_FAILED, input_path,
                         expected=exc.expected, actual=exc.actual)
            raise
        except DecipherFailed as exc:
            self._record(EventType.DECIPHER_FAILED, input_path, reason=str(exc))
            raise

        self._record(EventType.DECIPHER_SUCCESS, input_path,
                     size=outcome.bytes_written)
        return outcome

    def _decipher(self, input_path: str, output_path: str) -> DecipherOutcome:
        try:
            fin = open(input_path, 'rb')
        except OSError as exc:
            raise DecipherFailed(f"failed to decipher file: invalid input file: {exc}") from exc

        with fin:
            container = detect_format(fin)
            self._record(EventType.FORMAT_DETECTED, input_path,
                         format=container.kind.value, compressed=container.compressed)

            if container.kind == FormatKind.LEGACY_V1:
                self._log("decipher %s (type: 1, compressed: %s)", input_path, container.compressed)
                raise NotCipheredFile(
                    "not a ciphered file: HBS cipher type 1 is currently not supported"
                )

            if not container.decipherable:
                self._log("%s is not recognized as ciphered file", input_path)
                raise NotCipheredFile()

            self._log("decipher %s (type: %s)", input_path, container)
            header = self._derivations[container.kind](fin)

            try:
                fout = open(output_path, 'wb')
            except OSError as exc:
                raise DecipherFailed(f"failed to decipher file: invalid target file: {exc}") from exc

            with fout:
                bytes_written = self._decipher_body(container, header, fin, fout, output_path)

        if (header.expected_plain_size is not None
                and bytes_written != header.expected_plain_size):
            raise SizeMismatch(header.expected_plain_size, bytes_written)

        self._log("%s deciphered into %s (%d bytes)", input_path, output_path, bytes_written)
        return DecipherOutcome(bytes_written=bytes_written)

    def _decipher_body(self, container: ContainerFormat, header: HeaderInfo,
                       fin: BinaryIO, fout: BinaryIO, output_path: str) -> int:
        if container.kind == FormatKind.VERSIONED_V2:
            try:
                fin.seek(V2_BODY_OFFSET)
            except OSError as exc:
                raise DecipherFailed(f"failed to decipher file: {exc}") from exc

        decryptor = CBCStreamDecryptor(header.content_key, header.content_iv, self._chunk_size)
        chunks = decryptor.decrypt_stream(fin)

        codec, chunks = self._select_codec(container, chunks)
        if codec is None:
            return write_chunks(chunks, fout)

        self._log("deciphering with %s decompression...", codec.value)
        temp_dir = self._temp_dir
        if temp_dir is None:
            temp_dir = os.path.dirname(os.path.abspath(output_path))
        return DecompressionPipeline(codec, temp_dir).run(chunks, fout)

    def _select_codec(self, container: ContainerFormat, chunks: Iterator[bytes]):
        """Pick the decompressor, peeking at the first chunk for salted streams."""
        if container.kind == FormatKind.VERSIONED_V2:
            return (Codec.DEFLATE if container.compressed else None), chunks

        first = next(chunks)
        chunks = itertools.chain([first], chunks)
        return (Codec.BZIP2 if looks_like_bzip2(first) else None), chunks


def decipher(request: DecipherRequest,
             event_logger: Optional[EventLogger] = None) -> DecipherOutcome:
    """Decipher one request. Raises NotCipheredFile or DecipherFailed."""
    engine = FileDecipher(
        request.password,
        verbose=request.verbose,
        event_logger=event_logger
    )
    return engine.decipher_file(request.input_path, request.output_path)


def decipher_file(input_path: str, output_path: str,
                  password: Password, **kwargs) -> DecipherOutcome:
    """Convenience function for file deciphering."""
    engine = FileDecipher(password, **kwargs)
    return engine.decipher_file(input_path, output_path)


def get_file_info(path: str) -> dict:
    """
    Get information about a container without deciphering it.

    Args:
        path: Path to the file

    Returns:
        Dict with format metadata
    """
    with open(path, 'rb') as f:
        container = detect_format(f)

    return {
        'format': container.kind.value,
        'compressed': container.compressed,
        'decipherable': container.decipherable,
        'size': os.path.getsize(path),
    }
