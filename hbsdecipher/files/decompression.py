"""
Decompression Pipeline

Second pass over deciphered data for compressed containers:
    - Salted stream bodies: bzip2 (concatenated streams allowed)
    - QNAP v2 bodies: raw deflate

The deciphered bytes are spooled to a process-private temporary file, which
is rewound and streamed through the decompressor into the destination. The
temporary file is removed on every exit path.
"""

import bz2
import logging
import os
import tempfile
import zlib
from contextlib import contextmanager
from enum import Enum
from typing import BinaryIO, Iterable, Iterator, Optional

from ..core_crypto.block_cipher import write_chunks
from ..errors import DecipherFailed


logger = logging.getLogger(__name__)

# Constants
COPY_SIZE = 64 * 1024
TEMP_PREFIX = ".hbsdec-"
TEMP_SUFFIX = ".tmp"

# bzip2 stream signature: "BZh" + block size digit + block/end-of-stream magic
BZIP2_SIGNATURE = b"BZh"
BZIP2_LEVELS = b"123456789"
BZIP2_BLOCK_MAGIC = bytes.fromhex("314159265359")
BZIP2_EOS_MAGIC = bytes.fromhex("177245385090")
BZIP2_SNIFF_SIZE = 10

DEFLATE_WBITS = -zlib.MAX_WBITS  # raw deflate, no zlib header


class Codec(Enum):
    """Compression algorithms a container body may use."""
    BZIP2 = "bzip2"
    DEFLATE = "deflate"


def looks_like_bzip2(head: bytes) -> bool:
    """Check whether ``head`` starts with a bzip2 stream header."""
    if len(head) < BZIP2_SNIFF_SIZE:
        return False
    return (
        head[:3] == BZIP2_SIGNATURE and
        head[3] in BZIP2_LEVELS and
        head[4:10] in (BZIP2_BLOCK_MAGIC, BZIP2_EOS_MAGIC)
    )


def bunzip2_stream(reader: BinaryIO, writer: BinaryIO,
                   chunk_size: int = COPY_SIZE) -> int:
    """
    Decompress one or more concatenated bzip2 streams.

    Returns:
        Number of bytes written
    """
    decompressor = bz2.BZ2Decompressor()
    bytes_written = 0

    while True:
        data = reader.read(chunk_size)
        if not data:
            break
        while data:
            if decompressor.eof:
                decompressor = bz2.BZ2Decompressor()
            out = decompressor.decompress(data)
            writer.write(out)
            bytes_written += len(out)
            data = decompressor.unused_data if decompressor.eof else b""

    if not decompressor.eof:
        raise EOFError("compressed stream ended before the end-of-stream marker")

    writer.flush()
    return bytes_written


def inflate_stream(reader: BinaryIO, writer: BinaryIO,
                   chunk_size: int = COPY_SIZE) -> int:
    """
    Decompress a raw deflate stream.

    Returns:
        Number of bytes written
    """
    decompressor = zlib.decompressobj(DEFLATE_WBITS)
    bytes_written = 0

    while True:
        data = reader.read(chunk_size)
        if not data:
            break
        out = decompressor.decompress(data)
        writer.write(out)
        bytes_written += len(out)

    out = decompressor.flush()
    writer.write(out)
    bytes_written += len(out)

    if not decompressor.eof:
        raise EOFError("compressed stream ended before the final block")

    writer.flush()
    return bytes_written


_DECOMPRESSORS = {
    Codec.BZIP2: bunzip2_stream,
    Codec.DEFLATE: inflate_stream,
}


def decompress(codec: Codec, reader: BinaryIO, writer: BinaryIO) -> int:
    """
    Decompress ``reader`` into ``writer`` with the given codec.

    Raises:
        DecipherFailed: On any codec or I/O error
    """
    try:
        return _DECOMPRESSORS[codec](reader, writer)
    except (OSError, EOFError, ValueError, zlib.error) as exc:
        raise DecipherFailed(
            f"failed to decipher file: failed to decompress file ({exc})"
        ) from exc


@contextmanager
def intermediate_file(directory: Optional[str] = None) -> Iterator[BinaryIO]:
    """
    Create a private temporary file, removed when the block exits.

    Raises:
        DecipherFailed: If the file cannot be created or removed
    """
    try:
        fd, path = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=TEMP_SUFFIX, dir=directory)
    except OSError as exc:
        raise DecipherFailed(
            f"failed to decipher file: cannot create tmp file ({exc})"
        ) from exc

    failed = False
    try:
        with os.fdopen(fd, "w+b") as tmp:
            yield tmp
    except BaseException:
        failed = True
        raise
    finally:
        try:
            os.remove(path)
        except OSError as exc:
            if not failed:
                raise DecipherFailed(
                    f"failed to decipher file: cannot remove tmp file {path} ({exc})"
                ) from exc
            logger.warning("cannot remove tmp file %s: %s", path, exc)


class DecompressionPipeline:
    """
    Decipher-then-decompress through an intermediate file.

    Example:
        >>> pipeline = DecompressionPipeline(Codec.DEFLATE)
        >>> written = pipeline.run(decryptor.decrypt_stream(fin), fout)
    """

    def __init__(self, codec: Codec, temp_dir: Optional[str] = None):
        self._codec = codec
        self._temp_dir = temp_dir

    @property
    def codec(self) -> Codec:
        return self._codec

    def run(self, chunks: Iterable[bytes], writer: BinaryIO) -> int:
        """
        Spool deciphered chunks, then decompress them into ``writer``.

        Returns:
            Number of decompressed bytes written
        """
        with intermediate_file(self._temp_dir) as tmp:
            deciphered = write_chunks(chunks, tmp)
            logger.debug("deciphering ok (%d bytes). decompressing file (%s)...",
                         deciphered, self._codec.value)

            try:
                tmp.seek(0)
            except OSError as exc:
                raise DecipherFailed(f"failed to decipher file: {exc}") from exc

            return decompress(self._codec, tmp, writer)
