"""
Container Format Detection

Classifies a stream by its leading magic bytes.

Recognized containers:
    - Generic salted stream (OpenSSL ``enc``): "Salted__" + salt (8)
    - QNAP v1: recognized, not supported
    - QNAP v2: magic (8) + reserved (1) + compressed flag (1)
"""

from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO


# Magic bytes
MAGIC_SIZE = 8
OPENSSL_PREFIX = b"Salted__"
QNAP_V1_MAGIC = bytes([7, 95, 95, 81, 67, 83, 95, 95])
QNAP_V2_MAGIC = bytes([75, 202, 148, 114, 94, 131, 28, 49])

# QNAP v2 compression options following the magic
V2_OPTIONS_SIZE = 2
V2_COMPRESSED_FLAG = 1


class FormatKind(Enum):
    """Container families the detector can tell apart."""
    UNRECOGNIZED = "unrecognized"
    LEGACY_V1 = "qnap_v1"
    GENERIC_SALTED = "openssl"
    VERSIONED_V2 = "qnap_v2"


@dataclass(frozen=True)
class ContainerFormat:
    """Detected container format. ``compressed`` only applies to QNAP v2."""
    kind: FormatKind
    compressed: bool = False

    @property
    def decipherable(self) -> bool:
        return self.kind in (FormatKind.GENERIC_SALTED, FormatKind.VERSIONED_V2)

    def __str__(self) -> str:
        if self.kind == FormatKind.VERSIONED_V2:
            return f"{self.kind.value} (compressed: {self.compressed})"
        return self.kind.value


UNRECOGNIZED = ContainerFormat(FormatKind.UNRECOGNIZED)


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    """Read ``size`` bytes, returning fewer only at end of stream."""
    data = b""
    while len(data) < size:
        chunk = stream.read(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


def detect_format(stream: BinaryIO) -> ContainerFormat:
    """
    Detect the container format of a stream positioned at offset 0.

    Advances the stream past the magic (and the QNAP v2 options). A short
    or failed read is reported as unrecognized, never as an I/O error.

    Args:
        stream: Readable binary stream

    Returns:
        The detected ContainerFormat
    """
    try:
        magic = _read_exact(stream, MAGIC_SIZE)
    except OSError:
        return UNRECOGNIZED

    if len(magic) < MAGIC_SIZE:
        return UNRECOGNIZED

    if magic == OPENSSL_PREFIX:
        return ContainerFormat(FormatKind.GENERIC_SALTED)

    if magic == QNAP_V1_MAGIC:
        return ContainerFormat(FormatKind.LEGACY_V1)

    if magic == QNAP_V2_MAGIC:
        try:
            options = _read_exact(stream, V2_OPTIONS_SIZE)
        except OSError:
            return UNRECOGNIZED
        if len(options) < V2_OPTIONS_SIZE:
            return UNRECOGNIZED
        return ContainerFormat(
            FormatKind.VERSIONED_V2,
            compressed=options[1] == V2_COMPRESSED_FLAG
        )

    return UNRECOGNIZED
