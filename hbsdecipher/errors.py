"""
Decipher error taxonomy.

Callers distinguish "not a ciphered file" from "ciphered but failed to
recover" so the two can be reported and counted differently.
"""


class DecipherError(Exception):
    """Base class for all decipher errors."""
    pass


class NotCipheredFile(DecipherError):
    """Raised when the input carries no recognized (or no supported) magic."""

    def __init__(self, message: str = "not a ciphered file"):
        super().__init__(message)


class DecipherFailed(DecipherError):
    """Raised for every fault after the format has been recognized."""

    def __init__(self, message: str = "failed to decipher file"):
        super().__init__(message)


class SizeMismatch(DecipherFailed):
    """Raised when the recovered plaintext size differs from the header's."""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"failed to decipher file: plaintext size mismatch "
            f"(expected {expected} bytes, got {actual})"
        )
        self.expected = expected
        self.actual = actual
