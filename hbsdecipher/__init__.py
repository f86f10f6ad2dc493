# hbsdecipher
"""
Decipher files encrypted by QNAP Hybrid Backup Sync.

Supported containers:
- OpenSSL-compatible salted streams ("Salted__"), optionally bzip2 compressed
- QNAP v2 containers, optionally deflate compressed

QNAP v1 containers are recognized but not supported.
"""

__version__ = "0.1.0"


# Lazy imports to avoid RuntimeWarning when running hbsdecipher.main directly
def __getattr__(name):
    """Lazy import of the public API."""
    if name in ('DecipherError', 'NotCipheredFile', 'DecipherFailed', 'SizeMismatch'):
        from . import errors
        return getattr(errors, name)
    if name in __all__:
        from .files import file_decipher
        return getattr(file_decipher, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

__all__ = [
    'DecipherRequest',
    'DecipherOutcome',
    'FileDecipher',
    'decipher',
    'decipher_file',
    'get_file_info',
    'DecipherError',
    'NotCipheredFile',
    'DecipherFailed',
    'SizeMismatch',
]
