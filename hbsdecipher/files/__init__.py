# File Decipher Module
"""
Container handling:
- Format detection from magic bytes
- Decipher orchestration (key derivation, decryption, decompression)
- bzip2 / raw deflate decompression through a temporary file
- Plaintext size verification for QNAP v2 containers
"""

# Lazy imports to avoid RuntimeWarning when running module directly
def __getattr__(name):
    """Lazy import to avoid circular import issues when running module directly."""
    from . import file_decipher
    return getattr(file_decipher, name)

__all__ = [
    'FileDecipher',
    'DecipherRequest',
    'DecipherOutcome',
    'decipher',
    'decipher_file',
    'get_file_info',
]
