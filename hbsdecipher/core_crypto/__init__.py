# Core Cryptography Module
"""
Core cryptographic building blocks:
- EVP_BytesToKey key derivation (salted streams)
- QNAP v2 header key recovery
- Streaming AES-256-CBC decryption with padding removal
"""
