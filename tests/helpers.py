"""
Container builders for the test suite.

The engine only deciphers, so fixtures are produced here with the
cryptography library and the standard codecs.
"""

import bz2
import hashlib
import os
import struct
import zlib

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes


TEST_PASSWORD = "test123"
PLAIN_TEXT = b"This is plain text."
DIGITS_TEXT = b"0123456789" * 1000

OPENSSL_PREFIX = b"Salted__"
QNAP_V1_MAGIC = bytes([7, 95, 95, 81, 67, 83, 95, 95])
QNAP_V2_MAGIC = bytes([75, 202, 148, 114, 94, 131, 28, 49])


def pkcs7_pad(data: bytes) -> bytes:
    padder = padding.PKCS7(128).padder()
    return padder.update(data) + padder.finalize()


def cbc_encrypt(key: bytes, iv: bytes, data: bytes) -> bytes:
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return encryptor.update(pkcs7_pad(data)) + encryptor.finalize()


def openssl_key_iv(password: bytes, salt: bytes):
    """Reference EVP_BytesToKey (MD5, one iteration) built on hashlib."""
    material = b""
    previous = b""
    while len(material) < 48:
        previous = hashlib.md5(previous + password + salt).digest()
        material += previous
    return material[:32], material[32:48]


def deflate_raw(data: bytes) -> bytes:
    compressor = zlib.compressobj(9, zlib.DEFLATED, -zlib.MAX_WBITS)
    return compressor.compress(data) + compressor.flush()


def make_salted_container(plain: bytes, password: str = TEST_PASSWORD,
                          salt: bytes = b"\x01\x02\x03\x04\x05\x06\x07\x08",
                          compress: bool = False) -> bytes:
    body = bz2.compress(plain) if compress else plain
    key, iv = openssl_key_iv(password.encode(), salt)
    return OPENSSL_PREFIX + salt + cbc_encrypt(key, iv, body)


def stretch(password: bytes) -> bytes:
    return (password * (1 + 32 // len(password)))[:32]


def make_v2_container(plain: bytes, password: str = TEST_PASSWORD,
                      compress: bool = False, size: int = None,
                      key: bytes = None, iv: bytes = None,
                      body: bytes = None) -> bytes:
    key = key or os.urandom(32)
    iv = iv or os.urandom(16)
    if body is None:
        body = deflate_raw(plain) if compress else plain
    if size is None:
        size = len(plain)

    header = QNAP_V2_MAGIC + key + iv + struct.pack('>Q', size)
    encryptor = Cipher(algorithms.AES(stretch(password.encode())), modes.ECB()).encryptor()
    encrypted_header = encryptor.update(header) + encryptor.finalize()

    preamble = QNAP_V2_MAGIC + bytes([0, 1 if compress else 0]) + bytes(6)
    return preamble + encrypted_header + cbc_encrypt(key, iv, body)


def last_plain_byte(container: bytes, password: str) -> int:
    """Last byte a salted container deciphers to under ``password``."""
    salt = container[8:16]
    key, iv = openssl_key_iv(password.encode(), salt)
    ciphertext = container[16:]
    previous = ciphertext[-32:-16] if len(ciphertext) > 16 else iv
    decryptor = Cipher(algorithms.AES(key), modes.ECB()).decryptor()
    block = decryptor.update(ciphertext[-16:]) + decryptor.finalize()
    return block[-1] ^ previous[-1]


def write_file(directory: str, name: str, data: bytes) -> str:
    path = os.path.join(directory, name)
    with open(path, 'wb') as f:
        f.write(data)
    return path


def read_file(path: str) -> bytes:
    with open(path, 'rb') as f:
        return f.read()
