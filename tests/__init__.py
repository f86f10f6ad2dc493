# hbsdecipher Test Suite
"""
Test suite including:
- Unit tests (key derivation, block decryption, format detection, codecs)
- Integration tests (end-to-end deciphering, event log, command line)
- Security tests (wrong passwords, truncated and tampered containers)

Run with: pytest
Coverage: coverage run -m pytest && coverage report
"""
