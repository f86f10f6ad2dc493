"""
Integration tests for hbsdecipher.

Tests end-to-end workflows combining multiple modules:
- Engine + event log
- Command line front end (output naming, traversal, exit codes)
"""

import json
import os
import tempfile

import pytest

from hbsdecipher import main as cli
from hbsdecipher.files.file_decipher import FileDecipher
from hbsdecipher.errors import DecipherFailed, NotCipheredFile
from hbsdecipher.integration.event_logger import (
    EventLogger, EventType, DecipherEvent, get_path_hash
)
from tests.helpers import (
    TEST_PASSWORD, PLAIN_TEXT, DIGITS_TEXT, QNAP_V1_MAGIC,
    make_salted_container, make_v2_container, read_file, write_file
)


class TestEventLogger:
    """Tests for the decipher event log."""

    def test_log_event(self):
        logger = EventLogger()
        event = logger.log(EventType.DECIPHER_START, "/backup/file.txt")
        assert event.name == "file.txt"
        assert event.path_hash == get_path_hash("/backup/file.txt")
        assert "/backup" not in event.to_json()

    def test_callbacks(self):
        logger = EventLogger()
        seen = []

        def observer(event):
            seen.append(event)

        logger.add_callback(observer)
        logger.log(EventType.DECIPHER_SUCCESS, "a.bin", size=3)
        logger.remove_callback(observer)
        logger.log(EventType.DECIPHER_SUCCESS, "b.bin", size=4)
        assert [e.name for e in seen] == ["a.bin"]

    def test_failing_callback_isolated(self):
        logger = EventLogger()

        def broken(event):
            raise RuntimeError("observer bug")

        logger.add_callback(broken)
        logger.log(EventType.DECIPHER_START, "a.bin")
        assert len(logger.get_all_events()) == 1

    def test_summary(self):
        logger = EventLogger()
        logger.log(EventType.DECIPHER_START, "a")
        logger.log(EventType.DECIPHER_SUCCESS, "a")
        logger.log(EventType.DECIPHER_START, "b")
        logger.log(EventType.FORMAT_REJECTED, "b")
        logger.log(EventType.DECIPHER_START, "c")
        logger.log(EventType.INTEGRITY_FAILED, "c")
        assert logger.summary() == {
            'started': 3, 'succeeded': 1, 'rejected': 1, 'failed': 1,
        }

    def test_max_events(self):
        logger = EventLogger(max_events=2)
        for name in ("a", "b", "c"):
            logger.log(EventType.DECIPHER_START, name)
        assert [e.name for e in logger.get_all_events()] == ["b", "c"]

    def test_export_import(self):
        logger = EventLogger()
        logger.log(EventType.DECIPHER_FAILED, "x.bin", reason="invalid padding")
        exported = logger.export_log()
        assert json.loads(exported)['type'] == "decipher_failed"

        imported = EventLogger.import_log(exported)
        event = imported.get_all_events()[0]
        assert isinstance(event, DecipherEvent)
        assert event.details == {'reason': "invalid padding"}


class TestEngineEvents:
    """The engine records one outcome per file."""

    def test_success_and_failure_events(self):
        events = EventLogger()
        engine = FileDecipher(TEST_PASSWORD, event_logger=events)

        with tempfile.TemporaryDirectory() as tmpdir:
            good = write_file(tmpdir, "good.bin", make_v2_container(PLAIN_TEXT))
            plain = write_file(tmpdir, "plain.txt", PLAIN_TEXT)
            bad = write_file(tmpdir, "bad.bin",
                             make_v2_container(DIGITS_TEXT, compress=True, size=1))

            engine.decipher_file(good, os.path.join(tmpdir, "good.out"))
            with pytest.raises(NotCipheredFile):
                engine.decipher_file(plain, os.path.join(tmpdir, "plain.out"))
            with pytest.raises(DecipherFailed):
                engine.decipher_file(bad, os.path.join(tmpdir, "bad.out"))

            assert events.summary() == {
                'started': 3, 'succeeded': 1, 'rejected': 1, 'failed': 1,
            }
            detected = events.get_file_events(good)[1]
            assert detected.event_type == EventType.FORMAT_DETECTED
            assert detected.details == {'format': "qnap_v2", 'compressed': False}
            assert events.get_events_by_type(EventType.INTEGRITY_FAILED)[0].name == "bad.bin"


class TestPlainFileName:
    """Tests for output path construction."""

    def test_default_prefix(self):
        assert cli.plain_file_name(os.path.join("backup", "a.txt"), "backup") == \
            os.path.join("backup", "plain_a.txt")

    def test_qnap_bz2_extension_dropped(self):
        assert cli.plain_file_name(os.path.join("backup", "a.txt.qnap.bz2"), "backup") == \
            os.path.join("backup", "plain_a.txt")

    def test_output_directory_keeps_relative_path(self):
        path = os.path.join("backup", "sub", "a.txt")
        assert cli.plain_file_name(path, "backup", "out") == os.path.join("out", "sub", "a.txt")


class TestCommandLine:
    """End-to-end runs of the command line front end."""

    def test_no_arguments(self):
        assert cli.main([]) == cli.EXIT_PARAMETERS

    def test_missing_password(self, monkeypatch):
        monkeypatch.setattr(cli.getpass, "getpass", lambda prompt="": "  ")
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_file(tmpdir, "a.bin", make_salted_container(PLAIN_TEXT))
            assert cli.main([path]) == cli.EXIT_PARAMETERS

    def test_prompted_password(self, monkeypatch):
        monkeypatch.setattr(cli.getpass, "getpass", lambda prompt="": TEST_PASSWORD + "\n")
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_file(tmpdir, "a.bin", make_salted_container(PLAIN_TEXT))
            assert cli.main([path]) == cli.EXIT_OK
            assert read_file(os.path.join(tmpdir, "plain_a.bin")) == PLAIN_TEXT

    def test_directory_into_output_directory(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            src = os.path.join(tmpdir, "src")
            os.makedirs(os.path.join(src, "nested"))
            write_file(src, "a.txt", make_v2_container(PLAIN_TEXT))
            write_file(src, "b.txt.qnap.bz2", make_salted_container(DIGITS_TEXT, compress=True))
            write_file(os.path.join(src, "nested"), "c.txt", make_v2_container(DIGITS_TEXT, compress=True))
            out = os.path.join(tmpdir, "out")

            assert cli.main(["-p", TEST_PASSWORD, "-r", "-o", out, src]) == cli.EXIT_OK

            assert read_file(os.path.join(out, "a.txt")) == PLAIN_TEXT
            assert read_file(os.path.join(out, "b.txt")) == DIGITS_TEXT
            assert read_file(os.path.join(out, "nested", "c.txt")) == DIGITS_TEXT

    def test_non_recursive_skips_subdirectories(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            src = os.path.join(tmpdir, "src")
            os.makedirs(os.path.join(src, "nested"))
            write_file(src, "a.txt", make_v2_container(PLAIN_TEXT))
            write_file(os.path.join(src, "nested"), "c.txt", make_v2_container(PLAIN_TEXT))
            out = os.path.join(tmpdir, "out")

            assert cli.main(["-p", TEST_PASSWORD, "-o", out, src]) == cli.EXIT_OK
            assert os.listdir(out) == ["a.txt"]

    def test_not_ciphered_files_are_not_failures(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            write_file(tmpdir, "notes.txt", b"plain notes")
            write_file(tmpdir, "v1.bin", QNAP_V1_MAGIC + b"\x00" * 64)
            out = os.path.join(tmpdir, "out")
            assert cli.main(["-p", TEST_PASSWORD, "-o", out, tmpdir]) == cli.EXIT_OK

    def test_failures_set_exit_code(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_file(tmpdir, "a.bin", make_v2_container(PLAIN_TEXT))
            assert cli.main(["-p", "wrong-password", path]) == cli.EXIT_DECIPHER

    def test_missing_path(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            missing = os.path.join(tmpdir, "missing")
            assert cli.main(["-p", TEST_PASSWORD, missing]) == cli.EXIT_DECIPHER

    def test_info(self, capsys):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_file(tmpdir, "a.bin", make_v2_container(DIGITS_TEXT, compress=True))
            assert cli.main(["-i", path]) == cli.EXIT_OK
            assert "qnap_v2, compressed" in capsys.readouterr().out
