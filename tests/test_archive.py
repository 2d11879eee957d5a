"""
Tests for zip packaging.

ArchiveBuilder is exercised against a fake engine and write stream that
let each test fire events in a chosen order, and against the real
ZipArchiver on a temporary directory.
"""

import logging
import os
import zipfile
from unittest.mock import Mock, patch

import pytest

from veracode_client.archive import ArchiveBuilder, SettleOnce, WriteStream, ZipArchiver
from veracode_client.exceptions import ArchiveError
from veracode_client.models import ArchiveWarning


class FakeEmitter:
    """Records listeners so tests can simulate events"""

    def __init__(self):
        self.registered_listeners = {}

    def on(self, event, listener):
        self.registered_listeners[event] = listener
        return self

    def simulate(self, event, *args):
        self.registered_listeners[event](*args)


class FakeArchiver(FakeEmitter):

    def __init__(self, pointer=420):
        super().__init__()
        self.pointer = Mock(return_value=pointer)
        self.pipe = Mock()
        self.glob = Mock()
        self.finalize = Mock()


class TestArchiveBuilderEvents:
    """Test cases for joining engine events with stream completion"""

    def setup_method(self):
        """Setup for each test"""
        self.write_stream = FakeEmitter()
        self.archiver = FakeArchiver()
        self.stream_factory = Mock(return_value=self.write_stream)
        self.builder = ArchiveBuilder(
            engine_factory=Mock(return_value=self.archiver),
            stream_factory=self.stream_factory,
        )

    def run_with_events(self, *events):
        def finalize():
            for source, event, args in events:
                source.simulate(event, *args)
        self.archiver.finalize.side_effect = finalize
        return self.builder.create_zip_archive("testdir", "test", None)

    def test_returns_archive_size(self):
        size = self.run_with_events((self.write_stream, "close", ()))
        assert size == 420

    def test_wires_engine_and_stream(self):
        self.run_with_events((self.write_stream, "close", ()))

        archive_path = ArchiveBuilder.default_archive_path("testdir")
        self.stream_factory.assert_called_once_with(archive_path)
        self.archiver.pipe.assert_called_once_with(self.write_stream)
        self.archiver.glob.assert_called_once_with("test", cwd="testdir", ignore=None)
        self.archiver.finalize.assert_called_once()

    def test_exclude_pattern_passed_to_glob(self):
        self.archiver.finalize.side_effect = lambda: self.write_stream.simulate("close")
        self.builder.create_zip_archive("testdir", "**/*", "node_modules/*")
        self.archiver.glob.assert_called_once_with("**/*", cwd="testdir", ignore="node_modules/*")

    def test_rejects_on_fatal_warning(self):
        warning = ArchiveWarning(code="1", message="bad entry")
        with pytest.raises(ArchiveError) as exc_info:
            self.run_with_events((self.archiver, "warning", (warning,)))
        assert exc_info.value.code == "1"
        assert exc_info.value.original is warning

    def test_logs_non_fatal_warnings(self, caplog):
        warning = ArchiveWarning(code="ENOENT", message="do not do that plz")
        with caplog.at_level(logging.WARNING, logger="veracode_client.archive"):
            size = self.run_with_events(
                (self.archiver, "warning", (warning,)),
                (self.write_stream, "close", ()),
            )
        assert size == 420
        assert "Warning: do not do that plz" in caplog.text

    def test_rejects_on_archiver_error(self):
        error = OSError("it borked")
        error.code = "borked"
        with pytest.raises(ArchiveError) as exc_info:
            self.run_with_events((self.archiver, "error", (error,)))
        assert exc_info.value.original is error
        assert exc_info.value.code == "borked"

    def test_error_then_close_never_resolves(self):
        error = OSError("it borked")
        with pytest.raises(ArchiveError):
            self.run_with_events(
                (self.archiver, "error", (error,)),
                (self.write_stream, "close", ()),
            )

    def test_close_then_error_stays_resolved(self):
        size = self.run_with_events(
            (self.write_stream, "close", ()),
            (self.archiver, "error", (OSError("late"),)),
            (self.archiver, "warning", (ArchiveWarning(code="EPERM"),)),
        )
        assert size == 420

    def test_first_fatal_warning_wins(self):
        first = ArchiveWarning(code="EPERM", message="first")
        with pytest.raises(ArchiveError) as exc_info:
            self.run_with_events(
                (self.archiver, "warning", (first,)),
                (self.archiver, "warning", (ArchiveWarning(code="EACCES"),)),
                (self.write_stream, "close", ()),
            )
        assert exc_info.value.original is first

    def test_engine_without_terminal_event_fails(self):
        with pytest.raises(ArchiveError, match="without closing"):
            self.run_with_events()

    def test_engine_exception_becomes_archive_error(self):
        self.archiver.finalize.side_effect = RuntimeError("engine crashed")

        with pytest.raises(ArchiveError) as exc_info:
            self.builder.create_zip_archive("testdir", "test", None)
        assert isinstance(exc_info.value.original, RuntimeError)

    def test_failure_destroys_stream(self):
        self.write_stream.destroy = Mock()
        with pytest.raises(ArchiveError):
            self.run_with_events((self.archiver, "error", (OSError("disk full"),)))
        self.write_stream.destroy.assert_called_once()

    def test_plain_object_warning_uses_code(self):
        warning = Mock(code="ENOENT", message="gone")
        size = self.run_with_events(
            (self.archiver, "warning", (warning,)),
            (self.write_stream, "close", ()),
        )
        assert size == 420


class TestSettleOnce:
    """Test cases for the settle-once result cell"""

    def test_first_resolve_wins(self):
        cell = SettleOnce()
        assert cell.resolve(1) is True
        assert cell.resolve(2) is False
        assert cell.reject(ValueError("late")) is False
        assert cell.result() == 1

    def test_first_reject_wins(self):
        cell = SettleOnce()
        assert cell.reject(ValueError("first")) is True
        assert cell.resolve(1) is False
        assert cell.settled
        with pytest.raises(ValueError, match="first"):
            cell.result()


class TestZipArchiver:
    """Test cases for the real zip engine"""

    def make_tree(self, root):
        (root / "src").mkdir()
        (root / "src" / "app.py").write_text("print('hi')\n")
        (root / "src" / "util.py").write_text("X = 1\n")
        (root / "tests").mkdir()
        (root / "tests" / "test_app.py").write_text("def test(): pass\n")
        (root / "README.md").write_text("readme\n")

    def test_builds_archive_and_reports_size(self, tmp_path):
        source = tmp_path / "project"
        source.mkdir()
        self.make_tree(source)
        archive_path = str(tmp_path / "project.zip")

        size = ArchiveBuilder().create_zip_archive(
            str(source), "**/*.py", "tests/*", archive_path=archive_path
        )

        assert size == os.path.getsize(archive_path)
        with zipfile.ZipFile(archive_path) as zf:
            assert sorted(zf.namelist()) == ["src/app.py", "src/util.py"]
            assert zf.read("src/app.py") == b"print('hi')\n"

    def test_multiple_exclude_patterns(self, tmp_path):
        source = tmp_path / "project"
        source.mkdir()
        self.make_tree(source)
        archive_path = str(tmp_path / "out.zip")

        ArchiveBuilder().create_zip_archive(
            str(source), "**/*", ["tests/*", "*.md"], archive_path=archive_path
        )

        with zipfile.ZipFile(archive_path) as zf:
            assert sorted(zf.namelist()) == ["src/app.py", "src/util.py"]

    def test_vanished_file_emits_enoent_warning(self, tmp_path):
        source = tmp_path / "project"
        source.mkdir()
        self.make_tree(source)
        archive_path = str(tmp_path / "out.zip")

        engine = ZipArchiver()
        stream = WriteStream(archive_path)
        warnings, closes = [], []
        engine.on("warning", warnings.append)
        stream.on("close", lambda: closes.append(engine.pointer()))

        engine.pipe(stream)
        engine.glob("src/*.py", cwd=str(source))
        os.remove(source / "src" / "util.py")
        engine.finalize()

        assert [w.code for w in warnings] == ["ENOENT"]
        assert closes == [os.path.getsize(archive_path)]
        with zipfile.ZipFile(archive_path) as zf:
            assert zf.namelist() == ["src/app.py"]

    def test_missing_source_directory_is_non_fatal(self, tmp_path, caplog):
        archive_path = str(tmp_path / "empty.zip")
        with caplog.at_level(logging.WARNING, logger="veracode_client.archive"):
            size = ArchiveBuilder().create_zip_archive(
                str(tmp_path / "missing"), "**/*", archive_path=archive_path
            )
        assert size == os.path.getsize(archive_path)
        assert "Directory not found" in caplog.text

    def test_pre_1980_mtime_is_clamped(self, tmp_path):
        source = tmp_path / "project"
        source.mkdir()
        old = source / "old.txt"
        old.write_text("reproducible\n")
        os.utime(old, (0, 0))
        archive_path = str(tmp_path / "old.zip")

        size = ArchiveBuilder().create_zip_archive(str(source), "**/*", archive_path=archive_path)

        assert size == os.path.getsize(archive_path)
        with zipfile.ZipFile(archive_path) as zf:
            assert zf.getinfo("old.txt").date_time[0] == 1980

    def test_write_failure_is_archive_error_and_removes_partial(self, tmp_path):
        source = tmp_path / "project"
        source.mkdir()
        self.make_tree(source)
        archive_path = tmp_path / "broken.zip"

        with patch("veracode_client.archive.zipfile.ZipFile.write",
                   side_effect=ValueError("bad entry")):
            with pytest.raises(ArchiveError) as exc_info:
                ArchiveBuilder().create_zip_archive(
                    str(source), "**/*", archive_path=str(archive_path)
                )

        assert isinstance(exc_info.value.original, ValueError)
        assert not archive_path.exists()

    def test_write_failure_closes_stream(self, tmp_path):
        source = tmp_path / "project"
        source.mkdir()
        self.make_tree(source)
        engine = ZipArchiver()
        stream = WriteStream(str(tmp_path / "out.zip"))
        errors = []
        engine.on("error", errors.append)

        engine.pipe(stream)
        engine.glob("**/*", cwd=str(source))
        with patch("veracode_client.archive.zipfile.ZipFile.write",
                   side_effect=zipfile.LargeZipFile("too big")):
            engine.finalize()

        assert isinstance(errors[0], zipfile.LargeZipFile)
        assert stream.closed

    def test_finalize_requires_pipe(self):
        with pytest.raises(ValueError):
            ZipArchiver().finalize()

    def test_default_archive_path_is_deterministic(self):
        first = ArchiveBuilder.default_archive_path("/work/project/")
        assert first == ArchiveBuilder.default_archive_path("/work/project")
        assert first.endswith("project.zip")
