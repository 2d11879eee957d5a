"""
Zip packaging for scan submissions.

Two independent sources decide how an archive operation ends: the archiving
engine (``warning`` and ``error`` events) and the destination write stream
(``close`` once every byte is flushed). ArchiveBuilder joins them through a
SettleOnce cell so the operation resolves or rejects exactly once, whichever
terminal signal arrives first.
"""

import fnmatch
import logging
import os
import tempfile
import threading
import zipfile
from collections import defaultdict
from concurrent.futures import Future
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

from .exceptions import ArchiveError
from .models import ArchiveResult, ArchiveWarning

logger = logging.getLogger(__name__)

Pattern = Union[str, Iterable[str], None]


class EventEmitter:
    """Minimal listener registry shared by the stream and the engine"""

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = defaultdict(list)

    def on(self, event: str, listener: Callable):
        self._listeners[event].append(listener)
        return self

    def emit(self, event: str, *args) -> bool:
        listeners = list(self._listeners.get(event, ()))
        for listener in listeners:
            listener(*args)
        return bool(listeners)


class SettleOnce:
    """Result cell that honours only the first resolve or reject"""

    def __init__(self):
        self._future: Future = Future()
        self._lock = threading.Lock()

    @property
    def settled(self) -> bool:
        return self._future.done()

    def resolve(self, value) -> bool:
        with self._lock:
            if self._future.done():
                return False
            self._future.set_result(value)
            return True

    def reject(self, error: BaseException) -> bool:
        with self._lock:
            if self._future.done():
                return False
            self._future.set_exception(error)
            return True

    def result(self, timeout: Optional[float] = None):
        return self._future.result(timeout)


class WriteStream(EventEmitter):
    """Binary file sink that emits ``close`` after its data hits storage"""

    def __init__(self, path: str):
        super().__init__()
        self.path = path
        self._file = open(path, "wb")
        self.closed = False

    def write(self, data: bytes) -> int:
        return self._file.write(data)

    def flush(self):
        self._file.flush()

    def end(self):
        if self.closed:
            return
        self._file.flush()
        os.fsync(self._file.fileno())
        self._close()

    def destroy(self):
        if not self.closed:
            self._close()

    def _close(self):
        self._file.close()
        self.closed = True
        self.emit("close")


class _CountingSink:
    """Non-seekable writer that forwards to a stream and counts bytes"""

    def __init__(self, stream):
        self.stream = stream
        self.count = 0

    def write(self, data) -> int:
        self.stream.write(data)
        self.count += len(data)
        return len(data)

    def flush(self):
        self.stream.flush()


def _as_patterns(patterns: Pattern) -> List[str]:
    if not patterns:
        return []
    if isinstance(patterns, str):
        return [patterns]
    return list(patterns)


class ZipArchiver(EventEmitter):
    """
    Evented zip engine.

    Entries are queued with ``glob`` and written by ``finalize``. Files that
    vanish between globbing and reading produce an ``ENOENT`` warning; any
    other I/O failure produces an ``error`` and aborts the archive. After the
    central directory is written the piped stream is ended.
    """

    def __init__(self, compression: int = zipfile.ZIP_DEFLATED):
        super().__init__()
        self.compression = compression
        self._entries: List[tuple] = []
        self._destination = None
        self._sink: Optional[_CountingSink] = None

    def pipe(self, destination):
        self._destination = destination
        self._sink = _CountingSink(destination)
        return destination

    def pointer(self) -> int:
        return self._sink.count if self._sink else 0

    def glob(self, pattern: str, cwd: str, ignore: Pattern = None):
        root = Path(cwd)
        ignored = _as_patterns(ignore)
        if not root.is_dir():
            self.emit("warning", ArchiveWarning(
                code="ENOENT",
                message=f"Directory not found: {cwd}",
                path=cwd,
            ))
            return self

        for path in sorted(root.glob(pattern)):
            relative = path.relative_to(root).as_posix()
            if any(fnmatch.fnmatch(relative, p) for p in ignored):
                continue
            if path.is_dir():
                continue
            self._entries.append((path, relative))
        return self

    def finalize(self):
        if self._sink is None:
            raise ValueError("ZipArchiver.finalize() called before pipe()")

        try:
            # Entries older than 1980 are clamped instead of rejected
            with zipfile.ZipFile(
                self._sink, "w", compression=self.compression, strict_timestamps=False
            ) as zf:
                for path, arcname in self._entries:
                    try:
                        zf.write(path, arcname)
                    except FileNotFoundError as e:
                        self.emit("warning", ArchiveWarning(
                            code="ENOENT",
                            message=f"{arcname}: {e.strerror}",
                            path=str(path),
                        ))
        except (OSError, ValueError, zipfile.LargeZipFile) as e:
            self.emit("error", e)
            self._destination.destroy()
            return

        self._destination.end()


class ArchiveBuilder:
    """Packages a directory into a zip archive on disk"""

    def __init__(
        self,
        engine_factory: Callable[[], ZipArchiver] = ZipArchiver,
        stream_factory: Callable[[str], WriteStream] = WriteStream,
    ):
        self.engine_factory = engine_factory
        self.stream_factory = stream_factory

    @staticmethod
    def default_archive_path(source_dir: str) -> str:
        name = os.path.basename(os.path.normpath(source_dir)) or "archive"
        return os.path.join(tempfile.gettempdir(), f"{name}.zip")

    @staticmethod
    def _discard(output, archive_path: str):
        destroy = getattr(output, "destroy", None)
        if destroy is not None:
            destroy()
        if os.path.exists(archive_path):
            os.remove(archive_path)

    def build(
        self,
        source_dir: str,
        name_pattern: str,
        exclude_pattern: Pattern = None,
        archive_path: Optional[str] = None,
    ) -> ArchiveResult:
        """
        Zip files under ``source_dir`` matching ``name_pattern``.

        The engine's ``finalize`` runs to completion before the outcome is
        read, so an engine that returns without a terminal event is a failure.
        On failure the partial archive is removed.

        Raises:
            ArchiveError: on an engine error or a warning other than ENOENT
        """
        archive_path = archive_path or self.default_archive_path(source_dir)
        outcome = SettleOnce()

        output = self.stream_factory(archive_path)
        archive = self.engine_factory()

        def on_close():
            if not outcome.resolve(archive.pointer()):
                logger.debug(f"Ignoring close of {archive_path}: archive already settled")

        def on_warning(warning):
            if not isinstance(warning, ArchiveWarning):
                warning_info = ArchiveWarning(
                    code=getattr(warning, "code", None),
                    message=getattr(warning, "message", str(warning)),
                )
            else:
                warning_info = warning
            if not warning_info.is_fatal:
                logger.warning(f"Warning: {warning_info.message}")
                return
            error = ArchiveError(
                f"Archive warning {warning_info.code}: {warning_info.message}",
                code=warning_info.code,
                original=warning,
            )
            if not outcome.reject(error):
                logger.debug(f"Ignoring warning {warning_info.code}: archive already settled")

        def on_error(err):
            error = ArchiveError(
                f"Archive failed: {getattr(err, 'message', None) or err}",
                code=getattr(err, "code", None),
                original=err,
            )
            if not outcome.reject(error):
                logger.debug(f"Ignoring error {err!r}: archive already settled")

        output.on("close", on_close)
        archive.on("warning", on_warning)
        archive.on("error", on_error)

        try:
            archive.pipe(output)
            archive.glob(name_pattern, cwd=source_dir, ignore=exclude_pattern)
            archive.finalize()
        except Exception as e:
            on_error(e)
        finally:
            if not outcome.settled:
                outcome.reject(ArchiveError("Archive engine finished without closing the archive"))

        try:
            size = outcome.result()
        except ArchiveError:
            self._discard(output, archive_path)
            raise

        logger.info(f"Created {archive_path} ({size} bytes)")
        return ArchiveResult(path=archive_path, size_bytes=size)

    def create_zip_archive(
        self,
        source_dir: str,
        name_pattern: str,
        exclude_pattern: Pattern = None,
        archive_path: Optional[str] = None,
    ) -> int:
        return self.build(source_dir, name_pattern, exclude_pattern, archive_path).size_bytes
