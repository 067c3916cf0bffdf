"""
On-the-fly zip/tar/tar.gz archives of served directories.

An archive is written by a producer thread into a bounded queue and the
response body drains that queue, so only a handful of chunks are ever held
in memory regardless of the directory size.
"""
import logging
import os
import tarfile
import threading
import zipfile
from queue import Empty, Full, Queue
from typing import Iterator, Optional, Tuple

from starlette.responses import StreamingResponse

logger = logging.getLogger(__name__)

ARCHIVE_EXTENSIONS = (".zip", ".tar", ".tar.gz")

ARCHIVE_TYPES = {
    ".zip": "application/zip",
    ".tar": "application/x-tar",
    ".tar.gz": "application/gzip",
}

TAR_MODES = {
    ".tar": "w|",
    ".tar.gz": "w|gz",
}

QUEUE_DEPTH = 16
PUT_TIMEOUT = 0.1


def archive_extension(path: str) -> str:
    """Archive suffix of ``path``, longest match first ("" if none)."""
    for ext in sorted(ARCHIVE_EXTENSIONS, key=len, reverse=True):
        if path.endswith(ext):
            return ext
    return ""


def match_archive(path: str) -> Optional[Tuple[str, str]]:
    """
    Return (directory, extension) when ``path`` names an archive of an
    existing directory, e.g. ``/site/assets.tar.gz`` -> ``/site/assets``.
    """
    ext = archive_extension(path)
    if not ext:
        return None
    directory = os.path.abspath(path[:-len(ext)])
    if not os.path.isdir(directory):
        return None
    return directory, ext


class ArchiveAborted(Exception):
    """The response consumer went away; stop producing."""


class QueueWriter:
    """Write-only file object that hands every write to a bounded queue."""

    def __init__(self, chunks: Queue, stopped: threading.Event):
        self.chunks = chunks
        self.stopped = stopped

    def put(self, item: Optional[bytes]) -> None:
        while True:
            if self.stopped.is_set():
                raise ArchiveAborted()
            try:
                self.chunks.put(item, timeout=PUT_TIMEOUT)
                return
            except Full:
                continue

    def write(self, data) -> int:
        if data:
            self.put(bytes(data))
        return len(data)

    def flush(self) -> None:
        pass


def _raise(err: OSError):
    raise err


class ArchiveStream:
    """Iterable archive body for one directory."""

    def __init__(self, directory: str, ext: str):
        self.directory = directory
        self.ext = ext

    def entries(self) -> Iterator[Tuple[str, str]]:
        """(absolute path, archive name) for every entry below the directory."""
        for current, dirs, files in os.walk(self.directory, onerror=_raise):
            dirs.sort()
            rel = os.path.relpath(current, self.directory)
            for name in dirs + sorted(files):
                arcname = name if rel == "." else os.path.join(rel, name)
                yield os.path.join(current, name), arcname.replace(os.sep, "/")

    def write_zip(self, out: QueueWriter) -> None:
        with zipfile.ZipFile(out, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for path, arcname in self.entries():
                zf.write(path, arcname)

    def write_tar(self, out: QueueWriter) -> None:
        with tarfile.open(fileobj=out, mode=TAR_MODES[self.ext]) as tar:
            for path, arcname in self.entries():
                tar.add(path, arcname, recursive=False)

    def produce(self, out: QueueWriter) -> None:
        try:
            if self.ext == ".zip":
                self.write_zip(out)
            else:
                self.write_tar(out)
        except ArchiveAborted:
            logger.debug(f"Archive of {self.directory} abandoned by client")
            return
        except OSError as e:
            # Headers and part of the body are already out; mark the body instead
            logger.warning(f"Archive of {self.directory} failed: {e}")
            try:
                out.write(f"\n\nERROR: {e}".encode("utf-8"))
            except ArchiveAborted:
                return
        try:
            out.put(None)
        except ArchiveAborted:
            pass

    def __iter__(self) -> Iterator[bytes]:
        chunks: Queue = Queue(maxsize=QUEUE_DEPTH)
        stopped = threading.Event()
        producer = threading.Thread(
            target=self.produce,
            args=(QueueWriter(chunks, stopped),),
            name=f"archive:{os.path.basename(self.directory)}",
            daemon=True,
        )
        producer.start()
        try:
            while True:
                try:
                    chunk = chunks.get(timeout=PUT_TIMEOUT)
                except Empty:
                    if not producer.is_alive():
                        return
                    continue
                if chunk is None:
                    return
                yield chunk
        finally:
            stopped.set()
            producer.join()


def archive_response(directory: str, ext: str) -> StreamingResponse:
    filename = os.path.basename(directory) + ext
    return StreamingResponse(
        ArchiveStream(directory, ext),
        status_code=200,
        media_type=ARCHIVE_TYPES[ext],
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
