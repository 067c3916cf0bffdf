"""
Path classification: maps a URL path onto the served directory tree.
"""
import os
import posixpath
import stat
from dataclasses import dataclass
from enum import Enum

from .config import ConfigurationError, ServerConfig, check_directory

INDEX_FILE = "index.html"


class TargetKind(Enum):
    FILE = "file"
    DIRECTORY = "directory"
    MISSING = "missing"


@dataclass
class ResolvedTarget:
    """Result of classifying one request path."""
    path: str  # Absolute filesystem path
    kind: TargetKind
    pushstate: bool = False  # True when the root index stands in for a missing route

    @property
    def is_file(self) -> bool:
        return self.kind is TargetKind.FILE

    @property
    def is_dir(self) -> bool:
        return self.kind is TargetKind.DIRECTORY

    @property
    def is_missing(self) -> bool:
        return self.kind is TargetKind.MISSING


def extension(path: str) -> str:
    """Extension of the last path element, including the dot ("" if none)."""
    base = posixpath.basename(path.replace(os.sep, "/"))
    dot = base.rfind(".")
    if dot < 0:
        return ""
    return base[dot:]


def canonical(path: str) -> str:
    """Canonical absolute form used as the key of every shared path map."""
    return os.path.realpath(path)


def stat_kind(path: str) -> TargetKind:
    try:
        st = os.stat(path)
    except (OSError, ValueError):
        # ValueError: embedded NUL byte
        return TargetKind.MISSING
    return TargetKind.DIRECTORY if stat.S_ISDIR(st.st_mode) else TargetKind.FILE


class PathClassifier:
    """Resolves request paths against the configured root."""

    def __init__(self, config: ServerConfig):
        self.config = config
        self.root = check_directory(config)
        self.root_index = None
        if config.pushstate:
            self.root_index = os.path.join(self.root, INDEX_FILE)
            if not os.path.isfile(self.root_index):
                raise ConfigurationError(f"'{self.root_index}' is required for pushstate")

    def join(self, url_path: str) -> str:
        """
        Join a URL path onto the root.

        The URL path is cleaned as an absolute path first, so ".." segments
        can never climb above the root.
        """
        cleaned = posixpath.normpath("/" + url_path.lstrip("/"))
        relative = cleaned.lstrip("/")
        if not relative:
            return self.root
        return os.path.join(self.root, *relative.split("/"))

    def classify(self, url_path: str) -> ResolvedTarget:
        """Stat the joined path and classify it, applying the pushstate rule."""
        path = self.join(url_path)
        kind = stat_kind(path)
        if kind is TargetKind.MISSING and self.root_index and extension(path) == "":
            # Client-side router takes over: serve the root index
            return ResolvedTarget(path=self.root_index, kind=TargetKind.FILE, pushstate=True)
        return ResolvedTarget(path=path, kind=kind)

    def substitute_index(self, target: ResolvedTarget) -> ResolvedTarget:
        """Swap a directory for its index.html when one exists and indexing is on."""
        if not target.is_dir or self.config.no_index:
            return target
        index = os.path.join(target.path, INDEX_FILE)
        if stat_kind(index) is TargetKind.FILE:
            return ResolvedTarget(path=index, kind=TargetKind.FILE)
        return target

    def relative(self, path: str) -> str:
        """Root-relative, slash-separated form of an absolute path ("." for the root)."""
        rel = os.path.relpath(path, self.root)
        return rel.replace(os.sep, "/")
