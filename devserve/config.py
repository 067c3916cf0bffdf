"""
Server configuration.
"""
import os
from typing import Optional

from pydantic import BaseModel, ConfigDict

DEFAULT_HOST = os.getenv("DEVSERVE_HOST", "0.0.0.0")
DEFAULT_PORT = int(os.getenv("DEVSERVE_PORT", "3000"))


class ConfigurationError(Exception):
    """Raised at startup when the configuration cannot be served."""


class ServerConfig(BaseModel):
    """Everything the request pipeline needs to know. Read-only once built."""
    model_config = ConfigDict(frozen=True)

    directory: str
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    auth: str = ""
    live_reload: bool = False
    pushstate: bool = False
    no_index: bool = False
    no_slash: bool = False
    no_list: bool = False
    no_archive: bool = False
    no_cache: bool = False
    quiet: bool = False
    time_fmt: Optional[str] = None
    fallback: str = ""
    list_directories_first: bool = False
    case_insensitive: bool = False
    open: bool = False

    @property
    def root(self) -> str:
        """Absolute root directory."""
        return os.path.abspath(self.directory)


def check_directory(config: ServerConfig) -> str:
    """Return the absolute root, or raise if it is not a directory."""
    root = config.root
    if not config.directory or not os.path.isdir(root):
        raise ConfigurationError(f"Missing directory: {config.directory}")
    return root
