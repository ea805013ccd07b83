"""Process environment bootstrap for the CLI.

Cluster, mint and tracing settings are commonly kept in a ``.env`` file next
to the working copy. ``VEILFLOW_ENV_FILE`` points at a specific file instead
(for example one file per cluster); ``VEILFLOW_DISABLE_DOTENV`` turns loading
off entirely, which the tests rely on.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

LOGGER = logging.getLogger(__name__)

DISABLE_DOTENV_ENV = "VEILFLOW_DISABLE_DOTENV"
ENV_FILE_ENV = "VEILFLOW_ENV_FILE"
_TRUTHY = {"1", "true", "yes", "on"}


def resolve_env_file(filename: str = ".env") -> Path | None:
    """Return the dotenv file to load, or None when there is nothing to load."""
    if os.getenv(DISABLE_DOTENV_ENV, "").strip().lower() in _TRUTHY:
        return None
    explicit = os.getenv(ENV_FILE_ENV, "").strip()
    if explicit:
        path = Path(explicit).expanduser()
        if not path.is_file():
            LOGGER.warning("%s points at a missing file: %s", ENV_FILE_ENV, path)
            return None
        return path
    found = find_dotenv(filename=filename, usecwd=True)
    return Path(found) if found else None


def load_runtime_env(*, filename: str = ".env") -> bool:
    """Load the resolved dotenv file; exported process values always win."""
    path = resolve_env_file(filename)
    if path is None:
        return False
    loaded = bool(load_dotenv(dotenv_path=path, override=False))
    LOGGER.debug("Loaded runtime environment from %s", path)
    return loaded
