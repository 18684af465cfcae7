import os
from pathlib import Path
from typing import Optional, Union

# Base directory for relative configuration files (appsettings, commands, .env).
SQLCHAIN_HOME = Path(os.getenv("SQLCHAIN_HOME", Path.cwd()))


def resolve_path(path_str: Union[str, Path], base_dir: Optional[Path] = None) -> Path:
    """
    Resolves a user-supplied path. `~` is expanded; relative paths are taken
    relative to `base_dir` (or SQLCHAIN_HOME) rather than the process CWD.
    """
    path = Path(path_str).expanduser()
    if path.is_absolute():
        return path.resolve()
    return ((base_dir or SQLCHAIN_HOME) / path).resolve()
