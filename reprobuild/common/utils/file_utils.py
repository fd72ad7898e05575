from pathlib import Path, PurePosixPath
from typing import Iterable, Union
import shutil
import os
import stat
import sys

from reprobuild.common.config.logging_config import get_logger


logger = get_logger(__name__)


def ensure_directory(
    directory: Union[str, Path],
    mode: int = 0o755,
) -> Path:
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True, mode=mode)
    return directory


def cleanup_directory(
    directory: Union[str, Path],
    ignore_errors: bool = True,
) -> bool:
    directory = Path(directory)

    if not directory.exists():
        return True

    def remove_readonly(func, path, exc_info):
        os.chmod(path, stat.S_IWRITE)
        func(path)

    try:
        if sys.version_info >= (3, 12):
            shutil.rmtree(directory, onexc=remove_readonly)
        else:
            shutil.rmtree(directory, onerror=remove_readonly)
        logger.debug(f"Removed directory: {directory}")
        return True
    except OSError as e:
        if not ignore_errors:
            raise
        logger.warning(f"Partial cleanup of directory {directory}: {e}")
        return False


def copy_tree(
    source: Union[str, Path],
    destination: Union[str, Path],
    exclude_patterns: Iterable[str] = (),
) -> Path:
    source = Path(source)
    destination = Path(destination)

    ignore = shutil.ignore_patterns(*exclude_patterns) if exclude_patterns else None
    shutil.copytree(source, destination, symlinks=True, ignore=ignore)
    return destination


def make_executable(file_path: Union[str, Path]) -> None:
    file_path = Path(file_path)
    mode = file_path.stat().st_mode
    file_path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def is_safe_relative_path(relative_path: str) -> bool:
    if not relative_path:
        return False

    pure = PurePosixPath(relative_path.replace("\\", "/"))
    if pure.is_absolute():
        return False
    return ".." not in pure.parts
