import io
import sys
import tarfile
from pathlib import Path
from typing import Dict, Optional

from reprobuild.common.dto.build import BuildStep


PYTHON = sys.executable


def make_tar_gz(path: Path, members: Dict[str, bytes]) -> Path:
    """Write a gzip tarball containing the given member names and contents."""
    with tarfile.open(path, "w:gz") as tar:
        for name, data in members.items():
            info = tarfile.TarInfo(name=name)
            info.size = len(data)
            info.mode = 0o755
            tar.addfile(info, io.BytesIO(data))
    return path


def python_step(name: str, code: str, cwd: Optional[str] = None) -> BuildStep:
    return BuildStep(name=name, command=PYTHON, args=["-c", code], cwd=cwd)
