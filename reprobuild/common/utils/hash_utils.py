import hashlib
from typing import Union, List, Tuple
from pathlib import Path


def compute_hash(
    data: Union[str, bytes],
    algorithm: str = "sha256",
) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")

    hash_obj = hashlib.new(algorithm)
    hash_obj.update(data)

    return hash_obj.hexdigest()


def hash_file(
    file_path: Union[str, Path],
    algorithm: str = "sha256",
    chunk_size: int = 8192,
) -> str:
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    hash_obj = hashlib.new(algorithm)

    with open(file_path, "rb") as f:
        while chunk := f.read(chunk_size):
            hash_obj.update(chunk)

    return hash_obj.hexdigest()


def list_tree(directory_path: Union[str, Path]) -> List[Tuple[str, Path]]:
    directory_path = Path(directory_path)

    if not directory_path.is_dir():
        raise NotADirectoryError(f"Not a directory: {directory_path}")

    entries = []
    for path in directory_path.rglob("*"):
        relative = path.relative_to(directory_path).as_posix()
        if path.is_file():
            entries.append((relative, path))
        elif path.is_dir():
            # directory entries end with "/"
            entries.append((f"{relative}/", path))
    entries.sort(key=lambda entry: entry[0])
    return entries


def compute_structure_hash(
    relative_paths: List[str],
    algorithm: str = "sha256",
) -> str:
    return compute_hash("\n".join(sorted(relative_paths)), algorithm)
