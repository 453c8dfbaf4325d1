"""File helpers for reading training corpora."""

from pathlib import Path
from typing import List, Union


PathLike = Union[str, Path]


def _existing_file(path: PathLike) -> Path:
    if not path:
        raise ValueError("File path cannot be empty.")
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"The specified file does not exist: {path}")
    return path


def read_lines(path: PathLike) -> List[str]:
    """Read all non-blank lines of a text file."""
    with open(_existing_file(path), 'r', encoding='utf-8', errors='replace') as f:
        return [l.rstrip('\r\n') for l in f if l.strip()]


def list_files(directory: PathLike, pattern: str = '*.txt') -> List[Path]:
    """Files in directory matching a glob pattern, sorted by path."""
    return sorted(p for p in Path(directory).glob(pattern) if p.is_file())


def file_size(path: PathLike) -> int:
    """Size of a file in bytes."""
    return _existing_file(path).stat().st_size


def count_lines(path: PathLike) -> int:
    """Number of lines in a file."""
    with open(_existing_file(path), 'rb') as f:
        return sum(1 for _ in f)
