import os
from pathlib import Path
from typing import Union

from stash.errors import PathEscape

PathLike = Union[str, Path]


def strip_query(request_path: str) -> str:
    """Drop everything from the first '?' on."""
    return request_path.split("?", 1)[0]


def is_jailed(storage_root: PathLike, path: PathLike) -> bool:
    """Check that path lies strictly beneath storage_root.

    Both paths are normalized lexically; symlinks are not followed.
    """
    root = os.path.normpath(os.path.abspath(storage_root))
    candidate = os.path.normpath(os.path.abspath(path))
    if candidate == root:
        return False
    return candidate.startswith(root.rstrip(os.sep) + os.sep)


def resolve(storage_root: PathLike, request_path: str) -> Path:
    """Map a request path onto an absolute path inside storage_root.

    Args:
        storage_root: The jail directory
        request_path: The URL path of the request, optionally with a query

    Returns:
        Path: The canonical absolute target path

    Raises:
        PathEscape: If the target is outside storage_root or is storage_root itself
    """
    url_path = strip_query(request_path)
    root = os.path.normpath(os.path.abspath(storage_root))
    target = os.path.normpath(os.path.join(root, url_path.lstrip("/")))

    if not is_jailed(root, target):
        raise PathEscape(url_path)
    return Path(target)
