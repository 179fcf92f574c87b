"""
discover.py - Find the images in the input site

Walks the input folder and returns every image that is not blacklisted,
as POSIX-style paths relative to the input folder, sorted so that manifest
diffs stay stable between runs.
"""

import fnmatch
import os
from pathlib import Path, PurePosixPath
from typing import Optional

from errors import ReadError

IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}


def is_image(rel_path: str) -> bool:
    """Check whether a path has a recognized image extension"""
    return PurePosixPath(rel_path).suffix.lower() in IMAGE_EXTS


def is_blacklisted(rel_path: str, patterns) -> bool:
    """
    Check a relative path against the blacklist.

    Patterns are case-sensitive shell globs matched against the whole
    relative path and against each of its parent directories, so a
    directory pattern excludes everything beneath it.
    """
    if not patterns:
        return False
    path = PurePosixPath(rel_path)
    candidates = [str(path)] + [str(parent) for parent in path.parents if str(parent) != "."]
    for pattern in patterns:
        for candidate in candidates:
            if fnmatch.fnmatchcase(candidate, pattern):
                return True
    return False


def walk_files(root: Path, skip_dir: Optional[Path] = None) -> list:
    """
    List every file under root as a sorted relative POSIX path.

    Raises ReadError on any traversal failure; never returns a partial list.
    """
    if not root.is_dir():
        raise ReadError(f"Input folder not found: {root}")

    skip = os.path.abspath(skip_dir) if skip_dir else None
    errors = []
    found = []

    for dirpath, dirnames, filenames in os.walk(root, onerror=errors.append):
        if skip:
            dirnames[:] = [d for d in dirnames if os.path.abspath(os.path.join(dirpath, d)) != skip]
        rel_dir = Path(dirpath).relative_to(root)
        for name in filenames:
            found.append((rel_dir / name).as_posix())

    if errors:
        raise ReadError(f"Could not walk {root}: {errors[0]}")

    return sorted(found)


def discover_images(root: Path, blacklist=(), skip_dir: Optional[Path] = None) -> list:
    """Find all non-blacklisted images under root"""
    return [
        rel for rel in walk_files(root, skip_dir)
        if is_image(rel) and not is_blacklisted(rel, blacklist)
    ]
