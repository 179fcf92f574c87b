"""
cull.py - Delete generated images that are no longer referenced

Only runs with --cull. Everything under the image folder that is not in the
whitelist is deleted, then any directories left empty are removed.

Path rule: both the whitelist and the folder walk go through
canonical_path(), which makes a path absolute, collapses "." and ".."
lexically and applies the platform's case and separator normalization
(os.path.normcase). Symlinks are not resolved, so a link is judged by where
it sits, never by what it points to.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class CullReport:
    deleted: list = field(default_factory=list)
    kept: int = 0
    failed: list = field(default_factory=list)
    removed_dirs: list = field(default_factory=list)


def canonical_path(path) -> str:
    """Normalized absolute form used on both sides of the whitelist check"""
    return os.path.normcase(os.path.abspath(os.fspath(path)))


def cull_image_folder(image_folder: Path, whitelist: set) -> CullReport:
    """
    Delete every file under image_folder whose canonical path is not whitelisted.

    Failures are recorded and the walk carries on. Nothing outside
    image_folder is touched and symlinked directories are not followed.
    """
    report = CullReport()
    root = canonical_path(image_folder)
    if not os.path.isdir(root):
        return report

    for dirpath, dirnames, filenames in os.walk(root, topdown=False):
        for name in filenames:
            path = canonical_path(os.path.join(dirpath, name))
            if path in whitelist:
                report.kept += 1
                continue
            try:
                os.unlink(path)
                report.deleted.append(path)
            except OSError as e:
                report.failed.append((path, str(e)))

        for name in dirnames:
            path = os.path.join(dirpath, name)
            # Symlinked directories show up here but were never walked
            if os.path.islink(path):
                if canonical_path(path) not in whitelist:
                    try:
                        os.unlink(path)
                        report.deleted.append(canonical_path(path))
                    except OSError as e:
                        report.failed.append((canonical_path(path), str(e)))
                continue
            try:
                if not os.listdir(path):
                    os.rmdir(path)
                    report.removed_dirs.append(canonical_path(path))
            except OSError as e:
                report.failed.append((canonical_path(path), str(e)))

    return report
