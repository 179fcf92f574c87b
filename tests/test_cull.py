"""
Unit tests for cull.py - deleting stale generated images

Run with: uv run pytest tests/ -v
"""

import os
import pytest
import tempfile
from pathlib import Path
from unittest.mock import patch

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from cull import canonical_path, cull_image_folder


def touch(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x")


class TestCanonicalPath:
    """Tests for canonical_path - both sides of the whitelist must agree"""

    def test_relative_made_absolute(self):
        assert os.path.isabs(canonical_path("images/a.jpg"))

    def test_dot_segments_collapsed(self):
        assert canonical_path("/site/images/sub/../a.jpg") == canonical_path("/site/images/a.jpg")

    def test_path_and_string_agree(self):
        assert canonical_path(Path("/site/images/a.jpg")) == canonical_path("/site/images/a.jpg")


class TestCullImageFolder:
    """Tests for cull_image_folder"""

    @pytest.fixture
    def site(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            folder = root / "images"
            for rel in ["keep.jpg", "stale.jpg", "old/stale-400.jpg", "nested/keep-too.png"]:
                touch(folder / rel)
            touch(root / "outside.jpg")
            yield root, folder

    def test_deletes_only_unlisted_files(self, site):
        root, folder = site
        whitelist = {canonical_path(folder / "keep.jpg"), canonical_path(folder / "nested/keep-too.png")}
        report = cull_image_folder(folder, whitelist)

        assert (folder / "keep.jpg").exists()
        assert (folder / "nested/keep-too.png").exists()
        assert not (folder / "stale.jpg").exists()
        assert not (folder / "old/stale-400.jpg").exists()
        assert sorted(report.deleted) == sorted([
            canonical_path(folder / "stale.jpg"),
            canonical_path(folder / "old/stale-400.jpg"),
        ])
        assert report.kept == 2

    def test_removes_emptied_directories(self, site):
        root, folder = site
        report = cull_image_folder(folder, {canonical_path(folder / "keep.jpg")})
        assert not (folder / "old").exists()
        assert not (folder / "nested").exists()
        assert folder.exists()
        assert canonical_path(folder / "old") in report.removed_dirs

    def test_never_touches_outside(self, site):
        root, folder = site
        cull_image_folder(folder, set())
        assert (root / "outside.jpg").exists()
        assert folder.exists()

    def test_whitelist_with_unnormalized_paths(self, site):
        root, folder = site
        whitelist = {canonical_path(str(folder / "nested" / ".." / "keep.jpg"))}
        cull_image_folder(folder, whitelist)
        assert (folder / "keep.jpg").exists()

    def test_missing_folder_is_noop(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            report = cull_image_folder(Path(tmpdir) / "nope", set())
            assert report.deleted == []

    def test_failed_delete_reported_and_continues(self, site):
        root, folder = site
        real_unlink = os.unlink

        def flaky_unlink(path, *args, **kwargs):
            if str(path).endswith("stale.jpg"):
                raise PermissionError(13, "Permission denied", str(path))
            return real_unlink(path, *args, **kwargs)

        with patch("cull.os.unlink", side_effect=flaky_unlink):
            report = cull_image_folder(folder, set())

        assert [p for p, _ in report.failed] == [canonical_path(folder / "stale.jpg")]
        assert (folder / "stale.jpg").exists()
        assert not (folder / "old/stale-400.jpg").exists()
        assert not (folder / "keep.jpg").exists()

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="needs symlinks")
    def test_symlinked_directory_not_followed(self, site):
        root, folder = site
        target = root / "elsewhere"
        touch(target / "precious.jpg")
        os.symlink(target, folder / "link", target_is_directory=True)

        cull_image_folder(folder, set())
        assert (target / "precious.jpg").exists()
        assert not (folder / "link").exists()
