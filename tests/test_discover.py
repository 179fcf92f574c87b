"""
Unit tests for discover.py - finding images and applying the blacklist

Run with: uv run pytest tests/ -v
"""

import pytest
import tempfile
from pathlib import Path
from unittest.mock import patch

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from discover import discover_images, is_blacklisted, is_image, walk_files
from errors import ReadError


def touch(root: Path, rel: str) -> None:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x")


class TestIsImage:
    """Tests for is_image"""

    def test_known_extensions(self):
        for name in ["a.jpg", "a.jpeg", "a.png", "a.gif", "a.webp"]:
            assert is_image(name)

    def test_extension_case_ignored(self):
        assert is_image("photos/A.JPG")

    def test_non_images(self):
        assert not is_image("index.html")
        assert not is_image("logo.svg")
        assert not is_image("jpg")


class TestIsBlacklisted:
    """Tests for is_blacklisted - glob against the path and its parents"""

    def test_no_patterns(self):
        assert not is_blacklisted("a.jpg", ())

    def test_exact_path(self):
        assert is_blacklisted("img/logo.png", ["img/logo.png"])
        assert not is_blacklisted("img/logo2.png", ["img/logo.png"])

    def test_glob_matches_any_depth(self):
        # fnmatch's * also matches "/"
        assert is_blacklisted("a/b/c.gif", ["*.gif"])
        assert not is_blacklisted("a/b/c.jpg", ["*.gif"])

    def test_directory_pattern_excludes_contents(self):
        assert is_blacklisted("drafts/2024/photo.jpg", ["drafts"])
        assert is_blacklisted("drafts/photo.jpg", ["drafts/2024", "drafts"])
        assert not is_blacklisted("published/drafts.jpg", ["drafts"])

    def test_prefix_is_not_enough(self):
        assert not is_blacklisted("draftsman/photo.jpg", ["drafts"])

    def test_case_sensitive(self):
        assert not is_blacklisted("Drafts/photo.jpg", ["drafts"])


class TestDiscoverImages:
    """Tests for discover_images"""

    @pytest.fixture
    def site(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            for rel in ["b.jpg", "a.png", "index.html", "img/z.gif", "img/sub/c.JPG", "drafts/d.jpg"]:
                touch(root, rel)
            yield root

    def test_finds_images_sorted(self, site):
        assert discover_images(site) == ["a.png", "b.jpg", "drafts/d.jpg", "img/sub/c.JPG", "img/z.gif"]

    def test_blacklist_applied(self, site):
        result = discover_images(site, ["drafts", "*.gif"])
        assert result == ["a.png", "b.jpg", "img/sub/c.JPG"]

    def test_skip_dir_not_descended(self, site):
        touch(site, "_out/assets/images/a-png-400.png")
        result = discover_images(site, skip_dir=site / "_out")
        assert "_out/assets/images/a-png-400.png" not in result

    def test_missing_root_is_read_error(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(ReadError):
                discover_images(Path(tmpdir) / "nope")

    def test_traversal_error_fails_whole_walk(self, site):
        def broken_walk(root, onerror=None):
            onerror(PermissionError(13, "Permission denied", str(root / "img")))
            return iter([(str(root), [], ["a.png"])])

        with patch("discover.os.walk", side_effect=broken_walk):
            with pytest.raises(ReadError):
                walk_files(site)
