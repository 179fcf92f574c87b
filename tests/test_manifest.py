"""
Unit tests for manifest.py - loading, validating and saving the manifest

Run with: uv run pytest tests/ -v
"""

import pytest
import tempfile
from pathlib import Path
from unittest.mock import patch

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from errors import ConfigError
from manifest import (
    GeneratedFile,
    ManifestEntry,
    format_for,
    load_manifest,
    parse_manifest,
    save_manifest,
)


def sample_manifest() -> dict:
    return {
        "blog/foo.jpg": ManifestEntry(
            slug="blog-foo-jpg",
            fingerprint="sha256:abc",
            width=2000,
            height=1000,
            format="jpeg",
            files=(
                GeneratedFile("blog-foo-jpg-400.jpg", 400, "jpeg"),
                GeneratedFile("blog-foo-jpg-800.jpg", 800, "jpeg"),
            ),
            original="blog-foo-jpg.jpg",
        ),
        "anim.gif": ManifestEntry(
            slug="anim-gif",
            fingerprint="sha256:def",
            width=300,
            height=200,
            format="gif",
            animated=True,
        ),
    }


class TestFormatFor:
    """Tests for format_for"""

    def test_jpeg_variants(self):
        assert format_for("a.jpg") == "jpeg"
        assert format_for("a.JPEG") == "jpeg"

    def test_other_formats(self):
        assert format_for("a.png") == "png"
        assert format_for("dir/a.webp") == "webp"


class TestLoadManifest:
    """Tests for load_manifest"""

    def test_missing_file_returns_empty(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            assert load_manifest(Path(tmpdir) / "nonexistent.yml") == {}

    def test_disabled_manifest_returns_empty(self):
        assert load_manifest(None) == {}

    def test_empty_file_returns_empty(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "manifest.yml"
            path.write_text("")
            assert load_manifest(path) == {}

    def test_malformed_yaml_is_config_error(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "manifest.yml"
            path.write_text("version: 1\nimages: {foo.jpg: [\n")
            with pytest.raises(ConfigError):
                load_manifest(path)

    def test_hand_written_entry_uses_defaults(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "manifest.yml"
            path.write_text(
                "version: 1\n"
                "images:\n"
                "  foo.jpg:\n"
                "    slug: foo-jpg\n"
                "    fingerprint: sha256:abc\n"
                "    width: 1000\n"
                "    files: []\n"
            )
            entry = load_manifest(path)["foo.jpg"]
            assert entry.height == 0
            assert entry.format == "jpeg"
            assert entry.original is None
            assert entry.animated is False
            assert entry.files == ()


class TestParseManifest:
    """Tests for parse_manifest - schema validation"""

    def test_wrong_version(self):
        with pytest.raises(ConfigError):
            parse_manifest({"version": 2, "images": {}})

    def test_missing_version(self):
        with pytest.raises(ConfigError):
            parse_manifest({"images": {}})

    def test_missing_required_field(self):
        data = {"version": 1, "images": {"a.jpg": {"slug": "a-jpg", "width": 10, "files": []}}}
        with pytest.raises(ConfigError, match="fingerprint"):
            parse_manifest(data)

    def test_file_name_with_directory_rejected(self):
        data = {"version": 1, "images": {"a.jpg": {
            "slug": "a-jpg", "fingerprint": "x", "width": 10,
            "files": [{"file_name": "../a.jpg", "width": 5, "format": "jpeg"}],
        }}}
        with pytest.raises(ConfigError):
            parse_manifest(data)

    def test_duplicate_slugs_rejected(self):
        entry = {"slug": "same", "fingerprint": "x", "width": 10, "files": []}
        data = {"version": 1, "images": {"a.jpg": dict(entry), "b.jpg": dict(entry)}}
        with pytest.raises(ConfigError, match="same"):
            parse_manifest(data)

    def test_images_must_be_mapping(self):
        with pytest.raises(ConfigError):
            parse_manifest({"version": 1, "images": ["a.jpg"]})


class TestSaveManifest:
    """Tests for save_manifest - round trips and atomic replacement"""

    def test_save_and_load_roundtrip(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "manifest.yml"
            manifest = sample_manifest()
            save_manifest(path, manifest)
            assert load_manifest(path) == manifest

    def test_output_is_readable_yaml(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "manifest.yml"
            save_manifest(path, sample_manifest())
            text = path.read_text()
            assert text.startswith("version: 1\n")
            assert "file_name: blog-foo-jpg-400.jpg" in text

    def test_overwrites_previous_content(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "manifest.yml"
            save_manifest(path, sample_manifest())
            save_manifest(path, {})
            assert load_manifest(path) == {}

    def test_no_temp_file_left_behind(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "manifest.yml"
            save_manifest(path, sample_manifest())
            assert [p.name for p in Path(tmpdir).iterdir()] == ["manifest.yml"]

    def test_failed_replace_keeps_old_manifest(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "manifest.yml"
            manifest = sample_manifest()
            save_manifest(path, manifest)
            with patch("manifest.os.replace", side_effect=OSError("disk full")):
                with pytest.raises(OSError):
                    save_manifest(path, {})
            assert load_manifest(path) == manifest

    def test_disabled_manifest_writes_nothing(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            save_manifest(None, sample_manifest())
            assert list(Path(tmpdir).iterdir()) == []

    def test_unicode_paths_preserved(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "manifest.yml"
            manifest = {"café/crème.png": ManifestEntry("cafe-creme-png", "sha256:1", 10, 10, "png")}
            save_manifest(path, manifest)
            assert load_manifest(path) == manifest

    def test_failed_write_removes_temp_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "manifest.yml"
            save_manifest(path, {})
            with patch("manifest.os.fsync", side_effect=OSError("disk full")):
                with pytest.raises(OSError, match="disk full"):
                    save_manifest(path, sample_manifest())
            assert [p.name for p in Path(tmpdir).iterdir()] == ["manifest.yml"]
            assert load_manifest(path) == {}
