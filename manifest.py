"""
manifest.py - Load and save the enfasten manifest

The manifest records, for every source image, the slug used to name its
outputs, a fingerprint of its contents and the files generated from it. It
is a plain YAML file so it can be read and edited by hand:

    version: 1
    images:
      blog/foo.jpg:
        slug: blog-foo-jpg
        fingerprint: sha256:9f86d0...
        width: 2000
        height: 1500
        format: jpeg
        original: blog-foo-jpg.jpg
        files:
        - file_name: blog-foo-jpg-400.jpg
          width: 400
          format: jpeg

Required fields: version, images, and per image slug, fingerprint, width
and files. height defaults to 0, format is derived from the source
extension, original defaults to none and animated to false.
"""

import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional

import yaml

from errors import ConfigError

MANIFEST_VERSION = 1


@dataclass(frozen=True)
class GeneratedFile:
    file_name: str
    width: int
    format: str


@dataclass(frozen=True)
class ManifestEntry:
    slug: str
    fingerprint: str
    width: int
    height: int
    format: str
    files: tuple = ()
    original: Optional[str] = None
    animated: bool = False

    @property
    def widths(self) -> tuple:
        return tuple(f.width for f in self.files)

    def output_names(self) -> list:
        """Every file name this entry owns in the image folder"""
        names = [f.file_name for f in self.files]
        if self.original:
            names.append(self.original)
        return names


def format_for(rel_path: str) -> str:
    """Image format name for a source path, based on its extension"""
    ext = PurePosixPath(rel_path).suffix.lower().lstrip(".")
    if ext in ("jpg", "jpeg"):
        return "jpeg"
    return ext


def _require(data: dict, key: str, types: tuple, where: str):
    if key not in data:
        raise ConfigError(f"Manifest entry {where} is missing '{key}'")
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, types):
        raise ConfigError(f"Manifest entry {where} has an invalid '{key}': {value!r}")
    return value


def _parse_file(data, where: str) -> GeneratedFile:
    if not isinstance(data, dict):
        raise ConfigError(f"Manifest entry {where} has a malformed file record: {data!r}")
    file_name = _require(data, "file_name", (str,), where)
    if not file_name or "/" in file_name or "\\" in file_name:
        raise ConfigError(f"Manifest entry {where} has an invalid file name: {file_name!r}")
    return GeneratedFile(
        file_name=file_name,
        width=_require(data, "width", (int,), where),
        format=_require(data, "format", (str,), where),
    )


def _parse_entry(rel_path: str, data) -> ManifestEntry:
    if not isinstance(data, dict):
        raise ConfigError(f"Manifest entry {rel_path} must be a mapping")
    files = _require(data, "files", (list,), rel_path)
    original = data.get("original")
    if original is not None and (not isinstance(original, str) or "/" in original):
        raise ConfigError(f"Manifest entry {rel_path} has an invalid 'original': {original!r}")
    height = data.get("height", 0)
    if isinstance(height, bool) or not isinstance(height, int):
        raise ConfigError(f"Manifest entry {rel_path} has an invalid 'height': {height!r}")
    animated = data.get("animated", False)
    if not isinstance(animated, bool):
        raise ConfigError(f"Manifest entry {rel_path} has an invalid 'animated': {animated!r}")
    fmt = data.get("format") or format_for(rel_path)
    if not isinstance(fmt, str):
        raise ConfigError(f"Manifest entry {rel_path} has an invalid 'format': {fmt!r}")

    return ManifestEntry(
        slug=_require(data, "slug", (str,), rel_path),
        fingerprint=_require(data, "fingerprint", (str,), rel_path),
        width=_require(data, "width", (int,), rel_path),
        height=height,
        format=fmt,
        files=tuple(_parse_file(f, rel_path) for f in files),
        original=original,
        animated=animated,
    )


def parse_manifest(data) -> dict:
    """Validate a decoded manifest document and return {source path: ManifestEntry}"""
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("Manifest must contain a mapping at the top level")

    version = data.get("version")
    if version != MANIFEST_VERSION:
        raise ConfigError(f"Unsupported manifest version: {version!r} (expected {MANIFEST_VERSION})")

    images = data.get("images")
    if images is None:
        images = {}
    if not isinstance(images, dict):
        raise ConfigError("Manifest 'images' must be a mapping of source paths")

    manifest = {}
    seen_slugs = {}
    for rel_path, entry_data in images.items():
        if not isinstance(rel_path, str):
            raise ConfigError(f"Manifest source path must be a string, got {rel_path!r}")
        entry = _parse_entry(rel_path, entry_data)
        if entry.slug in seen_slugs:
            raise ConfigError(
                f"Manifest slug '{entry.slug}' is used by both {seen_slugs[entry.slug]} and {rel_path}"
            )
        seen_slugs[entry.slug] = rel_path
        manifest[rel_path] = entry

    return manifest


def load_manifest(path: Optional[Path]) -> dict:
    """
    Load the manifest from disk.

    A missing file (or a disabled manifest path) is an empty manifest, which
    makes every image regenerate.
    """
    if path is None or not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse manifest {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Could not read manifest {path}: {e}") from e
    return parse_manifest(data)


def manifest_to_dict(manifest: dict) -> dict:
    """Convert a manifest to the plain structure written to disk"""
    images = {}
    for rel_path in sorted(manifest):
        entry = manifest[rel_path]
        record = {
            "slug": entry.slug,
            "fingerprint": entry.fingerprint,
            "width": entry.width,
            "height": entry.height,
            "format": entry.format,
        }
        if entry.original:
            record["original"] = entry.original
        if entry.animated:
            record["animated"] = True
        record["files"] = [
            {"file_name": f.file_name, "width": f.width, "format": f.format}
            for f in entry.files
        ]
        images[rel_path] = record
    return {"version": MANIFEST_VERSION, "images": images}


def save_manifest(path: Optional[Path], manifest: dict) -> None:
    """Write the manifest atomically, replacing any previous copy"""
    if path is None:
        return
    text = yaml.safe_dump(
        manifest_to_dict(manifest),
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    try:
        with open(tmp, "w", encoding="utf-8", newline="") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise
