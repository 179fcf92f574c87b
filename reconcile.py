"""
reconcile.py - Decide which images need regenerating

Compares the images found in the input site against the previous manifest.
An image whose contents and width plan are unchanged keeps its old entry
as-is; everything else gets a fresh entry and is queued for the
transformer. Images that disappeared from the input are simply not carried
over, which leaves their outputs for the cull pass.
"""

import hashlib
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from PIL import Image

from config import Config
from errors import ReadError
from manifest import GeneratedFile, ManifestEntry, format_for

SLUG_CHARS_RE = re.compile(r"[^a-z0-9]+")
HASH_CHUNK = 1024 * 1024

# EXIF Orientation values that swap width and height when displayed
EXIF_ORIENTATION = 0x0112
ROTATED_ORIENTATIONS = {5, 6, 7, 8}


@dataclass
class Reconciliation:
    manifest: dict = field(default_factory=dict)
    path_to_slug: dict = field(default_factory=dict)
    pending: list = field(default_factory=list)
    reused: list = field(default_factory=list)
    failures: list = field(default_factory=list)


def slugify(rel_path: str) -> str:
    """Turn a relative source path into a file-name-safe slug"""
    path = PurePosixPath(rel_path)
    ext = path.suffix.lower().lstrip(".")
    stem = str(path.with_suffix("")) if path.suffix else str(path)
    parts = [SLUG_CHARS_RE.sub("-", stem.lower()).strip("-"), ext]
    slug = "-".join(p for p in parts if p)
    return slug or "image"


def assign_slugs(images: list, old_manifest: dict) -> dict:
    """
    Give every discovered image a unique slug.

    Images already in the old manifest keep their recorded slug so their
    outputs keep the same names. New images get slugify(), and on a clash a
    short hash of the source path is appended.
    """
    path_to_slug = {}
    used = set()

    for rel_path in images:
        entry = old_manifest.get(rel_path)
        if entry is not None and entry.slug not in used:
            path_to_slug[rel_path] = entry.slug
            used.add(entry.slug)

    for rel_path in images:
        if rel_path in path_to_slug:
            continue
        slug = slugify(rel_path)
        if slug in used:
            digest = hashlib.sha1(rel_path.encode("utf-8")).hexdigest()[:8]
            slug = f"{slug}-{digest}"
            base, counter = slug, 2
            while slug in used:
                slug = f"{base}-{counter}"
                counter += 1
        path_to_slug[rel_path] = slug
        used.add(slug)

    return path_to_slug


def fingerprint(path: Path) -> str:
    """Content hash of a source file"""
    digest = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(HASH_CHUNK), b""):
                digest.update(chunk)
    except OSError as e:
        raise ReadError(f"Could not read {path}: {e}") from e
    return f"sha256:{digest.hexdigest()}"


def read_image_info(path: Path) -> tuple:
    """Return (width, height, animated) for an image, as it is displayed"""
    try:
        with Image.open(path) as im:
            width, height = im.size
            animated = bool(getattr(im, "is_animated", False))
            if im.getexif().get(EXIF_ORIENTATION) in ROTATED_ORIENTATIONS:
                width, height = height, width
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
        raise ReadError(f"Could not read image size of {path}: {e}") from e
    if width <= 0 or height <= 0:
        raise ReadError(f"Image {path} has no usable dimensions")
    return width, height, animated


def plan_widths(natural_width: int, fmt: str, config: Config, animated: bool = False) -> list:
    """
    Pick which configured widths are worth generating for an image.

    A width is skipped when it is not smaller than the image itself, or when
    the downscale ratio is above the format's threshold, since the saving
    would be too small to justify another file.
    """
    if animated or natural_width <= 0:
        return []
    threshold = config.threshold_for(fmt)
    planned = []
    for width in sorted(set(config.widths)):
        if width >= natural_width:
            continue
        if width / natural_width > threshold:
            continue
        planned.append(width)
    return planned


def output_ext(fmt: str) -> str:
    return "jpg" if fmt == "jpeg" else fmt


def variant_name(slug: str, width: int, fmt: str) -> str:
    return f"{slug}-{width}.{output_ext(fmt)}"


def original_name(slug: str, rel_path: str) -> str:
    ext = PurePosixPath(rel_path).suffix.lower()
    return f"{slug}{ext}"


def can_reuse(entry: ManifestEntry, current_fingerprint: str, config: Config) -> bool:
    """Check whether an old manifest entry is still valid for this run"""
    if entry.fingerprint != current_fingerprint:
        return False
    planned = plan_widths(entry.width, entry.format, config, entry.animated)
    if list(entry.widths) != planned:
        return False
    if bool(entry.original) != config.do_copy:
        return False
    image_folder = config.image_folder_path
    return all((image_folder / f.file_name).is_file() for f in entry.files)


def build_entry(rel_path: str, slug: str, current_fingerprint: str, config: Config) -> ManifestEntry:
    """Create a fresh manifest entry by reading the source image"""
    width, height, animated = read_image_info(config.input_folder_path / rel_path)
    fmt = format_for(rel_path)
    files = tuple(
        GeneratedFile(file_name=variant_name(slug, w, fmt), width=w, format=fmt)
        for w in plan_widths(width, fmt, config, animated)
    )
    return ManifestEntry(
        slug=slug,
        fingerprint=current_fingerprint,
        width=width,
        height=height,
        format=fmt,
        files=files,
        original=original_name(slug, rel_path) if config.do_copy else None,
        animated=animated,
    )


def reconcile(images: list, old_manifest: dict, config: Config) -> Reconciliation:
    """
    Build the new manifest for this run.

    Unreadable images are reported in `failures` and left out of the new
    manifest, so they are retried on the next run.
    """
    result = Reconciliation()
    path_to_slug = assign_slugs(images, old_manifest)

    for rel_path in images:
        slug = path_to_slug[rel_path]
        try:
            current = fingerprint(config.input_folder_path / rel_path)
            old_entry = old_manifest.get(rel_path)
            if old_entry is not None and old_entry.slug == slug and can_reuse(old_entry, current, config):
                result.manifest[rel_path] = old_entry
                result.reused.append(rel_path)
            else:
                result.manifest[rel_path] = build_entry(rel_path, slug, current, config)
                result.pending.append(rel_path)
        except ReadError as e:
            result.failures.append((rel_path, str(e)))
            continue
        result.path_to_slug[rel_path] = slug

    return result
