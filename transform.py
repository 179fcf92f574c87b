"""
transform.py - Generate the resized copies listed in the manifest

For every image queued by the reconciler this writes one file per planned
width into the image folder, runs the optional optimizer command over each
of them and copies the original next to them when DoCopy is on. Images run
in parallel on a thread pool, one image per job; results are merged back on
the calling thread.

Optimizer command: OptimCommand is an argv list. Every "{file}" inside an
argument is replaced with the absolute path of the generated file; if no
argument contains "{file}" the path is appended as the last argument.
"""

import concurrent.futures as cf
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from PIL import Image, ImageOps

from config import Config
from cull import canonical_path
from errors import OptimizationError
from manifest import ManifestEntry
from reconcile import Reconciliation

FILE_PLACEHOLDER = "{file}"

# Per-image progress: pending -> resizing -> optimizing -> done, or failed
PENDING = "pending"
RESIZING = "resizing"
OPTIMIZING = "optimizing"
DONE = "done"
FAILED = "failed"

SAVE_FORMATS = {"jpeg": "JPEG", "png": "PNG", "gif": "GIF", "webp": "WEBP"}


@dataclass
class ImageResult:
    rel_path: str
    written: list = field(default_factory=list)
    error: Optional[str] = None
    status: str = ""
    state: str = PENDING


@dataclass
class TransformOutcome:
    manifest: dict = field(default_factory=dict)
    path_to_slug: dict = field(default_factory=dict)
    whitelist: set = field(default_factory=set)
    written: list = field(default_factory=list)
    failures: list = field(default_factory=list)


def build_optim_cmd(command, path: Path) -> list:
    """Fill the generated file's path into the optimizer command"""
    target = str(path)
    if any(FILE_PLACEHOLDER in arg for arg in command):
        return [arg.replace(FILE_PLACEHOLDER, target) for arg in command]
    return list(command) + [target]


def run_optimizer(command, path: Path, timeout: float) -> None:
    """Run the optimizer over one file, raising OptimizationError on failure"""
    cmd = build_optim_cmd(command, path)
    try:
        proc = subprocess.run(
            cmd, capture_output=True, text=True, errors="replace", timeout=timeout
        )
    except subprocess.TimeoutExpired as e:
        raise OptimizationError(f"{cmd[0]} timed out after {timeout:g}s on {path.name}") from e
    except OSError as e:
        raise OptimizationError(f"Could not run {cmd[0]}: {e}") from e
    if proc.returncode != 0:
        detail = proc.stderr.strip() or proc.stdout.strip() or f"exit status {proc.returncode}"
        raise OptimizationError(f"{cmd[0]} failed on {path.name}: {detail}")


def prepare_mode(img: Image.Image, fmt: str) -> Image.Image:
    """Convert to a mode that resizes cleanly and that the target format can store"""
    if fmt == "jpeg":
        if img.mode not in ("RGB", "L", "CMYK"):
            return img.convert("RGB")
        return img
    if img.mode not in ("RGB", "RGBA", "L"):
        return img.convert("RGBA")
    return img


def save_kwargs(fmt: str, config: Config) -> dict:
    if fmt == "jpeg":
        return {"quality": config.jpg_quality, "optimize": True}
    if fmt == "png":
        return {"optimize": True}
    return {}


def resize_to(img: Image.Image, dest: Path, width: int, fmt: str, config: Config) -> None:
    """Write img scaled to `width` pixels wide, keeping the aspect ratio"""
    height = max(1, round(img.height * width / img.width))
    resized = img.resize((width, height), Image.LANCZOS)
    try:
        resized.save(dest, SAVE_FORMATS.get(fmt, fmt.upper()), **save_kwargs(fmt, config))
    except (OSError, ValueError, KeyError) as e:
        raise OptimizationError(f"Could not write {dest.name}: {e}") from e


def resize_variants(src: Path, entry: ManifestEntry, config: Config, written: list) -> None:
    """Write every resized file listed in the entry"""
    image_folder = config.image_folder_path
    try:
        with Image.open(src) as im:
            im.load()
            # Bake the EXIF rotation in; the tag does not survive resizing
            img = prepare_mode(ImageOps.exif_transpose(im), entry.format)
            for generated in entry.files:
                dest = image_folder / generated.file_name
                written.append(dest)
                resize_to(img, dest, generated.width, generated.format, config)
    except OptimizationError:
        raise
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
        raise OptimizationError(f"Could not resize {src.name}: {e}") from e


def optimize_variants(entry: ManifestEntry, config: Config) -> None:
    for generated in entry.files:
        run_optimizer(config.optim_command, config.image_folder_path / generated.file_name, config.optim_timeout)


def copy_original(src: Path, dest: Path) -> None:
    try:
        shutil.copy2(src, dest)
    except OSError as e:
        raise OptimizationError(f"Could not copy {src.name}: {e}") from e


def remove_partial(paths: list) -> None:
    for path in paths:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            print(f"  Could not remove partial output {path.name}: {e}")


def transform_image(rel_path: str, entry: ManifestEntry, config: Config, regenerate: bool) -> ImageResult:
    """
    Do all the work for one image.

    Runs on a worker thread, so it only touches this image's own files and
    reports everything through the returned ImageResult.
    """
    result = ImageResult(rel_path=rel_path)
    src = config.input_folder_path / rel_path
    written = []

    try:
        if regenerate:
            result.state = RESIZING
            resize_variants(src, entry, config, written)
            if config.optim_command and entry.files:
                result.state = OPTIMIZING
                optimize_variants(entry, config)

        if entry.original:
            dest = config.image_folder_path / entry.original
            if regenerate or not dest.exists():
                written.append(dest)
                copy_original(src, dest)
    except OptimizationError as e:
        remove_partial(written)
        result.state = FAILED
        result.error = str(e)
        result.status = f"ERR   {rel_path}: {e}"
        return result

    result.state = DONE
    result.written = [p.name for p in written]
    if regenerate:
        widths = [f"{f.width}w" for f in entry.files]
        result.status = f"DONE  {rel_path} -> {widths or 'original only'}"
    else:
        result.status = f"COPY  {rel_path}"
    return result


def build_whitelist(manifest: dict, config: Config) -> set:
    """Canonical paths of every file the manifest says must be kept"""
    image_folder = config.image_folder_path
    whitelist = set()
    for entry in manifest.values():
        for name in entry.output_names():
            whitelist.add(canonical_path(image_folder / name))
    return whitelist


def transform_all(reconciliation: Reconciliation, config: Config) -> TransformOutcome:
    """
    Run the transformer over a reconciliation.

    Returns the manifest minus any image that failed, the matching
    path-to-slug map, and the whitelist of output files to keep.
    """
    config.image_folder_path.mkdir(parents=True, exist_ok=True)

    pending = set(reconciliation.pending)
    jobs = []
    for rel_path, entry in reconciliation.manifest.items():
        if rel_path in pending:
            jobs.append((rel_path, entry, True))
        elif entry.original and not (config.image_folder_path / entry.original).exists():
            jobs.append((rel_path, entry, False))

    results = {}
    if jobs:
        with cf.ThreadPoolExecutor(max_workers=config.workers) as ex:
            futures = [ex.submit(transform_image, rel_path, entry, config, regenerate)
                       for rel_path, entry, regenerate in jobs]
            for fut in cf.as_completed(futures):
                result = fut.result()
                print(result.status)
                results[result.rel_path] = result

    outcome = TransformOutcome()
    for rel_path, entry in reconciliation.manifest.items():
        result = results.get(rel_path)
        if result is not None and result.error:
            outcome.failures.append((rel_path, result.error))
            continue
        if result is not None:
            outcome.written.extend(result.written)
        outcome.manifest[rel_path] = entry
        outcome.path_to_slug[rel_path] = reconciliation.path_to_slug[rel_path]

    outcome.whitelist = build_whitelist(outcome.manifest, config)
    return outcome
