"""
config.py - Load enfasten.yml into an immutable Config

The config file lives in the base path and uses the same CamelCase keys as
the rest of the site tooling. Keys are matched case-insensitively, so
lower-case spellings (inputfolder, widths) work too. Every key is optional;
missing keys fall back to DEFAULTS below.
"""

import os
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

from errors import ConfigError

CONFIG_FILENAME = "enfasten.yml"

DEFAULTS = {
    "InputFolder": "_site",
    "OutputFolder": "_fastsite",
    "ImageFolder": "assets/images",
    "ManifestFile": "enfasten_manifest.yml",
    "SizesAttr": "",
    "OptimCommand": None,
    "OptimTimeout": 60,
    "ScaleThreshold": 0.9,
    "JpgScaleThreshold": 0.7,
    "JpgQuality": 90,
    "DoCopy": True,
    "Widths": [],
    "Blacklist": [],
    "Workers": None,
}


@dataclass(frozen=True)
class Config:
    base_path: Path
    input_folder: str = DEFAULTS["InputFolder"]
    output_folder: str = DEFAULTS["OutputFolder"]
    image_folder: str = DEFAULTS["ImageFolder"]
    manifest_file: str = DEFAULTS["ManifestFile"]
    sizes_attr: str = DEFAULTS["SizesAttr"]
    optim_command: tuple = ()
    optim_timeout: float = DEFAULTS["OptimTimeout"]
    scale_threshold: float = DEFAULTS["ScaleThreshold"]
    jpg_scale_threshold: float = DEFAULTS["JpgScaleThreshold"]
    jpg_quality: int = DEFAULTS["JpgQuality"]
    do_copy: bool = DEFAULTS["DoCopy"]
    widths: tuple = ()
    blacklist: tuple = ()
    workers: int = 1
    cull: bool = False

    @property
    def input_folder_path(self) -> Path:
        return self.base_path / self.input_folder

    @property
    def output_folder_path(self) -> Path:
        return self.base_path / self.output_folder

    @property
    def image_folder_path(self) -> Path:
        return self.base_path / self.output_folder / self.image_folder

    @property
    def manifest_path(self) -> Optional[Path]:
        """Where the manifest is persisted, or None when persistence is disabled"""
        if not self.manifest_file:
            return None
        return self.base_path / self.manifest_file

    def threshold_for(self, fmt: str) -> float:
        """Scale threshold that applies to an image format"""
        if fmt == "jpeg":
            return self.jpg_scale_threshold
        return self.scale_threshold


def _expect(raw: dict, key: str, types: tuple, what: str):
    value = raw[key]
    # bool is an int subclass, so reject it explicitly for numeric keys
    if isinstance(value, bool) and bool not in types:
        raise ConfigError(f"{key} must be {what}, got {value!r}")
    if not isinstance(value, types):
        raise ConfigError(f"{key} must be {what}, got {value!r}")
    return value


def _parse_command(value) -> tuple:
    if value is None or value == "" or value == []:
        return ()
    if isinstance(value, str):
        return tuple(shlex.split(value))
    if isinstance(value, list) and all(isinstance(arg, str) for arg in value):
        return tuple(value)
    raise ConfigError(f"OptimCommand must be a list of strings, got {value!r}")


def _parse_widths(value) -> tuple:
    if not isinstance(value, list):
        raise ConfigError(f"Widths must be a list of integers, got {value!r}")
    for width in value:
        if isinstance(width, bool) or not isinstance(width, int) or width <= 0:
            raise ConfigError(f"Widths must be positive integers, got {width!r}")
    return tuple(sorted(set(value)))


def _parse_patterns(value) -> tuple:
    if not isinstance(value, list) or not all(isinstance(p, str) for p in value):
        raise ConfigError(f"Blacklist must be a list of glob patterns, got {value!r}")
    return tuple(p.strip("/") for p in value if p.strip("/"))


def _canonical_keys(data: dict) -> dict:
    """
    Map config keys onto the names in DEFAULTS, ignoring case.

    Older enfasten.yml files spell keys in lower case (inputfolder, widths),
    so "widths" and "Widths" are the same key. Unknown keys are rejected so
    that a typo never silently falls back to a default.
    """
    by_lower = {key.lower(): key for key in DEFAULTS}
    result = {}
    unknown = []
    for key, value in data.items():
        canonical = by_lower.get(key.lower()) if isinstance(key, str) else None
        if canonical is None:
            unknown.append(str(key))
            continue
        if canonical in result:
            raise ConfigError(f"{canonical} is set more than once in {CONFIG_FILENAME}")
        result[canonical] = value
    if unknown:
        raise ConfigError(f"Unknown keys in {CONFIG_FILENAME}: {', '.join(sorted(unknown))}")
    return result


def parse_config(data, base_path: Path, cull: bool = False) -> Config:
    """Validate a decoded enfasten.yml document and build a Config"""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the top level")

    raw = dict(DEFAULTS)
    raw.update(_canonical_keys(data))

    for key in ("InputFolder", "OutputFolder", "ImageFolder"):
        if not _expect(raw, key, (str,), "a string").strip():
            raise ConfigError(f"{key} must not be empty")
    manifest_file = raw["ManifestFile"] or ""
    if not isinstance(manifest_file, str):
        raise ConfigError(f"ManifestFile must be a string, got {manifest_file!r}")
    sizes_attr = raw["SizesAttr"] or ""
    if not isinstance(sizes_attr, str):
        raise ConfigError(f"SizesAttr must be a string, got {sizes_attr!r}")

    scale_threshold = float(_expect(raw, "ScaleThreshold", (int, float), "a number"))
    jpg_scale_threshold = float(_expect(raw, "JpgScaleThreshold", (int, float), "a number"))
    for key, threshold in (("ScaleThreshold", scale_threshold), ("JpgScaleThreshold", jpg_scale_threshold)):
        if not 0 < threshold <= 1:
            raise ConfigError(f"{key} must be between 0 and 1, got {threshold}")

    jpg_quality = _expect(raw, "JpgQuality", (int,), "an integer")
    if not 1 <= jpg_quality <= 100:
        raise ConfigError(f"JpgQuality must be between 1 and 100, got {jpg_quality}")

    optim_timeout = float(_expect(raw, "OptimTimeout", (int, float), "a number"))
    if optim_timeout <= 0:
        raise ConfigError(f"OptimTimeout must be positive, got {optim_timeout}")

    workers = raw["Workers"]
    if workers is None:
        workers = os.cpu_count() or 1
    elif isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
        raise ConfigError(f"Workers must be a positive integer, got {workers!r}")

    return Config(
        base_path=Path(base_path),
        input_folder=raw["InputFolder"],
        output_folder=raw["OutputFolder"],
        image_folder=raw["ImageFolder"].strip("/"),
        manifest_file=manifest_file,
        sizes_attr=sizes_attr,
        optim_command=_parse_command(raw["OptimCommand"]),
        optim_timeout=optim_timeout,
        scale_threshold=scale_threshold,
        jpg_scale_threshold=jpg_scale_threshold,
        jpg_quality=jpg_quality,
        do_copy=_expect(raw, "DoCopy", (bool,), "true or false"),
        widths=_parse_widths(raw["Widths"]),
        blacklist=_parse_patterns(raw["Blacklist"]),
        workers=workers,
        cull=cull,
    )


def load_config(base_path: Path, cull: bool = False) -> Config:
    """Load enfasten.yml from the base path"""
    config_path = Path(base_path) / CONFIG_FILENAME
    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"No {CONFIG_FILENAME} found in {base_path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse {config_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Could not read {config_path}: {e}") from e

    return parse_config(data, Path(base_path), cull)
