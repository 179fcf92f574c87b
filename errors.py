"""
errors.py - Error types raised by the enfasten pipeline

Convention:
- ConfigError - missing or malformed enfasten.yml or manifest. Fatal, raised
  before anything is written.
- ReadError - the input tree could not be walked, or a single image could not
  be read. Traversal failures are fatal; per-image failures are reported and
  the image is retried on the next run.
- OptimizationError - resizing or the external optimizer failed for one
  image. Never fatal for the run.

Plain OSError is used for folder creation and manifest write failures.
"""


class EnfastenError(Exception):
    """Base class for all pipeline errors"""


class ConfigError(EnfastenError):
    """Configuration or manifest file is missing or malformed"""


class ReadError(EnfastenError):
    """A source path could not be read or walked"""


class OptimizationError(EnfastenError):
    """Resizing or post-processing a generated file failed"""
