#!/usr/bin/env python3
"""
enfasten.py - Make a static site faster by generating smaller image widths

Usage:
    python enfasten.py                     # Use ./enfasten.yml
    python enfasten.py --basepath blog     # Use blog/enfasten.yml
    python enfasten.py --cull              # Also delete stale generated images

Each run only regenerates images whose contents or width plan changed
since the manifest was last written.
"""

import argparse
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from config import load_config
from cull import CullReport, canonical_path, cull_image_folder
from discover import discover_images
from errors import EnfastenError
from manifest import load_manifest, save_manifest
from reconcile import reconcile
from site_transfer import TransferReport, transfer_site
from transform import transform_all


@dataclass
class RunSummary:
    discovered: list = field(default_factory=list)
    regenerated: list = field(default_factory=list)
    reused: list = field(default_factory=list)
    failures: list = field(default_factory=list)
    written: list = field(default_factory=list)
    manifest: dict = field(default_factory=dict)
    whitelist: set = field(default_factory=set)
    transfer: Optional[TransferReport] = None
    culled: Optional[CullReport] = None


def build_fast_site(base_path: Path, cull: bool = False) -> RunSummary:
    """
    Run the whole pipeline once.

    Configuration and manifest problems raise before anything is written.
    Images that cannot be read or optimized are left out of the new
    manifest and reported in the summary, so the next run tries them again.
    """
    config = load_config(base_path, cull)
    summary = RunSummary()

    summary.discovered = discover_images(
        config.input_folder_path, config.blacklist, skip_dir=config.output_folder_path
    )
    old_manifest = load_manifest(config.manifest_path)

    config.image_folder_path.mkdir(parents=True, exist_ok=True)

    reconciliation = reconcile(summary.discovered, old_manifest, config)
    summary.reused = list(reconciliation.reused)
    for rel_path, error in reconciliation.failures:
        print(f"ERR   {rel_path}: {error}")

    outcome = transform_all(reconciliation, config)
    summary.failures = reconciliation.failures + outcome.failures
    failed = {rel_path for rel_path, _ in outcome.failures}
    summary.regenerated = [p for p in reconciliation.pending if p not in failed]
    summary.written = outcome.written
    summary.manifest = outcome.manifest

    whitelist = set(outcome.whitelist)
    if config.do_copy:
        summary.transfer = transfer_site(config, outcome.manifest, whitelist)
        for rel_path in summary.transfer.conflicts:
            print(f"SKIP  {rel_path}: name clashes with a generated image")
        for rel_path in summary.transfer.blacklisted:
            print(f"SKIP  {rel_path}: blacklisted, not copied into the image folder")
        whitelist |= summary.transfer.kept_in_image_folder
    if config.manifest_path is not None:
        whitelist.add(canonical_path(config.manifest_path))
    summary.whitelist = whitelist

    save_manifest(config.manifest_path, outcome.manifest)

    if config.cull:
        summary.culled = cull_image_folder(config.image_folder_path, whitelist)
        for path, error in summary.culled.failed:
            print(f"  Could not delete {path}: {error}", file=sys.stderr)

    return summary


def print_summary(summary: RunSummary) -> None:
    print(f"\nImages found: {len(summary.discovered)}")
    print(f"  Regenerated: {len(summary.regenerated)}")
    print(f"  Up to date:  {len(summary.reused)}")
    if summary.failures:
        print(f"  Failed:      {len(summary.failures)} (will retry next run)")
        for rel_path, error in summary.failures:
            print(f"    - {rel_path}: {error}")
    if summary.transfer is not None:
        print(f"Site files copied: {len(summary.transfer.copied)}, pages rewritten: {len(summary.transfer.rewritten)}")
    if summary.culled is not None:
        print(f"Culled {len(summary.culled.deleted)} stale file(s), kept {summary.culled.kept}")


def main():
    parser = argparse.ArgumentParser(
        description="Generate responsive image widths for a static site"
    )
    parser.add_argument("--basepath", "-b", default=".",
                        help="The folder in which to search for enfasten.yml")
    parser.add_argument("--cull", action="store_true",
                        help="Delete generated images that are no longer used")

    args = parser.parse_args()

    try:
        summary = build_fast_site(Path(args.basepath), args.cull)
    except (EnfastenError, OSError) as e:
        print(f"FATAL ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    print_summary(summary)
    print("\nDone!")


if __name__ == "__main__":
    main()
