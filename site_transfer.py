"""
site_transfer.py - Copy the site into the output folder and add srcset

Every file of the input site is mirrored into the output folder. HTML pages
get their <img> tags pointed at the generated widths: a srcset listing each
variant plus the original copy, and a sizes attribute when SizesAttr is
set. The src attribute is left alone so pages still work without srcset
support.

srcset URLs are root-absolute (/<ImageFolder>/<file>), so the site is
assumed to be served from the root of its domain. A site published under a
sub-path gets broken srcset entries unless the server maps that prefix.

Unchanged files are not copied again (same size and a destination that is
not older than the source), and rewritten pages are only written when the
result differs from what is already there.
"""

import html
import os
import posixpath
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from urllib.parse import quote, unquote, urlsplit

from config import Config
from cull import canonical_path
from discover import is_blacklisted, walk_files

HTML_EXTS = {".html", ".htm"}

# <img ... src="..."> case-insensitively
IMG_TAG_RE = re.compile(r"<img\b[^>]*\bsrc\s*=\s*(['\"])(?P<src>[^'\"]+)\1[^>]*>", re.IGNORECASE)


@dataclass
class TransferReport:
    copied: list = field(default_factory=list)
    rewritten: list = field(default_factory=list)
    unchanged: int = 0
    conflicts: list = field(default_factory=list)
    blacklisted: list = field(default_factory=list)
    kept_in_image_folder: set = field(default_factory=set)


def needs_copy(src: Path, dst: Path) -> bool:
    if not dst.exists():
        return True
    src_stat, dst_stat = src.stat(), dst.stat()
    return src_stat.st_size != dst_stat.st_size or src_stat.st_mtime > dst_stat.st_mtime


def resolve_src(src: str, page_rel: str) -> Optional[str]:
    """
    Map an <img src> to a path relative to the input folder.

    Returns None for external URLs, data: URIs and anything that points
    outside the site.
    """
    src = src.strip()
    parts = urlsplit(src)
    if parts.scheme or parts.netloc or not parts.path:
        return None
    path = unquote(parts.path)
    if path.startswith("/"):
        rel = posixpath.normpath(path.lstrip("/"))
    else:
        rel = posixpath.normpath(posixpath.join(posixpath.dirname(page_rel), path))
    if rel == "." or rel.startswith("../") or rel == "..":
        return None
    return rel


def image_url(config: Config, file_name: str) -> str:
    return "/" + quote(f"{config.image_folder}/{file_name}")


def build_srcset(entry, config: Config) -> str:
    """srcset value for a manifest entry, smallest width first"""
    candidates = [(f.width, image_url(config, f.file_name)) for f in entry.files]
    if entry.original:
        candidates.append((entry.width, image_url(config, entry.original)))
    candidates.sort()
    return ", ".join(f"{url} {width}w" for width, url in candidates)


def insert_or_replace_attr(tag: str, attr: str, value: str) -> str:
    value = html.escape(value, quote=True)
    patt = re.compile(rf"\s{attr}\s*=\s*(['\"]).*?\1", re.IGNORECASE | re.DOTALL)
    if patt.search(tag):
        return patt.sub(lambda m: f' {attr}="{value}"', tag, count=1)
    # insert before '>' or '/>'
    end = tag.rfind(">")
    i = end - 1
    while i >= 0 and tag[i].isspace():
        i -= 1
    if i >= 0 and tag[i] == "/":
        return tag[:i].rstrip() + f' {attr}="{value}" ' + tag[i:]
    return tag[:end].rstrip() + f' {attr}="{value}"' + tag[end:]


def rewrite_img_tags(text: str, page_rel: str, manifest: dict, config: Config) -> str:
    """Add srcset (and sizes) to every <img> that shows a manifest image"""

    def repl(m: re.Match) -> str:
        tag = m.group(0)
        rel = resolve_src(html.unescape(m.group("src")), page_rel)
        entry = manifest.get(rel) if rel else None
        if entry is None or not (entry.files or entry.original):
            return tag
        tag = insert_or_replace_attr(tag, "srcset", build_srcset(entry, config))
        if config.sizes_attr:
            tag = insert_or_replace_attr(tag, "sizes", config.sizes_attr)
        return tag

    return IMG_TAG_RE.sub(repl, text)


def transfer_site(config: Config, manifest: dict, whitelist: set) -> TransferReport:
    """
    Mirror the input site into the output folder.

    Files that would land on a generated image are skipped and reported.
    Files that land inside the image folder are returned in
    kept_in_image_folder so the cull pass leaves them alone. Blacklisted files
    are never copied into the image folder.
    """
    report = TransferReport()
    input_root = config.input_folder_path
    output_root = config.output_folder_path
    image_root = canonical_path(config.image_folder_path) + os.sep

    for rel in walk_files(input_root, skip_dir=output_root):
        src = input_root / rel
        dst = output_root / rel
        dst_key = canonical_path(dst)

        if dst_key in whitelist:
            report.conflicts.append(rel)
            continue
        if dst_key.startswith(image_root):
            if is_blacklisted(rel, config.blacklist):
                report.blacklisted.append(rel)
                continue
            report.kept_in_image_folder.add(dst_key)

        if Path(rel).suffix.lower() in HTML_EXTS:
            raw = src.read_bytes().decode("utf-8", errors="surrogateescape")
            new = rewrite_img_tags(raw, rel, manifest, config).encode("utf-8", errors="surrogateescape")
            if dst.exists() and dst.read_bytes() == new:
                report.unchanged += 1
                continue
            dst.parent.mkdir(parents=True, exist_ok=True)
            dst.write_bytes(new)
            report.rewritten.append(rel)
            continue

        if not needs_copy(src, dst):
            report.unchanged += 1
            continue
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, dst)
        report.copied.append(rel)

    return report
