#!/usr/bin/env python3
"""Find and parse Docker image references in docs/*.md(x).

Rules:
- Walk the docs tree, skipping node_modules and hidden directories.
- Match gcr.io/<project>/<image>:<tag>, minaprotocol/<image>:<tag> and
  image: "<value>" lines, in that order.
- Drop references with template placeholders ({var}, <var>, $var, [var])
  or an unfinished tag such as "image:tag-".
"""
from __future__ import annotations
import os
import re
import pathlib
import typing as t

DOC_SUFFIXES = (".mdx", ".md")
SKIP_DIRS = {"node_modules"}
GCR_PREFIX = "gcr.io/"
DEFAULT_TAG = "latest"

# gcr.io must come first so the full path is captured
IMAGE_PATTERNS: list[tuple[re.Pattern[str], int]] = [
    (re.compile(r"gcr\.io/[a-z0-9_.-]+/[a-z0-9_.-]+:[a-z0-9_.-]+", re.IGNORECASE), 0),
    (re.compile(r"minaprotocol/[a-z0-9_.-]+:[a-z0-9_.-]+", re.IGNORECASE), 0),
    (re.compile(r"""image:\s*['"]([^'"\n]+)['"]""", re.IGNORECASE), 1),
]

PLACEHOLDER_RE = re.compile(r"[{<$\[]")
INCOMPLETE_TAG_RE = re.compile(r":.*-$")


class ParsedReference(t.TypedDict, total=False):
    kind: t.Literal["gcr", "dockerhub"]
    image_path: str
    image_name: str
    tag: str


def _raise(err: OSError) -> None:
    raise err


def find_doc_files(root: pathlib.Path) -> list[pathlib.Path]:
    """Return every .md/.mdx file below ``root``.

    Pruned directories are never descended into. Any listing error is raised.
    """
    if not root.is_dir():
        raise FileNotFoundError(f"Docs directory not found: {root}")
    files: list[pathlib.Path] = []
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
        dirnames[:] = [d for d in dirnames if d not in SKIP_DIRS and not d.startswith(".")]
        for fn in filenames:
            if fn.endswith(DOC_SUFFIXES):
                files.append(pathlib.Path(dirpath) / fn)
    return files


def has_template_placeholders(image_ref: str) -> bool:
    if PLACEHOLDER_RE.search(image_ref):
        return True
    # e.g. "image:tag-" where the version was meant to be appended
    return bool(INCOMPLETE_TAG_RE.search(image_ref))


def extract_image_refs(content: str) -> list[str]:
    """Return the concrete image references in ``content``.

    One entry per pattern and reference; a reference picked up by two
    different patterns appears twice.
    """
    refs: list[str] = []
    for pattern, group in IMAGE_PATTERNS:
        seen: set[str] = set()
        for m in pattern.finditer(content):
            image_ref = m.group(group)
            if not image_ref or has_template_placeholders(image_ref):
                continue
            if image_ref in seen:
                continue
            seen.add(image_ref)
            refs.append(image_ref)
    return refs


def collect_image_refs(docs_dir: pathlib.Path, files: t.Iterable[pathlib.Path]) -> dict[str, list[str]]:
    """Map each unique image reference to the docs it appears in.

    Keys keep discovery order; locations are POSIX paths relative to
    ``docs_dir`` and a file is listed once per reference.
    """
    locations: dict[str, list[str]] = {}
    for path in files:
        text = path.read_text(encoding="utf-8", errors="replace")
        rel = path.relative_to(docs_dir).as_posix()
        for image_ref in extract_image_refs(text):
            found_in = locations.setdefault(image_ref, [])
            if rel not in found_in:
                found_in.append(rel)
    return locations


def parse_image_ref(image_ref: str) -> ParsedReference:
    """Split a reference into the fields its registry lookup needs.

    gcr.io paths split on the last colon, everything else on the first one.
    A missing or empty tag means ``latest``.
    """
    image_ref = image_ref.replace("'", "").replace('"', "")

    if image_ref.startswith(GCR_PREFIX):
        rest = image_ref[len(GCR_PREFIX):]
        path, sep, tag = rest.rpartition(":")
        if not sep:
            path, tag = rest, ""
        return {"kind": "gcr", "image_path": path, "tag": tag or DEFAULT_TAG}

    name, _, tag = image_ref.partition(":")
    if "/" not in image_ref:
        # official image, e.g. redis:7
        name = f"library/{name}"
    return {"kind": "dockerhub", "image_name": name, "tag": tag or DEFAULT_TAG}
