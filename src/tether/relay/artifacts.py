"""Discover image files a run produced, for upload alongside the reply."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".bmp"})

_MARKER_RE = re.compile(r"\[Image:\s*source:\s*([^\]]+)\]", re.IGNORECASE)
_FENCE_RE = re.compile(r"```[\w]*\n?([\s\S]*?)```")
_INLINE_CODE_RE = re.compile(r"`([^`]+)`")
_ABS_IMAGE_PATH_RE = re.compile(
    r"(?:^|[\s:])(/{1,2}[\w./-]+\.(?:png|jpg|jpeg|gif|webp|svg|bmp))",
    re.IGNORECASE | re.MULTILINE,
)

#: File path → modification time (ns).
Snapshot = dict[str, int]


def snapshot_files(directory: str | Path) -> Snapshot:
    """Record every regular file under *directory* with its mtime.

    Unreadable directories and files are skipped.
    """
    snapshot: Snapshot = {}
    for root, _dirs, files in os.walk(directory, onerror=lambda _exc: None):
        for name in files:
            full = os.path.join(root, name)
            try:
                st = os.stat(full)
            except OSError:
                continue
            snapshot[full] = st.st_mtime_ns
    return snapshot


def find_new_images(before: Snapshot, directory: str | Path) -> list[str]:
    """Image files under *directory* that are new or modified since *before*."""
    found: list[str] = []
    for path, mtime in snapshot_files(directory).items():
        if Path(path).suffix.lower() not in IMAGE_EXTENSIONS:
            continue
        previous = before.get(path)
        if previous is None or mtime > previous:
            found.append(path)
    return found


def extract_image_paths(output: str) -> list[str]:
    """Existing image files referenced in a run's text output.

    Recognizes ``[Image: source: /path]`` markers and absolute image
    paths (also inside code spans).
    """
    candidates: dict[str, None] = {}
    for match in _MARKER_RE.finditer(output):
        candidates[match.group(1).strip()] = None

    cleaned = _INLINE_CODE_RE.sub(r"\1", _FENCE_RE.sub(r"\1", output))
    for match in _ABS_IMAGE_PATH_RE.finditer(cleaned):
        candidates[match.group(1).strip()] = None

    paths: list[str] = []
    for candidate in candidates:
        if Path(candidate).suffix.lower() not in IMAGE_EXTENSIONS:
            continue
        if os.path.isfile(candidate):
            logger.info("Image referenced in output: %s", candidate)
            paths.append(candidate)
        else:
            logger.info("Image referenced in output is missing: %s", candidate)
    return paths
