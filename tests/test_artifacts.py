"""Tests for image artifact discovery."""

from __future__ import annotations

import os
from pathlib import Path

from tether.relay.artifacts import extract_image_paths, find_new_images, snapshot_files


class TestSnapshot:
    def test_records_nested_files(self, tmp_path: Path) -> None:
        (tmp_path / "sub").mkdir()
        (tmp_path / "a.txt").write_text("a")
        (tmp_path / "sub" / "b.png").write_bytes(b"png")
        snapshot = snapshot_files(tmp_path)
        assert set(snapshot) == {str(tmp_path / "a.txt"), str(tmp_path / "sub" / "b.png")}

    def test_missing_directory_is_empty(self, tmp_path: Path) -> None:
        assert snapshot_files(tmp_path / "nope") == {}


class TestFindNewImages:
    def test_new_and_modified_images(self, tmp_path: Path) -> None:
        old = tmp_path / "old.png"
        touched = tmp_path / "touched.jpg"
        old.write_bytes(b"1")
        touched.write_bytes(b"1")
        before = snapshot_files(tmp_path)

        fresh = tmp_path / "chart.PNG"
        fresh.write_bytes(b"2")
        (tmp_path / "notes.md").write_text("not an image")
        stat = touched.stat()
        os.utime(touched, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))

        found = find_new_images(before, tmp_path)
        assert sorted(found) == sorted([str(fresh), str(touched)])


class TestExtractImagePaths:
    def test_marker_and_absolute_path(self, tmp_path: Path) -> None:
        plot = tmp_path / "plot.png"
        shot = tmp_path / "shot.jpeg"
        plot.write_bytes(b"p")
        shot.write_bytes(b"s")
        output = f"Saved [Image: source: {plot}]\nAlso see `{shot}` for details."
        assert extract_image_paths(output) == [str(plot), str(shot)]

    def test_missing_files_skipped(self, tmp_path: Path) -> None:
        output = f"Wrote {tmp_path / 'ghost.png'}"
        assert extract_image_paths(output) == []

    def test_non_image_paths_ignored(self, tmp_path: Path) -> None:
        doc = tmp_path / "report.pdf"
        doc.write_bytes(b"%PDF")
        assert extract_image_paths(f"see {doc}") == []

    def test_duplicates_collapsed(self, tmp_path: Path) -> None:
        plot = tmp_path / "plot.png"
        plot.write_bytes(b"p")
        output = f"[Image: source: {plot}] and again {plot}"
        assert extract_image_paths(output) == [str(plot)]
