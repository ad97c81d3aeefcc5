"""
Unit tests for the disk synchronizer.
[CTX:PBI-1:1-5:SYNC]

Tests cover:
- Round trip of declared content to disk
- Skipping unchanged files without touching timestamps
- Overwrite protection
- Clean targets mirroring their content map
- Output root ownership for clean targets
"""
import logging
import os
from pathlib import Path

import pytest

from gencontent.core import (
    CreateFileOptions,
    DiskSynchronizer,
    GeneratedContentRegistry,
    SharedOutputRootError,
    SyncAction,
    TelemetryRecorder,
    UnknownTargetError,
)

OLD_MTIME_NS = 1_000_000_000 * 1_000_000_000


@pytest.fixture
def registry():
    return GeneratedContentRegistry()


@pytest.fixture
def recorder():
    return TelemetryRecorder(collect_stats=True)


@pytest.fixture
def synchronizer(registry, recorder):
    return DiskSynchronizer(registry, recorder=recorder)


@pytest.fixture
def handle(registry):
    return registry.handle_for("test.dsl")


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    os.utime(path, ns=(OLD_MTIME_NS, OLD_MTIME_NS))


def _files(root: Path) -> list[str]:
    return sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())


class TestWrite:
    """Test writing content maps to disk."""

    def test_round_trip(self, registry, synchronizer, handle, tmp_path):
        handle.create_file("a.txt", "alpha")
        handle.create_file("nested/deeper/b.txt", "beta\r\nwith crlf")
        handle.create_file("bin/c.dat", b"\x00\xff\x10")
        out = tmp_path / "out"

        report = synchronizer.sync(out)

        assert (out / "a.txt").read_bytes() == b"alpha"
        assert (out / "nested/deeper/b.txt").read_bytes() == b"beta\r\nwith crlf"
        assert (out / "bin/c.dat").read_bytes() == b"\x00\xff\x10"
        assert report.created == sorted(
            ["a.txt", os.path.normpath("nested/deeper/b.txt"), os.path.normpath("bin/c.dat")]
        )
        assert report.updated == []
        assert report.target == "DEFAULT"
        assert report.output_root == out

    def test_utf8_encoding(self, synchronizer, handle, tmp_path):
        handle.create_file("u.txt", "grüße")
        synchronizer.sync(tmp_path)
        assert (tmp_path / "u.txt").read_bytes() == "grüße".encode("utf-8")

    def test_empty_map_creates_root(self, synchronizer, tmp_path):
        out = tmp_path / "a" / "b"
        report = synchronizer.sync(out)

        assert out.is_dir()
        assert report.written == []

    def test_example_scenario(self, registry, synchronizer, tmp_path):
        registry.register_target("LIB", default_overwrite=False, clean=False)
        handle = registry.handle_for("model.dsl")
        handle.create_file("x.txt", "hello", CreateFileOptions(target="LIB"))
        handle.create_file("x.txt", "hello", CreateFileOptions(target="LIB"))
        assert len(registry.content("LIB")) == 1

        synchronizer.sync(tmp_path, "LIB")

        assert (tmp_path / "x.txt").read_text(encoding="utf-8") == "hello"

    def test_unchanged_file_not_touched(self, synchronizer, handle, tmp_path, recorder):
        target = tmp_path / "a.txt"
        _write(target, "same")
        handle.create_file("a.txt", "same", CreateFileOptions(overwrite=True))

        report = synchronizer.sync(tmp_path)

        assert report.unchanged == ["a.txt"]
        assert report.written == []
        assert target.stat().st_mtime_ns == OLD_MTIME_NS
        assert recorder.get_stats().bytes_written == 0

    def test_changed_file_overwritten(self, synchronizer, handle, tmp_path):
        target = tmp_path / "a.txt"
        _write(target, "old")
        handle.create_file("a.txt", "new", CreateFileOptions(overwrite=True))

        report = synchronizer.sync(tmp_path)

        assert report.updated == ["a.txt"]
        assert target.read_text(encoding="utf-8") == "new"

    def test_protected_file_preserved(self, synchronizer, handle, tmp_path):
        target = tmp_path / "a.txt"
        _write(target, "hand edited")
        handle.create_file("a.txt", "generated", CreateFileOptions(overwrite=False))

        report = synchronizer.sync(tmp_path)

        assert report.protected == ["a.txt"]
        assert target.read_text(encoding="utf-8") == "hand edited"
        assert target.stat().st_mtime_ns == OLD_MTIME_NS

    def test_missing_protected_file_created(self, synchronizer, handle, tmp_path):
        handle.create_file("a.txt", "initial", CreateFileOptions(overwrite=False))

        report = synchronizer.sync(tmp_path)

        assert report.created == ["a.txt"]
        assert (tmp_path / "a.txt").read_text(encoding="utf-8") == "initial"

    def test_second_run_is_noop(self, synchronizer, handle, tmp_path):
        handle.create_file("a.txt", "A")
        handle.create_file("d/b.txt", "B")

        synchronizer.sync(tmp_path)
        second = synchronizer.sync(tmp_path)

        assert second.written == []
        assert second.unchanged == sorted(["a.txt", os.path.normpath("d/b.txt")])

    def test_non_clean_keeps_extra_files(self, synchronizer, handle, tmp_path):
        _write(tmp_path / "extra.txt", "keep me")
        handle.create_file("a.txt", "A")

        report = synchronizer.sync(tmp_path)

        assert report.deleted == []
        assert _files(tmp_path) == ["a.txt", "extra.txt"]

    def test_unknown_target(self, synchronizer, tmp_path):
        with pytest.raises(UnknownTargetError):
            synchronizer.sync(tmp_path / "out", "nope")
        assert not (tmp_path / "out").exists()

    @pytest.mark.parametrize("path", ["../escape.txt", "a/../../escape.txt", "."])
    def test_escaping_paths_rejected(self, synchronizer, handle, tmp_path, path):
        handle.create_file(path, "X")
        out = tmp_path / "out"

        with pytest.raises(ValueError):
            synchronizer.sync(out)
        assert not out.exists()

    def test_absolute_path_rejected(self, synchronizer, handle, tmp_path):
        handle.create_file(str(tmp_path / "abs.txt"), "X")
        with pytest.raises(ValueError):
            synchronizer.sync(tmp_path / "out")

    def test_normalized_paths(self, synchronizer, handle, tmp_path):
        handle.create_file("./a/./b.txt", "B")
        report = synchronizer.sync(tmp_path)

        assert report.created == [os.path.normpath("a/b.txt")]
        assert (tmp_path / "a" / "b.txt").read_text(encoding="utf-8") == "B"

    def test_path_spellings_write_one_file(self, registry, synchronizer, tmp_path):
        registry.handle_for("a.dsl").create_file("x.txt", "X")
        registry.handle_for("b.dsl").create_file("./x.txt", "X")

        report = synchronizer.sync(tmp_path)

        assert report.created == ["x.txt"]
        assert (tmp_path / "x.txt").read_text(encoding="utf-8") == "X"

    def test_directory_in_place_of_file(self, synchronizer, handle, tmp_path, caplog):
        """Test the failing path is carried by the error and logged."""
        (tmp_path / "a.txt").mkdir()
        handle.create_file("a.txt", "A")

        with caplog.at_level(logging.ERROR, logger="gencontent.core.synchronizer"):
            with pytest.raises(OSError) as exc_info:
                synchronizer.sync(tmp_path)

        assert exc_info.value.filename == str(tmp_path / "a.txt")
        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert len(errors) == 1
        assert str(tmp_path / "a.txt") in errors[0].getMessage()

    def test_dangling_link_replaced_not_followed(self, synchronizer, handle, tmp_path):
        root = tmp_path / "out"
        root.mkdir()
        outside = tmp_path / "outside.txt"
        try:
            (root / "a.txt").symlink_to(outside)
        except (OSError, NotImplementedError):
            pytest.skip("symlinks not supported")
        handle.create_file("a.txt", "A")

        report = synchronizer.sync(root)

        assert report.updated == ["a.txt"]
        assert not (root / "a.txt").is_symlink()
        assert (root / "a.txt").read_text(encoding="utf-8") == "A"
        assert not outside.exists()

    def test_dangling_link_protected(self, synchronizer, handle, tmp_path):
        root = tmp_path / "out"
        root.mkdir()
        outside = tmp_path / "outside.txt"
        try:
            (root / "a.txt").symlink_to(outside)
        except (OSError, NotImplementedError):
            pytest.skip("symlinks not supported")
        handle.create_file("a.txt", "A", CreateFileOptions(overwrite=False))

        report = synchronizer.sync(root)

        assert report.protected == ["a.txt"]
        assert (root / "a.txt").is_symlink()
        assert not outside.exists()

    def test_invalid_concurrency(self, registry):
        with pytest.raises(ValueError):
            DiskSynchronizer(registry, max_concurrency=0)


class TestClean:
    """Test clean targets."""

    @pytest.fixture
    def clean_handle(self, registry):
        registry.register_target("GEN", default_overwrite=True, clean=True)
        return registry.handle_for("test.dsl")

    def test_mirrors_content_map(self, synchronizer, clean_handle, tmp_path):
        _write(tmp_path / "stale.txt", "old")
        _write(tmp_path / "old" / "deep" / "stale.txt", "old")
        _write(tmp_path / "keep" / "stale.txt", "old")
        (tmp_path / "empty").mkdir()
        clean_handle.create_file("a.txt", "A", CreateFileOptions(target="GEN"))
        clean_handle.create_file("keep/b.txt", "B", CreateFileOptions(target="GEN"))

        report = synchronizer.sync(tmp_path, "GEN")

        assert _files(tmp_path) == ["a.txt", "keep/b.txt"]
        assert sorted(p.name for p in tmp_path.iterdir()) == ["a.txt", "keep"]
        assert report.deleted == sorted(
            [
                "stale.txt",
                os.path.normpath("old/deep/stale.txt"),
                os.path.normpath("keep/stale.txt"),
            ]
        )
        assert sorted(report.removed_dirs) == sorted(
            ["empty", "old", os.path.normpath("old/deep")]
        )
        assert tmp_path.is_dir()

    def test_protected_declared_file_survives(self, synchronizer, clean_handle, tmp_path):
        _write(tmp_path / "a.txt", "hand edited")
        clean_handle.create_file(
            "a.txt", "generated", CreateFileOptions(target="GEN", overwrite=False)
        )

        report = synchronizer.sync(tmp_path, "GEN")

        assert report.protected == ["a.txt"]
        assert report.deleted == []
        assert (tmp_path / "a.txt").read_text(encoding="utf-8") == "hand edited"

    def test_previous_run_output_removed(self, registry, recorder, tmp_path):
        """Test files generated by an earlier session are removed when no longer declared."""
        first = GeneratedContentRegistry(clean_default=True)
        first.handle_for("a.dsl").create_file("a.txt", "A")
        first.handle_for("b.dsl").create_file("b.txt", "B")
        DiskSynchronizer(first, recorder=recorder).sync(tmp_path)

        second = GeneratedContentRegistry(clean_default=True)
        second.handle_for("a.dsl").create_file("a.txt", "A")
        report = DiskSynchronizer(second, recorder=recorder).sync(tmp_path)

        assert _files(tmp_path) == ["a.txt"]
        assert report.deleted == ["b.txt"]
        assert report.unchanged == ["a.txt"]

    def test_empty_map_empties_root(self, synchronizer, registry, tmp_path):
        registry.register_target("GEN", clean=True)
        _write(tmp_path / "x" / "y.txt", "Y")

        synchronizer.sync(tmp_path, "GEN")

        assert list(tmp_path.iterdir()) == []

    def test_symlinked_directory_removed_not_followed(
        self, synchronizer, clean_handle, tmp_path
    ):
        outside = tmp_path / "outside"
        _write(outside / "precious.txt", "P")
        out = tmp_path / "out"
        out.mkdir()
        try:
            (out / "link").symlink_to(outside, target_is_directory=True)
        except (OSError, NotImplementedError):
            pytest.skip("symlinks not supported")
        clean_handle.create_file("a.txt", "A", CreateFileOptions(target="GEN"))

        report = synchronizer.sync(out, "GEN")

        assert "link" in report.deleted
        assert not (out / "link").exists()
        assert (outside / "precious.txt").read_text(encoding="utf-8") == "P"


class TestOutputRoots:
    """Test clean targets require dedicated output roots."""

    @pytest.fixture(autouse=True)
    def targets(self, registry):
        registry.register_target("GEN", clean=True)
        registry.register_target("SRC", clean=False)
        registry.register_target("LIB", clean=False)

    def test_clean_after_other_target_same_root(self, synchronizer, tmp_path):
        synchronizer.sync(tmp_path, "SRC")
        with pytest.raises(SharedOutputRootError) as exc_info:
            synchronizer.sync(tmp_path, "GEN")

        assert exc_info.value.target_name == "GEN"
        assert exc_info.value.other_target_name == "SRC"

    def test_other_target_inside_clean_root(self, synchronizer, registry, tmp_path):
        registry.handle_for("a.dsl").create_file("x.txt", "X", CreateFileOptions(target="SRC"))
        synchronizer.sync(tmp_path, "GEN")

        with pytest.raises(SharedOutputRootError):
            synchronizer.sync(tmp_path / "sub", "SRC")
        assert not (tmp_path / "sub").exists()

    def test_clean_root_inside_other_root(self, synchronizer, tmp_path):
        synchronizer.sync(tmp_path, "SRC")
        with pytest.raises(SharedOutputRootError):
            synchronizer.sync(tmp_path / "gen", "GEN")

    def test_disjoint_roots_allowed(self, synchronizer, tmp_path):
        synchronizer.sync(tmp_path / "src", "SRC")
        synchronizer.sync(tmp_path / "src-gen", "GEN")

    def test_non_clean_targets_may_share(self, synchronizer, tmp_path):
        synchronizer.sync(tmp_path, "SRC")
        synchronizer.sync(tmp_path, "LIB")

    def test_same_target_may_resync(self, synchronizer, tmp_path):
        synchronizer.sync(tmp_path, "GEN")
        synchronizer.sync(tmp_path, "GEN")


class TestTelemetry:
    """Test events emitted while synchronizing."""

    def test_events_per_decision(self, registry, recorder, synchronizer, tmp_path):
        registry.register_target("GEN", clean=True)
        handle = registry.handle_for("test.dsl")
        _write(tmp_path / "same.txt", "S")
        _write(tmp_path / "stale.txt", "old")
        handle.create_file("new.txt", "NEW", CreateFileOptions(target="GEN"))
        handle.create_file("same.txt", "S", CreateFileOptions(target="GEN", overwrite=True))

        synchronizer.sync(tmp_path, "GEN")

        actions = {event.path: event.action for event in recorder.get_events()}
        assert actions == {
            "new.txt": SyncAction.CREATE.value,
            "same.txt": SyncAction.UNCHANGED.value,
            "stale.txt": SyncAction.DELETE.value,
        }
        stats = recorder.get_stats()
        assert stats.bytes_written == 3
        assert stats.events_by_target == {"GEN": 3}
