"""Tests for m3ukeeper.manifest: export dir bookkeeping and sync."""

import json
import os

import pytest

from m3ukeeper.errors import ExportError
from m3ukeeper.manifest import (
    Manifest,
    copy_missing,
    manifest_id,
    same_file,
    sync,
)


@pytest.fixture
def src(root, make_file):
    return make_file(root / "src" / "Rock" / "a.mp3", size=500)


@pytest.fixture
def out_dir(root):
    out = root / "out"
    out.mkdir()
    return out


def _export_once(src, out_dir):
    """Export ``src`` to out_dir and leave a manifest behind."""
    manifest = Manifest()
    manifest.insert(str(out_dir / "Rock" / "a.mp3"), str(src))
    copy_missing(manifest)
    manifest.write(out_dir / "export.json")
    return manifest


def _same_export(src, out_dir):
    manifest = Manifest()
    manifest.insert(str(out_dir / "Rock" / "a.mp3"), str(src))
    return manifest


class TestManifest:
    def test_id_is_stable_string(self):
        assert manifest_id("/out/a.mp3") == manifest_id("/out/a.mp3")
        assert manifest_id("/out/a.mp3").isdigit()

    def test_insert_returns_id(self, src, out_dir):
        m = Manifest()
        id = m.insert(str(out_dir / "a.mp3"), str(src))
        assert id == manifest_id(str(out_dir / "a.mp3"))
        assert m.get(id).src == str(src)

    def test_insert_normalizes_dst(self, out_dir):
        m = Manifest()
        id = m.insert(f"{out_dir}/x/../list.m3u8")
        assert m.get(id).dst == str(out_dir / "list.m3u8")

    def test_insert_missing_src_raises(self, root, out_dir):
        with pytest.raises(ExportError, match="src"):
            Manifest().insert(str(out_dir / "a.mp3"), str(root / "nope.mp3"))

    def test_insert_empty_dst_raises(self):
        with pytest.raises(ExportError):
            Manifest().insert("")

    def test_write_format(self, src, out_dir):
        m = Manifest()
        pl_id = m.insert(str(out_dir / "list.m3u8"))
        mp3_id = m.insert(str(out_dir / "a.mp3"), str(src))
        m.write(out_dir / "export.json")

        text = (out_dir / "export.json").read_text(encoding="utf-8")
        data = json.loads(text)
        assert data[pl_id] == {"dst": str(out_dir / "list.m3u8")}
        assert data[mp3_id] == {"dst": str(out_dir / "a.mp3"), "src": str(src)}
        assert '\n    "' in text

    def test_load_roundtrip(self, src, out_dir):
        m = Manifest()
        id = m.insert(str(out_dir / "a.mp3"), str(src))
        m.write(out_dir / "export.json")
        loaded = Manifest.load(out_dir / "export.json")
        assert loaded.get(id) == m.get(id)
        assert len(loaded) == 1


class TestSameFile:
    def test_within_tolerance(self, root, make_file):
        a = make_file(root / "a.bin")
        b = make_file(root / "b.bin")
        os.utime(a, (1_000_000, 1_000_000))
        os.utime(b, (1_000_001, 1_000_001))
        assert same_file(str(a), str(b))

    def test_outside_tolerance(self, root, make_file):
        a = make_file(root / "a.bin")
        b = make_file(root / "b.bin")
        os.utime(a, (1_000_000, 1_000_000))
        os.utime(b, (1_000_005, 1_000_005))
        assert not same_file(str(a), str(b))

    def test_size_differs(self, root, make_file):
        a = make_file(root / "a.bin", size=1)
        b = make_file(root / "b.bin", size=2)
        os.utime(a, (1_000_000, 1_000_000))
        os.utime(b, (1_000_000, 1_000_000))
        assert not same_file(str(a), str(b))


class TestCopyMissing:
    def test_copies_with_source_mtime(self, src, out_dir):
        os.utime(src, (1_000_000, 1_000_000))
        manifest = Manifest()
        manifest.insert(str(out_dir / "Rock" / "a.mp3"), str(src))

        copied = copy_missing(manifest)

        dst = out_dir / "Rock" / "a.mp3"
        assert [e.dst for e in copied] == [str(dst)]
        assert dst.stat().st_size == 500
        assert dst.stat().st_mtime == pytest.approx(1_000_000)

    def test_skips_existing_and_generated(self, src, out_dir):
        (out_dir / "Rock").mkdir()
        (out_dir / "Rock" / "a.mp3").write_bytes(b"x")
        manifest = Manifest()
        manifest.insert(str(out_dir / "Rock" / "a.mp3"), str(src))
        manifest.insert(str(out_dir / "list.m3u8"))
        assert copy_missing(manifest) == []

    def test_on_copy_callback(self, src, out_dir):
        seen = []
        copy_missing(_same_export(src, out_dir), seen.append)
        assert len(seen) == 1


class TestSync:
    def test_no_manifest(self, src, out_dir):
        (out_dir / "old.mp3").write_bytes(b"x")
        result = sync(out_dir / "export.json", _same_export(src, out_dir))
        assert not result.manifest_found
        assert (out_dir / "old.mp3").exists()

    def test_no_manifest_clear_confirmed(self, src, out_dir):
        (out_dir / "old.mp3").write_bytes(b"x")
        (out_dir / "sub").mkdir()
        asked = []
        sync(
            out_dir / "export.json",
            _same_export(src, out_dir),
            confirm_clear=lambda msg: asked.append(msg) or True,
        )
        assert len(asked) == 1
        assert list(out_dir.iterdir()) == []

    def test_no_manifest_clear_declined(self, src, out_dir):
        (out_dir / "old.mp3").write_bytes(b"x")
        sync(out_dir / "export.json", _same_export(src, out_dir), confirm_clear=lambda msg: False)
        assert (out_dir / "old.mp3").exists()

    @pytest.mark.parametrize("content", ["{truncated", "[1, 2]", '{"1": {"src": "/a.mp3"}}'])
    def test_unreadable_manifest_counts_as_missing(self, src, out_dir, content):
        (out_dir / "export.json").write_text(content)
        (out_dir / "old.mp3").write_bytes(b"x")
        asked = []

        result = sync(
            out_dir / "export.json",
            _same_export(src, out_dir),
            confirm_clear=lambda msg: asked.append(msg) or False,
        )

        assert not result.manifest_found
        assert "unreadable" in asked[0]
        assert (out_dir / "old.mp3").exists()

    def test_unreadable_manifest_clear_confirmed(self, src, out_dir):
        (out_dir / "export.json").write_text("{truncated")
        (out_dir / "old.mp3").write_bytes(b"x")
        sync(out_dir / "export.json", _same_export(src, out_dir), confirm_clear=lambda msg: True)
        assert list(out_dir.iterdir()) == []

    def test_unchanged_file_is_kept(self, src, out_dir):
        _export_once(src, out_dir)
        new = _same_export(src, out_dir)

        result = sync(out_dir / "export.json", new)

        assert result.kept == 1
        assert result.kept_bytes == 500
        assert result.deleted == 0
        assert (out_dir / "Rock" / "a.mp3").exists()
        assert copy_missing(new) == []

    def test_touched_source_is_recopied(self, src, out_dir):
        _export_once(src, out_dir)
        st = src.stat()
        os.utime(src, (st.st_atime, st.st_mtime + 10))
        new = _same_export(src, out_dir)

        result = sync(out_dir / "export.json", new)

        assert result.kept == 0
        assert result.deleted == 1
        assert len(copy_missing(new)) == 1

    def test_orphaned_file_deleted(self, src, out_dir):
        _export_once(src, out_dir)
        result = sync(out_dir / "export.json", Manifest())
        assert result.orphaned == 1
        assert result.deleted == 1
        assert not (out_dir / "Rock" / "a.mp3").exists()

    def test_generated_files_always_deleted(self, out_dir):
        (out_dir / "list.m3u8").write_text("x")
        old = Manifest()
        old.insert(str(out_dir / "list.m3u8"))
        old.write(out_dir / "export.json")

        new = Manifest()
        new.insert(str(out_dir / "list.m3u8"))
        result = sync(out_dir / "export.json", new)

        assert result.deleted == 1
        assert result.orphaned == 0
        assert not (out_dir / "list.m3u8").exists()

    def test_already_deleted_file_is_tolerated(self, src, out_dir):
        _export_once(src, out_dir)
        (out_dir / "Rock" / "a.mp3").unlink()
        result = sync(out_dir / "export.json", Manifest())
        assert result.deleted == 0
        assert result.failed == 0

    def test_mismatched_entry_is_invalid(self, src, out_dir):
        stray = out_dir / "stray.mp3"
        stray.write_bytes(b"x")
        new = _same_export(src, out_dir)
        id = next(iter(new.entries))
        (out_dir / "export.json").write_text(json.dumps({id: {"dst": str(stray)}}))

        result = sync(out_dir / "export.json", new)

        assert result.invalid == 1
        assert not stray.exists()

    def test_manifest_file_removed(self, src, out_dir):
        _export_once(src, out_dir)
        result = sync(out_dir / "export.json", _same_export(src, out_dir))
        assert result.manifest_found
        assert result.manifest_deleted
        assert not (out_dir / "export.json").exists()

    def test_on_item_callback(self, src, out_dir):
        _export_once(src, out_dir)
        seen = []
        sync(out_dir / "export.json", Manifest(), on_item=seen.append)
        assert [e.dst for e in seen] == [str(out_dir / "Rock" / "a.mp3")]
