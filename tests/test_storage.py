"""Tests for path safety and raw file operations under the blob root."""

import os
from pathlib import Path

import pytest

from blossomd.files.storage import (
    TEMP_PREFIX,
    delete_file,
    is_ignored,
    iter_files,
    pubkey_base_path,
    resolve_blob_path,
    to_relative,
    write_blob,
)

PUBKEY = "ab" * 32
SHA = "cd" * 32


def test_to_relative_uses_forward_slashes(tmp_path):
    assert to_relative(tmp_path, tmp_path / "a" / "b.txt") == "a/b.txt"


def test_to_relative_outside_root(tmp_path):
    assert to_relative(tmp_path / "blobs", tmp_path / "other" / "x") is None
    assert to_relative(tmp_path, tmp_path) is None


def test_pubkey_base_path_lowercases():
    assert pubkey_base_path(Path("/data"), PUBKEY.upper()) == Path("/data") / PUBKEY


@pytest.mark.parametrize("bad", ["", "../etc", "ab" * 31, "zz" * 32, PUBKEY + "/x"])
def test_pubkey_base_path_rejects_invalid(bad):
    with pytest.raises(ValueError):
        pubkey_base_path(Path("/data"), bad)


def test_resolve_blob_path_safe():
    got = resolve_blob_path(Path("/data"), PUBKEY, f"{SHA}.png")
    assert got == Path("/data") / PUBKEY / f"{SHA}.png"


@pytest.mark.parametrize("name", ["../../etc/passwd", f"{SHA}/x", "notahash.png", f"{SHA}.toolongextension123"])
def test_resolve_blob_path_rejects_unsafe_names(name):
    with pytest.raises(ValueError):
        resolve_blob_path(Path("/data"), PUBKEY, name)


def test_write_blob_creates_parents_and_leaves_no_temp(tmp_path):
    target = tmp_path / PUBKEY / SHA
    write_blob(target, b"payload")
    assert target.read_bytes() == b"payload"
    assert [p.name for p in target.parent.iterdir()] == [SHA]


def test_delete_file_removes_empty_parents(tmp_path):
    target = tmp_path / PUBKEY / "nested" / SHA
    write_blob(target, b"x")
    delete_file(tmp_path, target)
    assert not target.exists()
    assert not (tmp_path / PUBKEY).exists()
    assert tmp_path.exists()


def test_delete_file_keeps_non_empty_parent(tmp_path):
    a = tmp_path / PUBKEY / "a"
    b = tmp_path / PUBKEY / "b"
    write_blob(a, b"1")
    write_blob(b, b"2")
    delete_file(tmp_path, a)
    assert b.exists()


def test_delete_file_missing_and_outside(tmp_path):
    with pytest.raises(FileNotFoundError):
        delete_file(tmp_path / "root", tmp_path / "root" / "gone")
    outside = tmp_path / "outside.txt"
    outside.write_bytes(b"x")
    with pytest.raises(ValueError):
        delete_file(tmp_path / "root", outside)


def test_iter_files_depth_first_skips_temp_and_symlinks(tmp_path):
    (tmp_path / "b").mkdir()
    (tmp_path / "a.txt").write_bytes(b"a")
    (tmp_path / "b" / "c.txt").write_bytes(b"c")
    (tmp_path / f"{TEMP_PREFIX}upload.part").write_bytes(b"partial")
    os.symlink(tmp_path / "a.txt", tmp_path / "link.txt")
    got = [to_relative(tmp_path, p) for p in iter_files(tmp_path)]
    assert got == ["a.txt", "b/c.txt"]


def test_iter_files_missing_root(tmp_path):
    assert list(iter_files(tmp_path / "missing")) == []


def test_is_ignored():
    assert is_ignored(f"{TEMP_PREFIX}abc")
    assert not is_ignored(SHA)
