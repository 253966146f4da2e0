from __future__ import annotations

import os
import stat
import tarfile
import time

import pytest

from buildaudit.cache import CacheStore, cache_key, hash_files


class TestKeyDerivation:
    def test_hash_is_stable_for_unchanged_lock_file(self, workspace):
        (workspace / "Cargo.lock").write_text("[[package]]\nname = \"a\"\n")
        first = hash_files(workspace, ["**/Cargo.lock"])
        second = hash_files(workspace, ["**/Cargo.lock"])
        assert first == second
        assert len(first) == 64

    def test_hash_changes_with_content(self, workspace):
        lock = workspace / "Cargo.lock"
        lock.write_text("one")
        before = hash_files(workspace, ["**/Cargo.lock"])
        lock.write_text("two")
        assert hash_files(workspace, ["**/Cargo.lock"]) != before

    def test_nested_lock_files_are_included(self, workspace):
        (workspace / "Cargo.lock").write_text("root")
        only_root = hash_files(workspace, ["**/Cargo.lock"])
        (workspace / "crates" / "sub").mkdir(parents=True)
        (workspace / "crates" / "sub" / "Cargo.lock").write_text("nested")
        assert hash_files(workspace, ["**/Cargo.lock"]) != only_root

    def test_no_match_hashes_to_empty_string(self, workspace):
        assert hash_files(workspace, ["**/Cargo.lock"]) == ""

    def test_lock_files_inside_git_dir_are_ignored(self, workspace):
        (workspace / ".git" / "a" / "b").mkdir(parents=True)
        (workspace / ".git" / "a" / "b" / "Cargo.lock").write_text("stale")
        (workspace / ".git" / "Cargo.lock").write_text("stale")
        assert hash_files(workspace, ["**/Cargo.lock"]) == ""

    def test_key_template(self):
        key = cache_key(
            "{runner_os}-{os}-cargo-{hash}",
            file_hash="abc123",
            runner_os="Linux",
            matrix={"os": "ubuntu-latest"},
        )
        assert key == "Linux-ubuntu-latest-cargo-abc123"

    def test_same_inputs_same_key_across_runs(self, workspace):
        (workspace / "Cargo.lock").write_text("lock")
        keys = {
            cache_key(
                "{runner_os}-{os}-cargo-{hash}",
                file_hash=hash_files(workspace, ["**/Cargo.lock"]),
                runner_os="Linux",
                matrix={"os": "ubuntu-latest"},
            )
            for _ in range(2)
        }
        assert len(keys) == 1

    def test_unknown_template_value(self):
        with pytest.raises(ValueError, match="unknown value"):
            cache_key("{arch}-{hash}", file_hash="x", runner_os="Linux")


class TestCacheStore:
    def test_restore_miss(self, tmp_path, workspace):
        store = CacheStore(tmp_path / "cache")
        hit = store.restore("Linux-ubuntu-latest-cargo-x", ["target"], workdir=workspace)
        assert not hit.hit
        assert hit.reason == "cache miss"

    def test_save_then_restore_workspace_and_home_paths(self, tmp_path, workspace, home):
        (workspace / "target" / "release").mkdir(parents=True)
        (workspace / "target" / "release" / "app").write_text("binary")
        (home / ".cargo" / "registry").mkdir(parents=True)
        (home / ".cargo" / "registry" / "index").write_text("crates")

        store = CacheStore(tmp_path / "cache")
        paths = ["~/.cargo/registry", "target"]
        assert store.save("k1", paths, workdir=workspace)

        (workspace / "target" / "release" / "app").unlink()
        (home / ".cargo" / "registry" / "index").unlink()

        hit = store.restore("k1", paths, workdir=workspace)
        assert hit.hit
        assert hit.manifest["key"] == "k1"
        assert (workspace / "target" / "release" / "app").read_text() == "binary"
        assert (home / ".cargo" / "registry" / "index").read_text() == "crates"

    def test_keys_are_write_once(self, tmp_path, workspace):
        (workspace / "target").mkdir()
        (workspace / "target" / "f").write_text("first")
        store = CacheStore(tmp_path / "cache")
        assert store.save("k", ["target"], workdir=workspace)

        (workspace / "target" / "f").write_text("second")
        assert not store.save("k", ["target"], workdir=workspace)

        (workspace / "target" / "f").unlink()
        store.restore("k", ["target"], workdir=workspace)
        assert (workspace / "target" / "f").read_text() == "first"

    def test_save_with_nothing_to_archive(self, tmp_path, workspace):
        store = CacheStore(tmp_path / "cache")
        assert not store.save("k", ["target"], workdir=workspace)
        assert not store.has("k")
        assert list((tmp_path / "cache").iterdir()) == []

    def test_paths_outside_workspace_are_rejected(self, tmp_path, workspace):
        store = CacheStore(tmp_path / "cache")
        with pytest.raises(ValueError, match="inside the workspace"):
            store.save("k", ["../elsewhere"], workdir=workspace)

    def test_prune_keeps_newest(self, tmp_path, workspace):
        (workspace / "target").mkdir()
        (workspace / "target" / "f").write_text("x")
        store = CacheStore(tmp_path / "cache")
        now = time.time()
        for i, key in enumerate(["old", "mid", "new"]):
            store.save(key, ["target"], workdir=workspace)
            os.utime(store.artifact_path(key), (now + i, now + i))

        removed = store.prune(keep=2)

        assert removed == ["old"]
        assert store.has("mid") and store.has("new")
        assert not store.manifest_path("old").exists()

    def test_modes_and_symlinks_survive_restore(self, tmp_path, workspace):
        release = workspace / "target" / "release"
        release.mkdir(parents=True)
        script = release / "build-script-build"
        script.write_text("#!/bin/sh\n")
        script.chmod(0o755)
        (release / "libfoo.so.1").write_text("lib")
        os.symlink("libfoo.so.1", release / "libfoo.so")

        store = CacheStore(tmp_path / "cache")
        assert store.save("k", ["target"], workdir=workspace)
        script.unlink()
        (release / "libfoo.so").unlink()

        store.restore("k", ["target"], workdir=workspace)

        assert script.stat().st_mode & stat.S_IXUSR
        assert os.readlink(release / "libfoo.so") == "libfoo.so.1"

    def test_truncated_archive_leaves_workspace_untouched(self, tmp_path, workspace):
        (workspace / "target").mkdir()
        (workspace / "target" / "a").write_text("cached")
        (workspace / "target" / "b").write_bytes(os.urandom(256 * 1024))
        store = CacheStore(tmp_path / "cache")
        assert store.save("k", ["target"], workdir=workspace)
        art = store.artifact_path("k")
        art.write_bytes(art.read_bytes()[:-4096])

        (workspace / "target" / "a").write_text("local")
        with pytest.raises(tarfile.ReadError):
            store.restore("k", ["target"], workdir=workspace)

        assert (workspace / "target" / "a").read_text() == "local"
        assert [p.name for p in (tmp_path / "cache").iterdir() if p.is_dir()] == []

    def test_default_excludes_apply_at_every_depth(self, tmp_path, workspace):
        (workspace / "target" / "deep").mkdir(parents=True)
        (workspace / "target" / "keep").write_text("x")
        (workspace / "target" / ".DS_Store").write_text("junk")
        (workspace / "target" / "deep" / ".DS_Store").write_text("junk")
        store = CacheStore(tmp_path / "cache")
        assert store.save("k", ["target"], workdir=workspace)

        with tarfile.open(store.artifact_path("k"), "r:gz") as tar:
            names = tar.getnames()
        assert "workspace/target/keep" in names
        assert not [n for n in names if n.endswith(".DS_Store")]
