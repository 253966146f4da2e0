# cache.py
from __future__ import annotations

import fnmatch
import hashlib
import io
import json
import os
import shutil
import tarfile
import tempfile
import time
import zlib
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Key-addressed dependency/build cache:
#   cache_key = template.format(runner_os, matrix values, hash=hash_files(lock files))
#
# Cache artifact:
#   a tar.gz containing the declared cache paths plus a manifest.json.
#   Paths under the workspace are archived as "workspace/<rel>", paths under
#   the home directory ("~/.cargo/registry") as "home/<rel>".
#
# Keys are write-once: the first archive saved for a key is kept.
# ---------------------------------------------------------------------

DEFAULT_CACHE_DIR = ".buildaudit/cache"
DEFAULT_KEY_TEMPLATE = "{runner_os}-{os}-cargo-{hash}"
DEFAULT_CACHE_EXCLUDES = [
    ".git/**",
    ".buildaudit/**",
    "**/.DS_Store",
]

_WORKSPACE = "workspace"
_HOME = "home"


@dataclass(frozen=True)
class CacheHit:
    hit: bool
    key: str
    reason: str  # human readable
    manifest: Dict = field(default_factory=dict)


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _relpath(p: Path, root: Path) -> str:
    return str(p.resolve().relative_to(root.resolve())).replace("\\", "/")


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def _matches_any_glob(rel: str, globs: List[str]) -> bool:
    # whole-path match; "*" crosses "/" and a leading "**/" also matches at the top level
    for g in globs:
        if fnmatch.fnmatchcase(rel, g):
            return True
        if g.startswith("**/") and fnmatch.fnmatchcase(rel, g[3:]):
            return True
    return False


def _hash_file_contents(path: Path) -> bytes:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.digest()


# ---------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------

def hash_files(root: str | Path, patterns: List[str]) -> str:
    """
    Hash every regular file matching the glob patterns under root.

    Files are visited in sorted relative-path order; the result is the
    sha256 over each file's sha256 digest. Returns "" when nothing matches,
    so an absent lock file still yields a stable key.
    """
    root_p = Path(root).resolve()
    found: Dict[str, Path] = {}
    for pat in patterns:
        pat = pat.strip()
        if not pat:
            continue
        for m in root_p.glob(pat):
            if not m.is_file():
                continue
            rel = _relpath(m, root_p)
            if _matches_any_glob(rel, [".git/**"]):
                continue
            found[rel] = m

    if not found:
        return ""

    h = hashlib.sha256()
    for rel in sorted(found):
        h.update(_hash_file_contents(found[rel]))
    return h.hexdigest()


def cache_key(
    template: str,
    *,
    file_hash: str,
    runner_os: str,
    matrix: Optional[Mapping[str, str]] = None,
) -> str:
    """Render a key template such as "{runner_os}-{os}-cargo-{hash}"."""
    values = dict(matrix or {})
    values["runner_os"] = runner_os
    values["hash"] = file_hash
    try:
        return template.format(**values)
    except KeyError as e:
        raise ValueError(f"cache key template {template!r} references unknown value {e}") from None


# ---------------------------------------------------------------------
# Archive layout
# ---------------------------------------------------------------------

def _resolve_cache_path(entry: str, workdir: Path) -> Tuple[Path, str]:
    """Map a declared cache path to (absolute path, archive prefix)."""
    if entry == "~" or entry.startswith("~/"):
        home = Path.home()
        rel = entry[2:] if entry.startswith("~/") else ""
        return (home / rel), f"{_HOME}/{rel}".rstrip("/")

    p = (workdir / entry).resolve()
    try:
        rel = _relpath(p, workdir)
    except ValueError:
        raise ValueError(f"cache path must be inside the workspace or under ~: {entry}") from None
    return p, f"{_WORKSPACE}/{rel}".rstrip("/")


def _destination(arcname: str, workdir: Path) -> Optional[Path]:
    parts = PurePosixPath(arcname).parts
    if not parts or ".." in parts:
        return None
    base = {_WORKSPACE: workdir, _HOME: Path.home()}.get(parts[0])
    if base is None:
        return None
    return base.joinpath(*parts[1:])


def _move_tree(src: Path, base: Path) -> int:
    """Move every file and symlink under src to the same relative place under base."""
    if not src.is_dir():
        return 0
    moved = 0
    for dirpath, dirnames, filenames in os.walk(src):
        links = [d for d in dirnames if os.path.islink(os.path.join(dirpath, d))]
        dirnames[:] = [d for d in dirnames if d not in links]
        for name in filenames + links:
            item = Path(dirpath) / name
            dest = base / item.relative_to(src)
            dest.parent.mkdir(parents=True, exist_ok=True)
            if dest.is_symlink() or dest.is_file():
                dest.unlink()
            shutil.move(str(item), str(dest))
            moved += 1
    return moved


def _tar_add_path(
    tar: tarfile.TarFile,
    src: Path,
    arc_prefix: str,
    *,
    exclude_globs: List[str],
) -> int:
    """Add src (file/dir) into tar under arc_prefix. Returns files added."""
    if not src.exists():
        return 0

    if src.is_file():
        tar.add(str(src), arcname=arc_prefix, recursive=False)
        return 1

    added = 0
    for f in _iter_files_under(src):
        # not resolved: a symlink is archived under its own name
        rel = f.relative_to(src).as_posix()
        if _matches_any_glob(rel, exclude_globs):
            continue
        tar.add(str(f), arcname=f"{arc_prefix}/{rel}", recursive=False)
        added += 1
    return added


class CacheStore:
    """
    File-based cache store:
      root/
        <key>.tar.gz
        <key>.manifest.json
    """

    def __init__(self, root: str | Path = DEFAULT_CACHE_DIR):
        self.root = Path(root).expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _safe(key: str) -> str:
        return key.replace("/", "_").replace("\\", "_")

    def artifact_path(self, key: str) -> Path:
        return self.root / f"{self._safe(key)}.tar.gz"

    def manifest_path(self, key: str) -> Path:
        return self.root / f"{self._safe(key)}.manifest.json"

    def has(self, key: str) -> bool:
        return self.artifact_path(key).exists()

    def restore(self, key: str, paths: List[str], *, workdir: str | Path = ".") -> CacheHit:
        """
        Restore cached paths into the workspace / home directory.

        Restore is "overwrite by extraction"; files not in the archive are left alone.
        The whole archive is unpacked into a staging directory first, so a
        corrupt archive raises tarfile.ReadError and leaves the workspace untouched.
        File modes and symlinks are kept.
        """
        if not paths:
            return CacheHit(hit=False, key=key, reason="no cache paths specified")

        root = Path(workdir).resolve()
        art = self.artifact_path(key)
        if not art.exists():
            return CacheHit(hit=False, key=key, reason="cache miss")

        staging = Path(tempfile.mkdtemp(prefix=".restore-", dir=str(self.root)))
        try:
            try:
                with tarfile.open(str(art), mode="r:gz") as tar:
                    members = [m for m in tar.getmembers() if _destination(m.name, root) is not None]
                    tar.extractall(path=str(staging), members=members, filter="data")
            except (EOFError, zlib.error) as e:
                raise tarfile.ReadError(f"corrupt cache archive {art.name}: {e}") from e

            restored = _move_tree(staging / _WORKSPACE, root)
            restored += _move_tree(staging / _HOME, Path.home())
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        man = self.manifest_path(key)
        try:
            stored = json.loads(man.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            stored = {}

        return CacheHit(hit=True, key=key, reason=f"cache hit: restored {restored} file(s)", manifest=stored)

    def save(
        self,
        key: str,
        paths: List[str],
        *,
        workdir: str | Path = ".",
        excludes: Optional[List[str]] = None,
    ) -> bool:
        """
        Archive paths under key. Returns False if the key already exists
        (write-once) or nothing was found to archive.
        """
        if not paths:
            return False

        art = self.artifact_path(key)
        if art.exists():
            return False

        root = Path(workdir).resolve()
        exclude_globs = list(DEFAULT_CACHE_EXCLUDES)
        if excludes:
            exclude_globs.extend(excludes)

        manifest = {
            "key": key,
            "paths": list(paths),
            "generated_at_unix": int(time.time()),
        }

        tmp = art.with_name(f"{art.name}.{time.time_ns()}.tmp")
        try:
            added = 0
            with tarfile.open(str(tmp), mode="w:gz") as tar:
                for entry in paths:
                    src, prefix = _resolve_cache_path(entry, root)
                    added += _tar_add_path(tar, src, prefix, exclude_globs=exclude_globs)

                manifest["files"] = added
                payload = json.dumps(manifest, sort_keys=True, indent=2).encode("utf-8")
                info = tarfile.TarInfo(name=f".manifest/{self._safe(key)}.json")
                info.size = len(payload)
                info.mtime = int(time.time())
                tar.addfile(info, fileobj=io.BytesIO(payload))

            if added == 0:
                return False
            if art.exists():
                # another run saved this key while we were archiving
                return False
            tmp.replace(art)
            self.manifest_path(key).write_text(_json_dumps_stable(manifest), encoding="utf-8")
        finally:
            if tmp.exists():
                tmp.unlink(missing_ok=True)

        return True

    def prune(self, keep: int = 5) -> List[str]:
        """
        Keep only the newest N artifacts. Uses file mtime as "newest".
        Returns the removed keys.
        """
        tars = sorted(self.root.glob("*.tar.gz"), key=lambda p: p.stat().st_mtime, reverse=True)
        removed: List[str] = []
        for p in tars[keep:]:
            key = p.name[: -len(".tar.gz")]
            p.unlink(missing_ok=True)
            (self.root / f"{key}.manifest.json").unlink(missing_ok=True)
            removed.append(key)
        return removed
