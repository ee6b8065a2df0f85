from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import pygit2
import pytest
from pygit2.enums import FileMode

from gitglass.config import GitglassConfig, RepoConfig
from gitglass.mirror import open_mirror
from gitglass.mirror_sync import sync_repo


PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01"

ROOT_FILES = {
    "README.md": b"hello\nworld\n",
    "app.json": b'{"a": 1}\n',
    "logo.png": PNG_BYTES,
    "src": {"app.py": b"print('hi')\n"},
}


def signature(timestamp: int) -> pygit2.Signature:
    return pygit2.Signature("Alice Example", "alice@example.com", timestamp, 0)


def write_tree(repo: pygit2.Repository, files: dict) -> pygit2.Oid:
    builder = repo.TreeBuilder()
    for name, value in files.items():
        if isinstance(value, dict):
            builder.insert(name, write_tree(repo, value), FileMode.TREE)
        else:
            builder.insert(name, repo.create_blob(value), FileMode.BLOB)
    return builder.write()


def make_commit(
    repo: pygit2.Repository,
    ref: str | None,
    files: dict,
    message: str,
    timestamp: int,
    parents: list[pygit2.Oid] | None = None,
) -> str:
    tree = write_tree(repo, files)
    sig = signature(timestamp)
    return str(repo.create_commit(ref, sig, sig, message, tree, parents or []))


def count_lines(files: dict) -> int:
    total = 0
    for value in files.values():
        if isinstance(value, dict):
            total += count_lines(value)
        elif b"\x00" not in value:
            total += value.count(b"\n")
    return total


@dataclass
class RemoteHistory:
    path: Path
    root: str
    second: str
    feature: str
    merge: str
    merge_files: dict

    def add_commit(self, files: dict, message: str, timestamp: int) -> str:
        repo = pygit2.Repository(str(self.path))
        parent = repo.references["refs/heads/main"].target
        return make_commit(repo, "refs/heads/main", files, message, timestamp, [parent])


@pytest.fixture
def remote(tmp_path: Path) -> RemoteHistory:
    path = tmp_path / "upstream.git"
    repo = pygit2.init_repository(str(path), bare=True)

    root = make_commit(repo, "refs/heads/main", ROOT_FILES, "Initial commit\n", 1000)

    second_files = dict(ROOT_FILES)
    second_files["README.md"] = b"hello\nthere\nworld\n"
    second_files["src"] = {"app.py": b"print('bye')\n"}
    second = make_commit(
        repo,
        "refs/heads/main",
        second_files,
        "Say goodbye\n\nLonger explanation\nof the change.\n",
        2000,
        [pygit2.Oid(hex=root)],
    )

    feature_files = dict(second_files)
    feature_files["docs"] = {"guide.md": b"guide\nmore\n"}
    feature = make_commit(
        repo, "refs/heads/feature", feature_files, "Add guide", 3000, [pygit2.Oid(hex=second)]
    )

    merge = make_commit(
        repo,
        "refs/heads/main",
        feature_files,
        "Merge branch 'feature'\n",
        4000,
        [pygit2.Oid(hex=second), pygit2.Oid(hex=feature)],
    )

    repo.references.create("refs/tags/v1", pygit2.Oid(hex=root))
    repo.set_head("refs/heads/main")

    return RemoteHistory(
        path=path,
        root=root,
        second=second,
        feature=feature,
        merge=merge,
        merge_files=feature_files,
    )


@pytest.fixture
def config(tmp_path: Path, remote: RemoteHistory) -> GitglassConfig:
    return GitglassConfig(
        address="127.0.0.1:3000",
        mirrors_dir=str(tmp_path / "repos"),
        repos={
            "demo": RepoConfig(slug="demo", url=str(remote.path), title="Demo"),
        },
        base_dir=str(tmp_path),
    )


@pytest.fixture
def synced(config: GitglassConfig):
    return sync_repo(config, config.repos["demo"])


@pytest.fixture
def mirror(config: GitglassConfig, synced):
    with open_mirror(config, "demo") as opened:
        yield opened


@pytest.fixture
def loose_commit(mirror):
    """Create a commit in the mirror's object store that no ref points at."""

    def create(files: dict, message: str = "Loose commit\n", timestamp: int = 9000) -> str:
        return make_commit(mirror.repo, None, files, message, timestamp)

    return create
