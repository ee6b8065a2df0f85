from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import pygit2

from gitglass.config import GitglassConfig, RepoConfig
from gitglass.errors import NotFound, RenderError
from gitglass.mirror_sync import load_ref_index


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Mirror:
    slug: str
    config: RepoConfig
    path: Path
    repo: pygit2.Repository

    def head_id(self) -> str | None:
        """Object id HEAD points at, preferring the ref index over the object store."""
        head_ref = f"refs/heads/{self.config.head}"
        indexed = self.refs().get(head_ref)
        if indexed is not None:
            return indexed
        try:
            if self.repo.head_is_unborn:
                return None
            return str(self.repo.head.target)
        except pygit2.GitError:
            return None

    def refs(self) -> dict[str, str]:
        return load_ref_index(self.path)

    def branches(self) -> dict[str, str]:
        return _strip_prefix(self.refs(), "refs/heads/")

    def tags(self) -> dict[str, str]:
        return _strip_prefix(self.refs(), "refs/tags/")

    def close(self) -> None:
        self.repo.free()

    def __enter__(self) -> "Mirror":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _strip_prefix(refs: dict[str, str], prefix: str) -> dict[str, str]:
    return {name[len(prefix):]: object_id for name, object_id in refs.items() if name.startswith(prefix)}


def open_mirror(config: GitglassConfig, slug: str) -> Mirror:
    repo_config = config.repos.get(slug)
    if repo_config is None:
        raise NotFound(f"unknown repository {slug!r}")

    path = config.mirror_path(slug)
    if not path.is_dir():
        raise NotFound(f"repository {slug!r} has not been mirrored yet")

    try:
        repo = pygit2.Repository(str(path))
    except pygit2.GitError as exc:
        logger.error("Cannot open mirror %s: %s", path, exc)
        raise RenderError(f"cannot open mirror for {slug!r}") from exc
    return Mirror(slug=slug, config=repo_config, path=path, repo=repo)
