from __future__ import annotations

import contextlib
import fcntl
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, Protocol

import pygit2

from gitglass.config import GitglassConfig, RepoConfig
from gitglass.errors import GitglassError, UpstreamSyncError
from gitglass.models import MirrorState, RefUpdate, SyncPhase, SyncProgress


logger = logging.getLogger(__name__)

MIRROR_REFSPEC = "+refs/*:refs/*"
REF_INDEX_RELPATH = Path("info") / "refs"


class SyncObserver(Protocol):
    def on_progress(self, progress: SyncProgress) -> None: ...

    def on_sideband(self, message: str) -> None: ...

    def on_ref_update(self, update: RefUpdate) -> None: ...

    def finish(self, error: BaseException | None = None) -> None: ...


class LoggingSyncObserver:
    """Observer used when no progress display is attached."""

    def __init__(self, slug: str) -> None:
        self.slug = slug
        self._last_phase: SyncPhase | None = None

    def on_progress(self, progress: SyncProgress) -> None:
        if progress.phase is not self._last_phase:
            self._last_phase = progress.phase
            logger.debug("%s: %s", self.slug, progress.phase.value)

    def on_sideband(self, message: str) -> None:
        message = message.strip()
        if message:
            logger.debug("%s: remote: %s", self.slug, message)

    def on_ref_update(self, update: RefUpdate) -> None:
        pass

    def finish(self, error: BaseException | None = None) -> None:
        if error is None:
            logger.info("%s: sync complete", self.slug)
        else:
            logger.error("%s: sync failed: %s", self.slug, error)


@dataclass(slots=True)
class SyncOutcome:
    slug: str
    state: MirrorState | None = None
    error: GitglassError | None = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.state is not None and self.error is None


@dataclass(slots=True)
class SyncReport:
    outcomes: list[SyncOutcome] = field(default_factory=list)
    aborted: bool = False

    @property
    def succeeded(self) -> list[SyncOutcome]:
        return [outcome for outcome in self.outcomes if outcome.ok]

    @property
    def failed(self) -> list[SyncOutcome]:
        return [outcome for outcome in self.outcomes if outcome.error is not None]

    @property
    def skipped(self) -> list[SyncOutcome]:
        return [outcome for outcome in self.outcomes if outcome.skipped]

    @property
    def ok(self) -> bool:
        return not self.failed and not self.aborted


class _MirrorCallbacks(pygit2.RemoteCallbacks):
    def __init__(self, slug: str, observer: SyncObserver) -> None:
        super().__init__()
        self._slug = slug
        self._observer = observer
        self.updates: list[RefUpdate] = []

    def transfer_progress(self, stats) -> None:
        self._observer.on_progress(progress_from_stats(stats))

    def sideband_progress(self, string: str) -> None:
        self._observer.on_sideband(string)

    def update_tips(self, refname: str, old, new) -> None:
        update = RefUpdate(name=refname, old_id=str(old), new_id=str(new))
        if update.kind == "new":
            logger.info("[new]     %-20s %s", update.new_id, refname)
        else:
            logger.info("[updated] %.10s..%.10s %s", update.old_id, update.new_id, refname)
        self.updates.append(update)
        self._observer.on_ref_update(update)


def progress_from_stats(stats) -> SyncProgress:
    received = int(stats.received_objects)
    indexed = int(stats.indexed_objects)
    total = int(stats.total_objects)
    if total == 0 or received < total:
        phase = SyncPhase.RECEIVING
    elif indexed < total:
        phase = SyncPhase.INDEXING
    else:
        phase = SyncPhase.RESOLVING_DELTAS
    return SyncProgress(
        phase=phase,
        received_objects=received,
        indexed_objects=indexed,
        total_objects=total,
        received_bytes=int(stats.received_bytes),
        indexed_deltas=int(stats.indexed_deltas),
        total_deltas=int(stats.total_deltas),
    )


@contextlib.contextmanager
def mirror_lock(lock_path: Path) -> Iterator[None]:
    """Hold an exclusive flock on ``lock_path`` for the duration of a sync."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock_path.touch(exist_ok=True)
    with open(lock_path, "r") as lock_f:
        try:
            fcntl.flock(lock_f.fileno(), fcntl.LOCK_EX)
            logger.debug("Acquired mirror lock: %s", lock_path)
            yield
        finally:
            fcntl.flock(lock_f.fileno(), fcntl.LOCK_UN)
            logger.debug("Released mirror lock: %s", lock_path)


def _create_mirror_remote(repo: pygit2.Repository, name: str, url: str):
    return repo.remotes.create(name, url, MIRROR_REFSPEC)


def clone_mirror(
    repo_config: RepoConfig, path: Path, observer: SyncObserver
) -> tuple[pygit2.Repository, list[RefUpdate]]:
    staging = path.with_name(path.name + ".clone-tmp")
    if staging.exists():
        shutil.rmtree(staging)
    path.parent.mkdir(parents=True, exist_ok=True)

    callbacks = _MirrorCallbacks(repo_config.slug, observer)
    try:
        repo = pygit2.clone_repository(
            repo_config.url,
            str(staging),
            bare=True,
            remote=_create_mirror_remote,
            callbacks=callbacks,
        )
        repo.config["remote.origin.mirror"] = True
        repo.free()
    except (pygit2.GitError, KeyError, ValueError, OSError) as exc:
        shutil.rmtree(staging, ignore_errors=True)
        raise UpstreamSyncError(repo_config.slug, repo_config.url, str(exc)) from exc

    try:
        os.replace(staging, path)
    except OSError as exc:
        shutil.rmtree(staging, ignore_errors=True)
        raise UpstreamSyncError(
            repo_config.slug, repo_config.url, f"cannot move clone into place: {exc}"
        ) from exc
    observer.on_progress(SyncProgress(phase=SyncPhase.CHECKOUT))
    return pygit2.Repository(str(path)), callbacks.updates


def fetch_mirror(
    repo_config: RepoConfig, path: Path, observer: SyncObserver
) -> tuple[pygit2.Repository, list[RefUpdate]]:
    try:
        repo = pygit2.Repository(str(path))
    except pygit2.GitError as exc:
        raise UpstreamSyncError(
            repo_config.slug, repo_config.url, f"cannot open mirror at {path}: {exc}"
        ) from exc

    refspecs: list[str] | None = None
    moved_origin = False
    try:
        remote = repo.remotes["origin"]
    except KeyError:
        logger.info("No origin remote in %s, fetching anonymously from %s", path, repo_config.url)
        remote = repo.remotes.create_anonymous(repo_config.url)
        refspecs = [MIRROR_REFSPEC]
    else:
        if remote.url != repo_config.url:
            # origin is repointed only once the new URL has been fetched from
            remote = repo.remotes.create_anonymous(repo_config.url)
            refspecs = [MIRROR_REFSPEC]
            moved_origin = True

    callbacks = _MirrorCallbacks(repo_config.slug, observer)
    try:
        stats = remote.fetch(refspecs, callbacks=callbacks)
        if moved_origin:
            logger.info("Updating origin URL of %s to %s", path, repo_config.url)
            repo.remotes.set_url("origin", repo_config.url)
    except (pygit2.GitError, KeyError, ValueError, OSError) as exc:
        repo.free()
        raise UpstreamSyncError(repo_config.slug, repo_config.url, str(exc)) from exc

    if stats.local_objects > 0:
        logger.info(
            "Received %d/%d objects in %d bytes (used %d local objects)",
            stats.indexed_objects,
            stats.total_objects,
            stats.received_bytes,
            stats.local_objects,
        )
    else:
        logger.info(
            "Received %d/%d objects in %d bytes",
            stats.indexed_objects,
            stats.total_objects,
            stats.received_bytes,
        )
    return repo, callbacks.updates


def collect_refs(repo: pygit2.Repository) -> dict[str, str]:
    refs: dict[str, str] = {}
    for name in sorted(repo.references):
        target = repo.references[name].target
        if isinstance(target, pygit2.Oid):
            refs[name] = str(target)
    return refs


def format_ref_index(refs: dict[str, str]) -> str:
    return "".join(f"{object_id}\t{name}\n" for name, object_id in refs.items())


def write_ref_index(mirror_path: Path, refs: dict[str, str]) -> Path:
    target = mirror_path / REF_INDEX_RELPATH
    target.parent.mkdir(parents=True, exist_ok=True)
    temp_file = target.with_name(target.name + ".tmp")
    try:
        temp_file.write_text(format_ref_index(refs), encoding="utf-8")
        os.replace(temp_file, target)
    except OSError:
        temp_file.unlink(missing_ok=True)
        raise
    return target


def load_ref_index(mirror_path: Path) -> dict[str, str]:
    index_path = mirror_path / REF_INDEX_RELPATH
    if not index_path.exists():
        return {}

    refs: dict[str, str] = {}
    for line in index_path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        object_id, sep, name = line.partition("\t")
        if not sep or not name or not is_object_id(object_id):
            logger.warning("Skipping malformed ref index line in %s: %r", index_path, line)
            continue
        refs[name] = object_id
    return refs


def is_object_id(value: str) -> bool:
    return len(value) == 40 and all(ch in "0123456789abcdef" for ch in value.lower())


def update_head(repo: pygit2.Repository, repo_config: RepoConfig) -> None:
    repo.set_head(f"refs/heads/{repo_config.head}")


def sync_repo(
    config: GitglassConfig,
    repo_config: RepoConfig,
    observer: SyncObserver | None = None,
) -> MirrorState:
    """Clone or fetch one mirror, then refresh its ref index and pin HEAD."""
    observer = observer or LoggingSyncObserver(repo_config.slug)
    path = config.mirror_path(repo_config.slug)

    try:
        with mirror_lock(config.lock_path(repo_config.slug)):
            if not path.exists():
                logger.info("Cloning %s into %s...", repo_config.url, path)
                repo, updates = clone_mirror(repo_config, path, observer)
            else:
                logger.info("Fetching %s in %s...", repo_config.url, path)
                repo, updates = fetch_mirror(repo_config, path, observer)

            try:
                refs = collect_refs(repo)
                write_ref_index(path, refs)
                update_head(repo, repo_config)
            except pygit2.GitError as exc:
                raise UpstreamSyncError(repo_config.slug, repo_config.url, str(exc)) from exc
            finally:
                repo.free()
    except OSError as exc:
        # local disk faults count as a failed sync of this mirror only
        raise UpstreamSyncError(
            repo_config.slug, repo_config.url, f"local I/O error: {exc}"
        ) from exc

    head_id = refs.get(f"refs/heads/{repo_config.head}")
    if head_id is None:
        logger.warning(
            "%s: configured head refs/heads/%s does not exist in the mirror",
            repo_config.slug,
            repo_config.head,
        )
    return MirrorState(
        slug=repo_config.slug,
        path=path,
        refs=refs,
        head_id=head_id,
        updates=updates,
    )


def sync_all(
    config: GitglassConfig,
    observer_factory: Callable[[str], SyncObserver] | None = None,
    *,
    fail_fast: bool = False,
) -> SyncReport:
    """Sync every configured repository, continuing past failures unless ``fail_fast``."""
    factory = observer_factory or LoggingSyncObserver
    report = SyncReport()
    slugs = sorted(config.repos)

    for index, slug in enumerate(slugs):
        repo_config = config.repos[slug]
        observer = factory(slug)
        try:
            state = sync_repo(config, repo_config, observer)
        except GitglassError as exc:
            observer.finish(exc)
            report.outcomes.append(SyncOutcome(slug=slug, error=exc))
            if fail_fast:
                report.aborted = True
                report.outcomes.extend(SyncOutcome(slug=rest, skipped=True) for rest in slugs[index + 1:])
                break
            continue
        observer.finish(None)
        report.outcomes.append(SyncOutcome(slug=slug, state=state))

    return report
