from __future__ import annotations

import threading
from dataclasses import dataclass

from rich.console import Console
from rich.filesize import decimal as format_size
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from gitglass.models import RefUpdate, SyncPhase, SyncProgress


@dataclass(slots=True)
class SyncTaskHandle:
    task_id: TaskID
    slug: str


class SyncProgressUI:
    """Rich progress display fed by sync observers, one task row per repository."""

    def __init__(self, console: Console | None = None, *, transient: bool = False) -> None:
        self._console = console
        self._lock = threading.Lock()
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.fields[slug]}"),
            TextColumn("{task.fields[phase]}"),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("{task.fields[size]}"),
            TimeElapsedColumn(),
            TextColumn("{task.fields[state]}"),
            console=console,
            transient=transient,
            expand=True,
        )

    def __enter__(self) -> "SyncProgressUI":
        self._progress.__enter__()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._progress.__exit__(exc_type, exc, tb)

    @property
    def console(self) -> Console:
        return self._progress.console

    def add_repo(self, slug: str) -> SyncTaskHandle:
        with self._lock:
            task_id = self._progress.add_task(
                description=slug,
                total=None,
                completed=0,
                start=False,
                slug=slug,
                phase="",
                size="",
                state="queued",
            )
        return SyncTaskHandle(task_id=task_id, slug=slug)

    def start(self, handle: SyncTaskHandle, state: str = "connecting") -> None:
        with self._lock:
            self._progress.start_task(handle.task_id)
            self._progress.update(handle.task_id, state=state)

    def update(self, handle: SyncTaskHandle, progress: SyncProgress) -> None:
        if progress.phase is SyncPhase.RESOLVING_DELTAS:
            completed, total = progress.indexed_deltas, progress.total_deltas
        elif progress.phase is SyncPhase.CHECKOUT:
            completed, total = progress.checkout_current, progress.checkout_total
        elif progress.phase is SyncPhase.INDEXING:
            completed, total = progress.indexed_objects, progress.total_objects
        else:
            completed, total = progress.received_objects, progress.total_objects
        with self._lock:
            self._progress.update(
                handle.task_id,
                completed=completed,
                total=total or None,
                phase=progress.phase.value,
                size=format_size(progress.received_bytes) if progress.received_bytes else "",
                state="running",
            )

    def message(self, handle: SyncTaskHandle, text: str) -> None:
        text = text.strip()
        if not text:
            return
        with self._lock:
            self._progress.console.print(f"[dim]{handle.slug}[/dim] remote: {text}")

    def complete(self, handle: SyncTaskHandle, state: str = "done") -> None:
        with self._lock:
            task = next(t for t in self._progress.tasks if t.id == handle.task_id)
            kwargs: dict = {"state": state}
            if task.total is not None:
                kwargs["completed"] = task.total
            self._progress.update(handle.task_id, **kwargs)
            self._progress.stop_task(handle.task_id)

    def fail(self, handle: SyncTaskHandle, message: str = "failed") -> None:
        with self._lock:
            self._progress.update(handle.task_id, state=f"[red]{message}[/red]")
            self._progress.stop_task(handle.task_id)

    def observer(self, slug: str) -> "RepoSyncObserver":
        return RepoSyncObserver(self, self.add_repo(slug))


class RepoSyncObserver:
    """Sync observer bound to a single repository row of a SyncProgressUI."""

    def __init__(self, ui: SyncProgressUI, handle: SyncTaskHandle) -> None:
        self._ui = ui
        self._handle = handle
        self._started = False

    def _ensure_started(self) -> None:
        if not self._started:
            self._ui.start(self._handle)
            self._started = True

    def on_progress(self, progress: SyncProgress) -> None:
        self._ensure_started()
        self._ui.update(self._handle, progress)

    def on_sideband(self, message: str) -> None:
        self._ensure_started()
        self._ui.message(self._handle, message)

    def on_ref_update(self, update: RefUpdate) -> None:
        self._ensure_started()

    def finish(self, error: BaseException | None = None) -> None:
        if error is None:
            self._ui.complete(self._handle)
        else:
            self._ui.fail(self._handle)
