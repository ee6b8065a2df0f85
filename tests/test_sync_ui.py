from __future__ import annotations

import io

from rich.console import Console

from gitglass.errors import UpstreamSyncError
from gitglass.models import RefUpdate, SyncPhase, SyncProgress
from gitglass.sync_ui import SyncProgressUI


def _console() -> Console:
    return Console(file=io.StringIO(), force_terminal=False, width=120)


def _task(ui: SyncProgressUI, slug: str):
    return next(task for task in ui._progress.tasks if task.fields["slug"] == slug)


def test_observer_tracks_phases_and_completion():
    ui = SyncProgressUI(console=_console())
    with ui:
        observer = ui.observer("demo")
        assert _task(ui, "demo").fields["state"] == "queued"

        observer.on_progress(
            SyncProgress(phase=SyncPhase.RECEIVING, received_objects=3, total_objects=10, received_bytes=2048)
        )
        task = _task(ui, "demo")
        assert task.fields["phase"] == "receiving"
        assert task.completed == 3
        assert task.total == 10
        assert task.fields["size"]

        observer.on_progress(
            SyncProgress(
                phase=SyncPhase.RESOLVING_DELTAS,
                received_objects=10,
                indexed_objects=10,
                total_objects=10,
                indexed_deltas=1,
                total_deltas=4,
            )
        )
        task = _task(ui, "demo")
        assert task.fields["phase"] == "resolving-deltas"
        assert task.completed == 1
        assert task.total == 4

        observer.on_ref_update(RefUpdate("refs/heads/main", "0" * 40, "a" * 40))
        observer.finish()
        task = _task(ui, "demo")
        assert task.fields["state"] == "done"
        assert task.completed == 4


def test_observer_failure_marks_row():
    ui = SyncProgressUI(console=_console())
    with ui:
        observer = ui.observer("broken")
        observer.finish(UpstreamSyncError("broken", "/nowhere", "no such repo"))
        assert "failed" in _task(ui, "broken").fields["state"]


def test_sideband_messages_are_printed():
    console = _console()
    ui = SyncProgressUI(console=console)
    with ui:
        observer = ui.observer("demo")
        observer.on_sideband("Counting objects: 5, done.\n")
        observer.on_sideband("   ")
    output = console.file.getvalue()
    assert "remote: Counting objects: 5, done." in output
