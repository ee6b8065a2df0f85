from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from gitglass.models import MirrorState
from gitglass.state_db import load_refs, record_failure, record_success, replace_refs


@dataclass(slots=True)
class RefChanges:
    new_refs: list[str]
    updated_refs: list[str]
    deleted_refs: list[str]
    ref_count: int

    @property
    def has_changes(self) -> bool:
        return bool(self.new_refs or self.updated_refs or self.deleted_refs)


def diff_refs(previous: dict[str, str], current: dict[str, str]) -> RefChanges:
    new_refs: list[str] = []
    updated_refs: list[str] = []

    for name, object_id in current.items():
        old = previous.get(name)
        if old is None:
            new_refs.append(name)
        elif old != object_id:
            updated_refs.append(name)

    deleted_refs = [name for name in previous if name not in current]

    return RefChanges(
        new_refs=sorted(new_refs),
        updated_refs=sorted(updated_refs),
        deleted_refs=sorted(deleted_refs),
        ref_count=len(current),
    )


async def record_sync_success(db_path: Path, state: MirrorState) -> RefChanges:
    previous = await load_refs(db_path, state.slug)
    changes = diff_refs(previous, state.refs)
    await replace_refs(db_path, state.slug, state.refs)
    await record_success(db_path, state.slug, head_id=state.head_id, ref_count=len(state.refs))
    return changes


async def record_sync_failure(db_path: Path, slug: str, error: BaseException) -> None:
    await record_failure(db_path, slug, str(error))
