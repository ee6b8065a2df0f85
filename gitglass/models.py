from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


ZERO_OID = "0" * 40


class SyncPhase(str, Enum):
    RECEIVING = "receiving"
    INDEXING = "indexing"
    RESOLVING_DELTAS = "resolving-deltas"
    CHECKOUT = "checkout"


@dataclass(slots=True, frozen=True)
class SyncProgress:
    phase: SyncPhase
    received_objects: int = 0
    indexed_objects: int = 0
    total_objects: int = 0
    received_bytes: int = 0
    indexed_deltas: int = 0
    total_deltas: int = 0
    checkout_current: int = 0
    checkout_total: int = 0


@dataclass(slots=True, frozen=True)
class RefUpdate:
    name: str
    old_id: str
    new_id: str

    @property
    def kind(self) -> str:
        return "new" if self.old_id == ZERO_OID else "updated"


@dataclass(slots=True)
class MirrorState:
    slug: str
    path: Path
    refs: dict[str, str]
    head_id: str | None
    updates: list[RefUpdate] = field(default_factory=list)


@dataclass(slots=True)
class DiffStats:
    added: int
    removed: int
    summary: str


@dataclass(slots=True)
class CommitSummary:
    id: str
    short_id: str
    author_name: str | None
    author_email: str | None
    summary: str
    message: str
    commit_time: int
    diff: DiffStats


class LineOrigin(str, Enum):
    CONTEXT = " "
    ADDITION = "+"
    DELETION = "-"
    HEADER = "F"
    HUNK = "H"
    EOF = "="


@dataclass(slots=True)
class DiffLine:
    origin: LineOrigin
    text: str

    @property
    def marker(self) -> str:
        if self.origin in (LineOrigin.ADDITION, LineOrigin.DELETION):
            return self.origin.value
        return " "


@dataclass(slots=True)
class DiffResult:
    lines: list[DiffLine]
    added: int
    removed: int

    def decorated(self) -> str:
        return "".join(f"{line.marker} {line.text}" for line in self.lines)

    def raw(self) -> str:
        parts: list[str] = []
        for line in self.lines:
            if line.origin in (LineOrigin.CONTEXT, LineOrigin.ADDITION, LineOrigin.DELETION):
                parts.append(line.origin.value)
            parts.append(line.text)
        return "".join(parts)


@dataclass(slots=True, frozen=True)
class TreeEntry:
    name: str
    kind: str


@dataclass(slots=True)
class TreeListing:
    commit_id: str
    path: str
    entries: list[TreeEntry]


@dataclass(slots=True)
class BlobView:
    commit_id: str
    path: str
    is_binary: bool
    content: bytes
    mime_type: str
    markup: str | None = None


@dataclass(slots=True, frozen=True)
class Redirect:
    location: str
