from __future__ import annotations

import contextlib
import itertools
import logging
import mimetypes
from pathlib import PurePosixPath
from typing import Iterator

import pygit2
from pygit2.enums import SortMode

from gitglass.errors import InvalidInput, NotFound, RenderError
from gitglass.highlight import PLAIN_TEXT_HINT, highlight
from gitglass.mirror import Mirror
from gitglass.mirror_sync import is_object_id
from gitglass.models import (
    BlobView,
    CommitSummary,
    DiffLine,
    DiffResult,
    DiffStats,
    LineOrigin,
    Redirect,
    TreeEntry,
    TreeListing,
)


logger = logging.getLogger(__name__)

DEFAULT_COMMIT_LIMIT = 500
SHORT_ID_LENGTH = 7
OCTET_STREAM = "application/octet-stream"
TREE_KINDS = ("tree", "blob")

_LINE_ORIGINS = {
    " ": LineOrigin.CONTEXT,
    "+": LineOrigin.ADDITION,
    "-": LineOrigin.DELETION,
    "=": LineOrigin.EOF,
    ">": LineOrigin.EOF,
    "<": LineOrigin.EOF,
}


@contextlib.contextmanager
def _store_errors(what: str) -> Iterator[None]:
    try:
        yield
    except pygit2.GitError as exc:
        logger.error("Object store error while %s: %s", what, exc)
        raise RenderError(f"object store error while {what}") from exc


def parse_object_id(value: str) -> pygit2.Oid:
    if not isinstance(value, str) or not is_object_id(value):
        raise InvalidInput(f"malformed object id: {value!r}")
    return pygit2.Oid(hex=value.lower())


def find_commit(mirror: Mirror, commit_id: str) -> pygit2.Commit:
    oid = parse_object_id(commit_id)
    try:
        obj = mirror.repo.get(oid)
    except (ValueError, pygit2.GitError) as exc:
        raise NotFound(f"commit {commit_id} not found") from exc
    if obj is None or not isinstance(obj, pygit2.Commit):
        raise NotFound(f"commit {commit_id} not found")
    return obj


def make_diff(commit: pygit2.Commit) -> pygit2.Diff:
    """Diff against the sole parent, or against the empty tree for root and merge commits."""
    if len(commit.parent_ids) == 1:
        return commit.parents[0].tree.diff_to_tree(commit.tree)
    return commit.tree.diff_to_tree(swap=True)


def _header_lines(patch: pygit2.Patch) -> list[str]:
    text = patch.data.decode("utf-8", errors="replace")
    header: list[str] = []
    for line in text.splitlines(keepends=True):
        if line.startswith("@@"):
            break
        header.append(line)
    return header


def diff_result(diff: pygit2.Diff) -> DiffResult:
    lines: list[DiffLine] = []
    added = removed = 0

    for patch in diff:
        lines.extend(DiffLine(LineOrigin.HEADER, text) for text in _header_lines(patch))
        for hunk in patch.hunks:
            hunk_header = hunk.header if hunk.header.endswith("\n") else hunk.header + "\n"
            lines.append(DiffLine(LineOrigin.HUNK, hunk_header))
            for line in hunk.lines:
                origin = _LINE_ORIGINS.get(line.origin)
                if origin is None:
                    continue
                if origin is LineOrigin.ADDITION:
                    added += 1
                elif origin is LineOrigin.DELETION:
                    removed += 1
                lines.append(DiffLine(origin, line.raw_content.decode("utf-8", errors="replace")))

    return DiffResult(lines=lines, added=added, removed=removed)


def diff_stats(result: DiffResult) -> DiffStats:
    summary = "".join(
        line.origin.value
        for line in result.lines
        if line.origin in (LineOrigin.CONTEXT, LineOrigin.ADDITION, LineOrigin.DELETION)
    )
    return DiffStats(added=result.added, removed=result.removed, summary=summary)


def commit_summary(commit: pygit2.Commit, diff: DiffResult | None = None) -> CommitSummary:
    if diff is None:
        with _store_errors(f"diffing {commit.id}"):
            diff = diff_result(make_diff(commit))

    commit_hex = str(commit.id)
    summary, _, message = commit.message.partition("\n")
    author = commit.author
    return CommitSummary(
        id=commit_hex,
        short_id=commit_hex[:SHORT_ID_LENGTH],
        author_name=author.name,
        author_email=author.email,
        summary=summary,
        message=message.lstrip("\n"),
        commit_time=commit.commit_time,
        diff=diff_stats(diff),
    )


def list_recent_commits(mirror: Mirror, limit: int = DEFAULT_COMMIT_LIMIT) -> list[CommitSummary]:
    if limit < 0:
        raise InvalidInput(f"limit must not be negative: {limit}")
    head = mirror.head_id()
    if head is None:
        return []

    with _store_errors(f"walking history of {mirror.slug}"):
        walker = mirror.repo.walk(pygit2.Oid(hex=head), SortMode.TIME)
        return [commit_summary(commit) for commit in itertools.islice(walker, limit)]


def commit_detail(mirror: Mirror, commit_id: str) -> tuple[CommitSummary, DiffResult]:
    commit = find_commit(mirror, commit_id)
    with _store_errors(f"diffing {commit_id}"):
        diff = diff_result(make_diff(commit))
    return commit_summary(commit, diff), diff


def raw_diff(mirror: Mirror, commit_id: str) -> str:
    _, diff = commit_detail(mirror, commit_id)
    return diff.raw()


def split_tree_path(path: str) -> list[str]:
    if path in ("", "/"):
        return []
    if not path.startswith("/"):
        raise InvalidInput(f"tree path must start with '/': {path!r}")

    body = path[1:]
    if body.endswith("/"):
        body = body[:-1]
    components = body.split("/")
    for component in components:
        if component in ("", ".", "..") or "\x00" in component:
            raise InvalidInput(f"malformed tree path: {path!r}")
    return components


def with_trailing_slash(target: str) -> str:
    path, sep, query = target.partition("?")
    return f"{path}/{sep}{query}"


def safe_mime(mime_type: str) -> str:
    if mime_type.startswith("application/"):
        return OCTET_STREAM
    return mime_type


def served_mime_type(path: str) -> str:
    guessed, _ = mimetypes.guess_type(PurePosixPath(path).name)
    return safe_mime(guessed or OCTET_STREAM)


def list_tree(tree: pygit2.Tree) -> list[TreeEntry]:
    entries: list[TreeEntry] = []
    for entry in tree:
        kind = entry.type_str
        if kind not in TREE_KINDS:
            logger.warning("Skipping %s entry %r in tree %s", kind, entry.name, tree.id)
            continue
        entries.append(TreeEntry(name=entry.name, kind=kind))
    return entries


def render_blob(commit_id: str, path: str, blob: pygit2.Blob) -> BlobView:
    content = blob.data
    mime_type = served_mime_type(path)
    if blob.is_binary:
        return BlobView(
            commit_id=commit_id,
            path=path,
            is_binary=True,
            content=content,
            mime_type=mime_type,
        )

    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise RenderError(f"{path} at {commit_id} is not valid UTF-8") from exc

    extension = PurePosixPath(path).suffix.lstrip(".") or PLAIN_TEXT_HINT
    return BlobView(
        commit_id=commit_id,
        path=path,
        is_binary=False,
        content=content,
        mime_type=mime_type,
        markup=highlight(extension, text),
    )


def resolve_path(
    mirror: Mirror,
    commit_id: str,
    path: str,
    request_target: str | None = None,
) -> TreeListing | BlobView | Redirect:
    """Resolve ``path`` in the tree of ``commit_id``.

    Directories are canonically slash-terminated: a directory requested
    without the trailing slash yields a Redirect to ``request_target`` (or
    ``path``) with the slash appended before any query string.
    """
    commit = find_commit(mirror, commit_id)
    components = split_tree_path(path)
    commit_hex = str(commit.id)

    with _store_errors(f"resolving {path} at {commit_id}"):
        root = commit.tree
        if not components:
            return TreeListing(commit_id=commit_hex, path=path or "/", entries=list_tree(root))

        try:
            obj = root["/".join(components)]
        except KeyError as exc:
            raise NotFound(f"{path} not found at {commit_id}") from exc

        kind = obj.type_str
        if kind == "tree":
            if not path.endswith("/"):
                return Redirect(location=with_trailing_slash(request_target or path))
            return TreeListing(commit_id=commit_hex, path=path, entries=list_tree(mirror.repo[obj.id]))
        if kind == "blob" and not path.endswith("/"):
            return render_blob(commit_hex, path, mirror.repo[obj.id])

    raise NotFound(f"{path} not found at {commit_id}")
