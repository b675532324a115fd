"""Marker-delimited managed blocks inside user-owned files."""

from __future__ import annotations

import difflib
from pathlib import Path

from archrig.errors import ApplyError


class MalformedBlockError(ApplyError):
    """The target file's markers are duplicated, unbalanced or out of order."""


def render_block(body: str, *, begin: str, end: str) -> str:
    if body and not body.endswith("\n"):
        body += "\n"
    return f"{begin}\n{body}{end}\n"


def locate_block(contents: str, *, begin: str, end: str) -> tuple[int, int] | None:
    """Return the ``[start, end)`` line span of the single managed block.

    Files carrying more than one block, or unbalanced markers, are refused
    rather than guessed at.
    """
    begin_idx = contents.find(begin)
    end_idx = contents.find(end)

    if begin_idx != -1 and contents.find(begin, begin_idx + len(begin)) != -1:
        raise MalformedBlockError(f"Multiple '{begin}' markers found.")
    if end_idx != -1 and contents.find(end, end_idx + len(end)) != -1:
        raise MalformedBlockError(f"Multiple '{end}' markers found.")

    if begin_idx == -1 and end_idx == -1:
        return None
    if begin_idx == -1:
        raise MalformedBlockError("Malformed managed block: begin marker missing.")
    if end_idx == -1:
        raise MalformedBlockError("Malformed managed block: end marker missing.")
    if end_idx < begin_idx:
        raise MalformedBlockError("Malformed managed block: end marker appears before begin marker.")

    start = contents.rfind("\n", 0, begin_idx)
    start = 0 if start == -1 else start + 1
    end_line = contents.find("\n", end_idx)
    stop = len(contents) if end_line == -1 else end_line + 1
    return (start, stop)


def apply_block(contents: str, *, block: str, begin: str, end: str) -> tuple[str, bool]:
    """Insert or replace the managed block. Returns ``(new, changed)``."""
    span = locate_block(contents, begin=begin, end=end)

    if span is None:
        if contents == "":
            return block, True
        prefix = contents
        if not prefix.endswith("\n"):
            prefix = f"{prefix}\n"
        if not prefix.endswith("\n\n"):
            prefix = f"{prefix}\n"
        new_contents = f"{prefix}{block}"
        return new_contents, new_contents != contents

    start, stop = span
    new_contents = f"{contents[:start]}{block}{contents[stop:]}"
    return new_contents, new_contents != contents


def unified_diff(old: str, new: str, *, path: Path) -> str:
    return "".join(
        difflib.unified_diff(
            old.splitlines(keepends=True),
            new.splitlines(keepends=True),
            fromfile=str(path),
            tofile=str(path),
        )
    )
