"""
Line-by-line document comparison.

This is a positional diff, not an LCS diff: line i of the old text is compared
with line i of the new text. An inserted line therefore shows every following
line as removed/added. Good enough for reviewing small edits between versions.
"""
from __future__ import annotations

from dataclasses import dataclass

ADDED = "added"
REMOVED = "removed"
UNCHANGED = "unchanged"


@dataclass(frozen=True)
class DiffLine:
    type: str
    line: str


def diff_lines(old: str | None, new: str | None) -> list[DiffLine]:
    old_lines = (old or "").split("\n")
    new_lines = (new or "").split("\n")
    out: list[DiffLine] = []
    for i in range(max(len(old_lines), len(new_lines))):
        o = old_lines[i] if i < len(old_lines) else ""
        n = new_lines[i] if i < len(new_lines) else ""
        if o == n:
            out.append(DiffLine(UNCHANGED, o))
            continue
        if o:
            out.append(DiffLine(REMOVED, o))
        if n:
            out.append(DiffLine(ADDED, n))
    return out


def diff_summary(lines: list[DiffLine]) -> dict[str, int]:
    summary = {ADDED: 0, REMOVED: 0, UNCHANGED: 0}
    for ln in lines:
        summary[ln.type] += 1
    return summary
