"""
Apply documentation proposals to file content.

Proposals for one file are applied bottom to top so earlier line ranges stay
valid. INSERT places text at a line, at the end of a section or at the end of
the file; UPDATE replaces a line range or a section's body; DELETE removes a
line range or a whole section.
"""

import logging
import re
from typing import Iterable, Optional, Protocol

from docflow.models.db import UpdateType

logger = logging.getLogger(__name__)

_HEADER = re.compile(r"^(#+)\s+(.+)$")


class ApplyError(ValueError):
    """A proposal could not be applied to its file."""

    failure_type = "parse_error"


class FileNotFoundInRepoError(ApplyError):
    failure_type = "file_not_found"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"File not found: {path}")


class SectionNotFoundError(ApplyError):
    failure_type = "section_not_found"

    def __init__(self, section: str):
        self.section = section
        super().__init__(f"Section not found: {section}")


class ApplicableProposal(Protocol):
    """What the modifier reads from a proposal."""

    update_type: UpdateType
    section: Optional[str]
    location: Optional[dict]

    @property
    def effective_text(self) -> str: ...


def find_section_index(lines: list[str], section: str) -> Optional[int]:
    """Index of the first markdown header equal to or containing ``section``."""
    wanted = section.lower().strip()
    for i, line in enumerate(lines):
        match = _HEADER.match(line.strip())
        if match:
            header = match.group(2).lower().strip()
            if header == wanted or wanted in header:
                return i
    return None


def find_section_end(lines: list[str], start: int) -> int:
    """Index of the next header at the same or a higher level, else end of file."""
    match = _HEADER.match(lines[start].strip())
    if not match:
        return start + 1
    level = len(match.group(1))
    for i in range(start + 1, len(lines)):
        next_match = _HEADER.match(lines[i].strip())
        if next_match and len(next_match.group(1)) <= level:
            return i
    return len(lines)


def _line_range(location: Optional[dict]) -> tuple[Optional[int], Optional[int]]:
    if not location:
        return None, None
    return location.get("line_start"), location.get("line_end")


def _section_bounds(lines: list[str], section: str) -> tuple[int, int]:
    start = find_section_index(lines, section)
    if start is None:
        raise SectionNotFoundError(section)
    return start, find_section_end(lines, start)


def apply_insert(
    lines: list[str], text: str, location: Optional[dict], section: Optional[str]
) -> list[str]:
    new_lines = text.split("\n")
    line_start, _ = _line_range(location)
    if line_start is not None:
        return lines[:line_start] + new_lines + lines[line_start:]
    if section:
        _, end = _section_bounds(lines, section)
        return lines[:end] + new_lines + lines[end:]
    return lines + new_lines


def apply_update(
    lines: list[str], text: str, location: Optional[dict], section: Optional[str]
) -> list[str]:
    new_lines = text.split("\n")
    line_start, line_end = _line_range(location)
    if line_start is not None and line_end is not None:
        return lines[:line_start] + new_lines + lines[line_end + 1 :]
    if section:
        start, end = _section_bounds(lines, section)
        # header stays, body is replaced
        return lines[: start + 1] + new_lines + lines[end:]
    raise ApplyError("UPDATE requires either location or section")


def apply_delete(
    lines: list[str], location: Optional[dict], section: Optional[str]
) -> list[str]:
    line_start, line_end = _line_range(location)
    if line_start is not None and line_end is not None:
        return lines[:line_start] + lines[line_end + 1 :]
    if section:
        start, end = _section_bounds(lines, section)
        return lines[:start] + lines[end:]
    raise ApplyError("DELETE requires either location or section")


def apply_proposal(lines: list[str], proposal: ApplicableProposal) -> list[str]:
    """
    Apply one proposal to a file's lines.

    Raises:
        SectionNotFoundError: If the proposal targets a missing section
        ApplyError: If the proposal has no usable target
    """
    update_type = UpdateType(proposal.update_type)
    text = proposal.effective_text
    if update_type == UpdateType.INSERT:
        return apply_insert(lines, text, proposal.location, proposal.section)
    if update_type == UpdateType.UPDATE:
        return apply_update(lines, text, proposal.location, proposal.section)
    if update_type == UpdateType.DELETE:
        return apply_delete(lines, proposal.location, proposal.section)
    logger.warning(f"Nothing to apply for update type {update_type.value}")
    return lines


def sort_bottom_to_top(proposals: Iterable[ApplicableProposal]) -> list[ApplicableProposal]:
    """Located proposals by descending start line first, unlocated ones last."""
    proposals = list(proposals)
    located = [p for p in proposals if _line_range(p.location)[0] is not None]
    unlocated = [p for p in proposals if _line_range(p.location)[0] is None]
    located.sort(key=lambda p: _line_range(p.location)[0], reverse=True)
    return located + unlocated


def apply_proposals(content: str, proposals: Iterable[ApplicableProposal]) -> str:
    """Apply every proposal to ``content``, stopping at the first failure."""
    lines = content.split("\n")
    for proposal in sort_bottom_to_top(proposals):
        lines = apply_proposal(lines, proposal)
    return "\n".join(lines)
