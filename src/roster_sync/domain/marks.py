"""Mark validation, merge-by-date and weekly batch building."""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass
from decimal import Decimal

from roster_sync.domain.models import Mark, Member, Section
from roster_sync.errors import EntityValidationError

ABSENT_SCORE = -1.0

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TOTAL_TOLERANCE = 0.001


def _check_decimal_places(value: float, label: str, member: Member, date: str) -> None:
    if value < 0:
        return
    exponent = Decimal(str(value)).as_tuple().exponent
    if isinstance(exponent, int) and exponent < -2:
        raise EntityValidationError(
            f"{label} for {member.name} on {date} has more than 2 decimal places."
        )


def validate_member_marks(member: Member, section: Section) -> None:
    """Raise EntityValidationError if any mark breaks the section's scoring rules."""
    seen: set[str] = set()
    for mark in member.marks:
        if not isinstance(mark.date, str) or not _DATE_RE.match(mark.date):
            raise EntityValidationError(f"Invalid date format for mark: {mark.date}")
        if mark.date in seen:
            raise EntityValidationError(f"Duplicate mark for {member.name} on {mark.date}.")
        seen.add(mark.date)
        if isinstance(mark.score, bool) or not isinstance(mark.score, (int, float)):
            raise EntityValidationError(
                f"Invalid score type for mark on {mark.date}. Score must be a number."
            )
        if mark.score == ABSENT_SCORE:
            continue

        _check_decimal_places(mark.score, "Total score", member, mark.date)

        if section is Section.COMPANY:
            if mark.score < 0 or mark.score > 10:
                raise EntityValidationError(
                    f"Company section score for {member.name} on {mark.date} "
                    "is out of range (0-10)."
                )
            if mark.uniform_score is not None or mark.behaviour_score is not None:
                raise EntityValidationError(
                    f"Company section member {member.name} on {mark.date} "
                    "has junior-specific scores."
                )
            continue

        uniform = mark.uniform_score
        behaviour = mark.behaviour_score
        if not isinstance(uniform, (int, float)) or not 0 <= uniform <= 10:
            raise EntityValidationError(
                f"Junior section uniform score for {member.name} on {mark.date} "
                "is invalid or out of range (0-10)."
            )
        if not isinstance(behaviour, (int, float)) or not 0 <= behaviour <= 5:
            raise EntityValidationError(
                f"Junior section behaviour score for {member.name} on {mark.date} "
                "is invalid or out of range (0-5)."
            )
        _check_decimal_places(uniform, "Uniform score", member, mark.date)
        _check_decimal_places(behaviour, "Behaviour score", member, mark.date)
        if abs(mark.score - (uniform + behaviour)) > _TOTAL_TOLERANCE:
            raise EntityValidationError(
                f"Junior section total score for {member.name} on {mark.date} "
                "does not match sum of uniform and behaviour scores."
            )


def merge_marks(incoming: list[Mark], existing: list[Mark]) -> list[Mark]:
    """Incoming marks replace by date; existing dates absent from incoming are kept.

    The result is sorted newest date first.
    """
    incoming_dates = {mark.date for mark in incoming}
    merged = list(incoming) + [m for m in existing if m.date not in incoming_dates]
    return sorted(merged, key=lambda m: m.date, reverse=True)


def upsert_mark(member: Member, mark: Mark) -> None:
    member.marks = merge_marks([mark], member.marks)


@dataclass(frozen=True)
class WeeklyEntry:
    """One member's attendance for a meeting date.

    ``score`` of None for a present member means no score was entered; that
    member is skipped rather than defaulted to zero.
    """

    present: bool
    score: float | None = None
    uniform_score: float | None = None
    behaviour_score: float | None = None


def build_weekly_updates(
    members: list[Member],
    date: str,
    entries: dict[str, WeeklyEntry],
    section: Section,
) -> list[tuple[Member, Member]]:
    """Return ``(before, after)`` pairs for members whose mark on ``date`` changes."""
    updates: list[tuple[Member, Member]] = []
    for member in members:
        entry = entries.get(member.id)
        if entry is None:
            continue

        if not entry.present:
            new_mark = Mark(date=date, score=ABSENT_SCORE)
        elif section is Section.JUNIOR:
            if entry.uniform_score is None or entry.behaviour_score is None:
                continue
            total = round(entry.uniform_score + entry.behaviour_score, 2)
            new_mark = Mark(
                date=date,
                score=total,
                uniform_score=entry.uniform_score,
                behaviour_score=entry.behaviour_score,
            )
        else:
            if entry.score is None:
                continue
            new_mark = Mark(date=date, score=entry.score)

        if member.mark_for(date) == new_mark:
            continue

        after = copy.deepcopy(member)
        upsert_mark(after, new_mark)
        validate_member_marks(after, section)
        updates.append((copy.deepcopy(member), after))
    return updates
