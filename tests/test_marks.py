from __future__ import annotations

import pytest

from roster_sync.domain.marks import (
    ABSENT_SCORE,
    WeeklyEntry,
    build_weekly_updates,
    merge_marks,
    validate_member_marks,
)
from roster_sync.domain.models import Mark, Member, Section
from roster_sync.errors import EntityValidationError


def _member(*marks: Mark, name: str = "Alex", member_id: str = "m-1") -> Member:
    return Member(id=member_id, name=name, squad=1, year=9, marks=list(marks))


def test_merge_keeps_unrelated_dates_and_prefers_incoming() -> None:
    existing = [Mark("2026-01-02", 5), Mark("2026-01-09", 6)]
    incoming = [Mark("2026-01-09", 9), Mark("2026-01-16", 7)]

    merged = merge_marks(incoming, existing)

    assert [(m.date, m.score) for m in merged] == [
        ("2026-01-16", 7),
        ("2026-01-09", 9),
        ("2026-01-02", 5),
    ]


def test_company_marks_accept_absent_and_in_range_scores() -> None:
    member = _member(Mark("2026-01-02", 10), Mark("2026-01-09", ABSENT_SCORE))

    validate_member_marks(member, Section.COMPANY)


@pytest.mark.parametrize(
    "mark, message",
    [
        (Mark("2026-01-02", 11), "out of range"),
        (Mark("2026-01-02", 7.125), "more than 2 decimal places"),
        (Mark("02/01/2026", 5), "Invalid date format"),
        (Mark("2026-01-02", 5, uniform_score=3), "junior-specific"),
    ],
)
def test_company_mark_rejections(mark: Mark, message: str) -> None:
    with pytest.raises(EntityValidationError, match=message):
        validate_member_marks(_member(mark), Section.COMPANY)


def test_duplicate_dates_are_rejected() -> None:
    member = _member(Mark("2026-01-02", 5), Mark("2026-01-02", 6))

    with pytest.raises(EntityValidationError, match="Duplicate mark"):
        validate_member_marks(member, Section.COMPANY)


def test_junior_total_must_match_components() -> None:
    validate_member_marks(
        _member(Mark("2026-01-02", 12.5, uniform_score=8.5, behaviour_score=4)),
        Section.JUNIOR,
    )

    with pytest.raises(EntityValidationError, match="does not match"):
        validate_member_marks(
            _member(Mark("2026-01-02", 12, uniform_score=8.5, behaviour_score=4)),
            Section.JUNIOR,
        )


def test_junior_component_ranges() -> None:
    with pytest.raises(EntityValidationError, match="behaviour score"):
        validate_member_marks(
            _member(Mark("2026-01-02", 16, uniform_score=10, behaviour_score=6)),
            Section.JUNIOR,
        )
    with pytest.raises(EntityValidationError, match="uniform score"):
        validate_member_marks(_member(Mark("2026-01-02", 4)), Section.JUNIOR)


def test_weekly_updates_skip_unchanged_and_unscored_members() -> None:
    unchanged = _member(Mark("2026-01-09", 8), member_id="m-1")
    absent = _member(name="Blair", member_id="m-2")
    unscored = _member(name="Casey", member_id="m-3")
    scored = _member(Mark("2026-01-02", 4), name="Drew", member_id="m-4")
    not_listed = _member(name="Eden", member_id="m-5")

    updates = build_weekly_updates(
        [unchanged, absent, unscored, scored, not_listed],
        "2026-01-09",
        {
            "m-1": WeeklyEntry(present=True, score=8),
            "m-2": WeeklyEntry(present=False),
            "m-3": WeeklyEntry(present=True),
            "m-4": WeeklyEntry(present=True, score=9),
        },
        Section.COMPANY,
    )

    assert [after.id for _, after in updates] == ["m-2", "m-4"]
    before, after = updates[1]
    assert before.marks == [Mark("2026-01-02", 4)]
    assert [(m.date, m.score) for m in after.marks] == [("2026-01-09", 9), ("2026-01-02", 4)]
    assert updates[0][1].mark_for("2026-01-09").is_absent


def test_weekly_junior_total_is_computed() -> None:
    member = _member()

    updates = build_weekly_updates(
        [member],
        "2026-01-09",
        {"m-1": WeeklyEntry(present=True, uniform_score=7.25, behaviour_score=3.5)},
        Section.JUNIOR,
    )

    mark = updates[0][1].mark_for("2026-01-09")
    assert mark.score == 10.75
    assert member.marks == []


def test_weekly_invalid_score_raises() -> None:
    with pytest.raises(EntityValidationError):
        build_weekly_updates(
            [_member()],
            "2026-01-09",
            {"m-1": WeeklyEntry(present=True, score=12)},
            Section.COMPANY,
        )
