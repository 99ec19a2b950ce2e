import math
from typing import Iterable

from .models import Progress, SequenceInfo, Session, SessionType


def in_group(session: Session, group: str | None) -> bool:
    """
    Return True if a session counts towards the progress of `group`.

    Sessions without a group are delivered to the whole class and count for
    every group. Without a group only those whole-class sessions count.
    """
    if group:
        return not session.group or session.group == group
    return not session.group


def _percentage(learned: int, total: int) -> int:
    if total <= 0:
        return 100 if learned > 0 else 0
    # Round half up
    return min(100, math.floor(100 * learned / total + 0.5))


def subject_progress(
    subject_id: str,
    class_id: str,
    total_periods: int,
    sessions: Iterable[Session],
    group: str | None = None,
) -> Progress:
    """
    Compute how far a class (or one of its groups) is through a subject.

    Args:
        subject_id (str): Subject.
        class_id (str): Class.
        total_periods (int): Curriculum length, usually the effective total.
        sessions (Iterable[Session]): All sessions.
        group (str, optional): Group whose view to compute.

    Returns:
        Progress: Learned, total, percentage (capped at 100) and remaining
        (never negative) periods.
    """
    learned = sum(
        s.period_count
        for s in sessions
        if s.subject_id == subject_id
        and s.class_id == class_id
        and not s.is_cancelled
        and in_group(s, group)
    )
    return Progress(
        learned=learned,
        total=total_periods,
        percentage=_percentage(learned, total_periods),
        remaining=max(0, total_periods - learned),
    )


def session_sequence_info(
    current: Session, sessions: Iterable[Session], total_periods: int = 0
) -> SequenceInfo:
    """
    Locate a session within the run of class sessions of its subject.

    Args:
        current (Session): Session to locate.
        sessions (Iterable[Session]): All sessions.
        total_periods (int): Curriculum length. 0 disables the last marker.

    Returns:
        SequenceInfo: Cumulative periods up to and including the session,
        whether nothing was learned before it, and whether it reaches the
        curriculum length. All zero/False when the session is not part of
        the run.
    """
    relevant = sorted(
        (
            s
            for s in sessions
            if s.subject_id == current.subject_id
            and s.class_id == current.class_id
            and not s.is_cancelled
            and s.type == SessionType.CLASS
            and in_group(s, current.group)
        ),
        key=lambda s: (s.date, s.start_period),
    )

    index = next((i for i, s in enumerate(relevant) if s.id == current.id), None)
    if index is None:
        return SequenceInfo()

    cumulative = sum(s.period_count for s in relevant[: index + 1])
    previous = cumulative - relevant[index].period_count

    return SequenceInfo(
        cumulative=cumulative,
        is_first=previous == 0,
        is_last=total_periods > 0 and cumulative >= total_periods,
    )
