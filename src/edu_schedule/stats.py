from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable

from .modules.completion import StatusTable, is_subject_eligible, is_subject_finished
from .modules.constants import PRACTICAL_EXAM_MARKER
from .modules.dates import effective_total_periods
from .modules.models import (
    Progress,
    SchoolClass,
    Session,
    SessionStatus,
    SessionType,
    Subject,
    Teacher,
)
from .modules.progress import subject_progress


@dataclass(frozen=True)
class TeacherLoad:
    """
    Teaching load of a teacher.

    Attributes:
        teacher (Teacher): Teacher.
        active_periods (int): Periods scheduled for subjects not finished yet.
        taught_periods (int): Periods of sessions marked completed.
    """

    teacher: Teacher
    active_periods: int
    taught_periods: int


@dataclass(frozen=True)
class SubjectProgressRow:
    """Progress of one subject for one class."""

    subject: Subject
    school_class: SchoolClass
    progress: Progress
    finished: bool


def missed_sessions(
    sessions: Iterable[Session],
    subjects: Iterable[Subject],
    classes: Iterable[SchoolClass],
    statuses: StatusTable | None = None,
) -> list[Session]:
    """
    Return cancelled sessions that still need a makeup.

    Subjects already finished need nothing. Each makeup session covers the
    earliest cancelled session of its subject and class.

    Returns:
        list[Session]: Uncovered cancelled sessions, earliest first per
        subject/class.
    """
    sessions = list(sessions)
    subjects_by_id = {s.id: s for s in subjects}
    classes_by_id = {c.id: c for c in classes}

    missed: dict[tuple[str, str], list[Session]] = defaultdict(list)
    makeups: dict[tuple[str, str], int] = defaultdict(int)
    for session in sessions:
        key = (session.subject_id, session.class_id)
        if session.status == SessionStatus.OFF:
            missed[key].append(session)
        elif session.status == SessionStatus.MAKEUP:
            makeups[key] += 1

    result = []
    for (subject_id, class_id), items in missed.items():
        subject = subjects_by_id.get(subject_id)
        if subject is None:
            continue
        if is_subject_finished(subject, classes_by_id.get(class_id), sessions, statuses):
            continue
        items.sort(key=lambda s: (s.date, s.start_period))
        result.extend(items[makeups[(subject_id, class_id)]:])

    return result


def _counts_as_teaching(session: Session) -> bool:
    if session.is_cancelled:
        return False
    if session.type == SessionType.CLASS:
        return True
    return PRACTICAL_EXAM_MARKER in (session.note or "").lower()


def teacher_load(
    teachers: Iterable[Teacher],
    sessions: Iterable[Session],
    subjects: Iterable[Subject],
    classes: Iterable[SchoolClass],
    statuses: StatusTable | None = None,
) -> list[TeacherLoad]:
    """
    Compute active and taught periods per teacher.

    Class sessions count, and so do practical exams.
    """
    sessions = list(sessions)
    subjects_by_id = {s.id: s for s in subjects}
    classes_by_id = {c.id: c for c in classes}
    finished: dict[tuple[str, str], bool] = {}

    def is_finished(session: Session) -> bool:
        key = (session.subject_id, session.class_id)
        if key not in finished:
            subject = subjects_by_id.get(session.subject_id)
            finished[key] = subject is None or is_subject_finished(
                subject, classes_by_id.get(session.class_id), sessions, statuses
            )
        return finished[key]

    loads = []
    for teacher in teachers:
        teaching = [s for s in sessions if s.teacher_id == teacher.id and _counts_as_teaching(s)]
        loads.append(
            TeacherLoad(
                teacher=teacher,
                active_periods=sum(s.period_count for s in teaching if not is_finished(s)),
                taught_periods=sum(
                    s.period_count for s in teaching if s.status == SessionStatus.COMPLETED
                ),
            )
        )
    return loads


def class_progress(
    school_class: SchoolClass,
    subjects: Iterable[Subject],
    sessions: Iterable[Session],
    statuses: StatusTable | None = None,
    group: str | None = None,
) -> list[SubjectProgressRow]:
    """Return the progress of every subject the class follows."""
    sessions = list(sessions)
    rows = []
    for subject in subjects:
        if not is_subject_eligible(subject, school_class):
            continue
        total = effective_total_periods(subject, school_class)
        rows.append(
            SubjectProgressRow(
                subject=subject,
                school_class=school_class,
                progress=subject_progress(subject.id, school_class.id, total, sessions, group),
                finished=is_subject_finished(subject, school_class, sessions, statuses),
            )
        )
    return rows
