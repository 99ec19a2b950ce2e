from collections.abc import Iterable, Mapping

from .constants import CULTURE_EXTENDED_CLASS_MARKER
from .dates import effective_total_periods
from .models import (
    SchoolClass,
    Session,
    SessionType,
    StatusOverride,
    Subject,
    SubjectCategory,
    SubjectClassStatus,
)

StatusTable = Mapping[tuple[str, str], SubjectClassStatus] | Iterable[SubjectClassStatus]


def _lookup_status(
    statuses: StatusTable | None, subject_id: str, class_id: str
) -> SubjectClassStatus | None:
    if not statuses:
        return None
    if isinstance(statuses, Mapping):
        return statuses.get((subject_id, class_id))
    return next((s for s in statuses if s.key == (subject_id, class_id)), None)


def learned_periods(subject_id: str, class_id: str, sessions: Iterable[Session]) -> int:
    """Sum the periods of every non-cancelled session of a subject for a class."""
    return sum(
        s.period_count
        for s in sessions
        if s.subject_id == subject_id and s.class_id == class_id and not s.is_cancelled
    )


def is_subject_finished(
    subject: Subject,
    school_class: SchoolClass | None,
    sessions: Iterable[Session],
    statuses: StatusTable | None = None,
) -> bool:
    """
    Decide whether a class has finished a subject.

    Order of precedence:
        1. Extended culture subjects are never finished automatically.
        2. An explicit completed/in-progress override.
        3. The legacy paid and manually-completed markers.
        4. Learned periods reaching the effective total. A subject with no
           learned periods is never finished.

    Args:
        subject (Subject): Subject.
        school_class (SchoolClass, optional): Class. Unknown classes are
            never finished.
        sessions (Iterable[Session]): All sessions.
        statuses (StatusTable, optional): Manual markers keyed by
            (subject id, class id), or an iterable of records.

    Returns:
        bool: Whether the subject is finished for the class.
    """
    if subject.category == SubjectCategory.CULTURE_EXTENDED:
        return False
    if school_class is None:
        return False

    status = _lookup_status(statuses, subject.id, school_class.id)
    if status is not None:
        if status.override == StatusOverride.COMPLETED:
            return True
        if status.override == StatusOverride.IN_PROGRESS:
            return False
        if status.paid or status.manually_completed:
            return True

    effective_total = effective_total_periods(subject, school_class)
    learned = learned_periods(subject.id, school_class.id, sessions)
    return learned > 0 and learned >= effective_total


def is_subject_eligible(subject: Subject, school_class: SchoolClass) -> bool:
    """
    Return True if a class follows a subject.

    Common subjects are for every class, culture subjects for classes outside
    the 8-subject programme, extended culture subjects for classes inside it,
    and major subjects for classes of the same major.
    """
    is_extended = CULTURE_EXTENDED_CLASS_MARKER in school_class.name.upper()
    category = subject.category

    if category == SubjectCategory.COMMON:
        return True
    if category == SubjectCategory.CULTURE:
        return not is_extended
    if category == SubjectCategory.CULTURE_EXTENDED:
        return is_extended
    return subject.major_id == school_class.major_id


def available_subjects(
    school_class: SchoolClass,
    subjects: Iterable[Subject],
    sessions: Iterable[Session],
    session_type: SessionType = SessionType.CLASS,
    statuses: StatusTable | None = None,
    editing_subject_id: str | None = None,
) -> list[Subject]:
    """
    Return the subjects a new session for `school_class` may use.

    Class sessions are offered for unfinished subjects (extended culture
    subjects are always offered). Exams are offered only for finished
    subjects without an exam yet. The subject of the session being edited is
    always kept.
    """
    sessions = list(sessions)
    result = []

    for subject in subjects:
        if not is_subject_eligible(subject, school_class):
            continue
        if subject.id == editing_subject_id:
            result.append(subject)
            continue

        finished = is_subject_finished(subject, school_class, sessions, statuses)

        if session_type == SessionType.EXAM:
            has_exam = any(
                s.subject_id == subject.id
                and s.class_id == school_class.id
                and s.type == SessionType.EXAM
                for s in sessions
            )
            if finished and not has_exam:
                result.append(subject)
        elif not finished:
            result.append(subject)

    return result
