from datetime import date
from typing import Iterable, TypeAlias

from .dates import resolve_campus
from .completion import is_subject_eligible
from .models import SchoolClass, Session, Subject, SubjectCategory

SharedKey: TypeAlias = tuple[str, str, str, date, int]


def shared_key(session: Session) -> SharedKey:
    """Return the (subject, teacher, room, date, start period) key of a session."""
    return (
        session.subject_id,
        session.teacher_id,
        session.room_id,
        session.date,
        session.start_period,
    )


def is_same_instance(a: Session, b: Session) -> bool:
    """Return True if two sessions are sibling rosters of one shared lecture."""
    return shared_key(a) == shared_key(b)


def is_shared_subject(subject: Subject | None, classes: Iterable[SchoolClass]) -> bool:
    """
    Return True if a subject is co-taught across classes.

    A subject is shared when flagged `is_shared`, or when it belongs to a
    regular major that more than one class follows.

    Args:
        subject (Subject, optional): Subject to classify.
        classes (Iterable[SchoolClass]): All classes.

    Returns:
        bool: Whether sessions of the subject link across classes.
    """
    if subject is None:
        return False
    if subject.is_shared:
        return True
    if subject.category != SubjectCategory.STANDARD_MAJOR:
        return False
    return sum(1 for c in classes if c.major_id == subject.major_id) > 1


def related_sessions(
    source: Session,
    sessions: Iterable[Session],
    subjects: Iterable[Subject],
    classes: Iterable[SchoolClass],
) -> list[Session]:
    """
    Return every session forming the same logical lecture as `source`.

    Sessions are linked by their `shared_group_id`. When the subject is
    shared, sessions with the same shared key are linked too, whether or not
    they carry the group id, so a class that joined the lecture later (or an
    older file without ids) is never left out.

    Args:
        source (Session): Session the user acted on.
        sessions (Iterable[Session]): All sessions.
        subjects (Iterable[Subject]): All subjects.
        classes (Iterable[SchoolClass]): All classes.

    Returns:
        list[Session]: The participant sessions, `[source]` when not shared.
    """
    group = source.shared_group_id
    subject = next((s for s in subjects if s.id == source.subject_id), None)
    shared = is_shared_subject(subject, classes)
    key = shared_key(source)

    members = [
        s
        for s in sessions
        if (group and s.shared_group_id == group) or (shared and shared_key(s) == key)
    ]
    return members or [source]


def shareable_classes(
    subject: Subject, main_class: SchoolClass, classes: Iterable[SchoolClass]
) -> list[SchoolClass]:
    """
    Return the classes that may join a shared session with `main_class`.

    Candidates must be on the same campus and shift as the main class and be
    eligible for the subject. The main class is always first.
    """
    campus = resolve_campus(main_class)
    result = [main_class]
    for school_class in classes:
        if school_class.id == main_class.id:
            continue
        if resolve_campus(school_class) != campus:
            continue
        if school_class.shift != main_class.shift:
            continue
        if is_subject_eligible(subject, school_class):
            result.append(school_class)
    return result
