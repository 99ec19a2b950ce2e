from typing import Iterable

from ..i18n import _
from .dates import find_holiday, resolve_campus
from .linker import is_same_instance, shared_key
from .models import (
    NO_CONFLICT,
    ConflictKind,
    ConflictResult,
    Holiday,
    SchoolClass,
    Session,
    Subject,
)


def _normalise_ids(exclude_ids: str | Iterable[str] | None) -> set[str]:
    if not exclude_ids:
        return set()
    if isinstance(exclude_ids, str):
        return {exclude_ids}
    return set(exclude_ids)


def _class_name(classes: dict[str, SchoolClass], class_id: str) -> str:
    school_class = classes.get(class_id)
    return school_class.name if school_class else _("Unknown class")


def _rooms_are_separate(
    classes: dict[str, SchoolClass], class_a: str, class_b: str
) -> bool:
    # Same room label on two distinct campuses is two different rooms
    campus_a = resolve_campus(classes.get(class_a))
    campus_b = resolve_campus(classes.get(class_b))
    return campus_a != 0 and campus_b != 0 and campus_a != campus_b


def _check_pair(
    candidate: Session,
    item: Session,
    is_shared: bool,
    participants: set[str],
    classes: dict[str, SchoolClass],
) -> ConflictResult:
    """Check a candidate against one overlapping session."""
    # Never the same subject twice for the same class, shared or not
    if item.class_id == candidate.class_id and item.subject_id == candidate.subject_id:
        return ConflictResult(
            True,
            _("This class already has this subject at this time."),
            ConflictKind.DUPLICATE_SUBJECT,
            candidate.class_id,
            item,
        )

    # Sibling roster of the same shared lecture
    if is_shared and is_same_instance(candidate, item):
        return NO_CONFLICT

    class_name = _class_name(classes, item.class_id)

    if item.room_id == candidate.room_id and not _rooms_are_separate(
        classes, item.class_id, candidate.class_id
    ):
        return ConflictResult(
            True,
            _("Room %(room)s is taken: class %(class_name)s is studying there.")
            % {"room": item.room_id, "class_name": class_name},
            ConflictKind.ROOM,
            item.room_id,
            item,
        )

    # The teacher listed on an exam is the responsible party, not a booking
    if item.teacher_id == candidate.teacher_id and not (item.is_exam or candidate.is_exam):
        return ConflictResult(
            True,
            _("Teacher is busy teaching class %(class_name)s.")
            % {"class_name": class_name},
            ConflictKind.TEACHER,
            item.teacher_id,
            item,
        )

    if item.class_id == candidate.class_id:
        if item.is_exam and not candidate.is_exam:
            message, kind = _("Class has an exam at this time."), ConflictKind.EXAM_CLASS
        elif candidate.is_exam and not item.is_exam:
            message, kind = _("Class has a lesson at this time."), ConflictKind.EXAM_CLASS
        else:
            message = _("Class is already studying another subject at this time.")
            kind = ConflictKind.CLASS
        return ConflictResult(True, message, kind, item.class_id, item)

    if is_shared and item.class_id in participants:
        which = _("same subject") if item.subject_id == candidate.subject_id else _("another subject")
        return ConflictResult(
            True,
            _("Class %(class_name)s is busy with %(which)s in room %(room)s.")
            % {"class_name": class_name, "which": which, "room": item.room_id},
            ConflictKind.SHARED_CLASS_BUSY,
            item.class_id,
            item,
        )

    return NO_CONFLICT


def check_conflict(
    candidate: Session,
    existing: Iterable[Session],
    subjects: Iterable[Subject],
    classes: Iterable[SchoolClass],
    exclude_ids: str | Iterable[str] | None = None,
    holidays: Iterable[Holiday] | None = None,
    shared_class_ids: Iterable[str] | None = None,
) -> ConflictResult:
    """
    Decide whether a candidate session may be placed.

    Every stored session that is not cancelled, not excluded and overlaps the
    candidate on the same date is checked in turn; the first clash wins.

    Args:
        candidate (Session): Session to place. Its id and status are ignored.
        existing (Iterable[Session]): All stored sessions.
        subjects (Iterable[Subject]): Subject lookup.
        classes (Iterable[SchoolClass]): Class lookup.
        exclude_ids (str | Iterable[str], optional): Session ids to ignore,
            e.g. the session being edited and its shared siblings.
        holidays (Iterable[Holiday], optional): When given, a candidate on a
            holiday is rejected before anything else.
        shared_class_ids (Iterable[str], optional): Classes placed together
            with the candidate in one shared lecture. Defaults to the classes
            of the stored siblings of the candidate.

    Returns:
        ConflictResult: `has_conflict` False authorises the write.
    """
    if holidays is not None:
        holiday = find_holiday(candidate.date, holidays)
        if holiday is not None:
            return ConflictResult(
                True,
                _("%(date)s is a holiday: %(name)s")
                % {"date": candidate.date.strftime("%d/%m/%Y"), "name": holiday.name},
                ConflictKind.HOLIDAY,
                holiday.name,
            )

    subject = next((s for s in subjects if s.id == candidate.subject_id), None)
    is_shared = bool(subject and subject.is_shared)
    classes_by_id = {c.id: c for c in classes}
    excluded = _normalise_ids(exclude_ids)
    active = [s for s in existing if s.id not in excluded and not s.is_cancelled]

    if shared_class_ids is not None:
        participants = set(shared_class_ids)
    elif is_shared:
        key = shared_key(candidate)
        participants = {s.class_id for s in active if shared_key(s) == key}
    else:
        participants = set()
    participants.discard(candidate.class_id)

    for item in active:
        if not candidate.overlaps(item):
            continue
        result = _check_pair(candidate, item, is_shared, participants, classes_by_id)
        if result.has_conflict:
            return result

    return NO_CONFLICT
