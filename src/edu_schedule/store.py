import json
import uuid
from dataclasses import dataclass, field, replace
from datetime import date
from pathlib import Path
from typing import Any, Iterable, TypeVar

import arrow

from .i18n import _
from .logger import log
from .modules.completion import is_subject_finished
from .modules.conflicts import check_conflict
from .modules.constants import FIRST_PERIOD, LAST_PERIOD, NEAR_END_THRESHOLD
from .modules.dates import effective_total_periods, find_holiday, max_periods_from, week_start
from .modules.linker import is_shared_subject, related_sessions, shared_key
from .modules.models import (
    ConflictKind,
    ConflictResult,
    Holiday,
    Progress,
    SchoolClass,
    SequenceInfo,
    Session,
    SessionStatus,
    SessionType,
    StatusOverride,
    Subject,
    SubjectClassStatus,
    Teacher,
)
from .modules.progress import session_sequence_info, subject_progress

T = TypeVar("T", Teacher, Subject, SchoolClass, Session, Holiday)

# Fields update_session never changes
_IMMUTABLE_SESSION_FIELDS = {"id", "shared_group_id"}


class StoreError(Exception):
    """Base class for rejected store operations."""


class EntityNotFound(StoreError, KeyError):
    """Raised when an id does not match any stored entity."""

    def __init__(self, kind: str, id_: str) -> None:
        super().__init__(f"{kind} {id_!r} not found")
        self.kind = kind
        self.id_ = id_

    def __str__(self) -> str:
        return self.args[0]


class SchedulingError(StoreError):
    """Raised when a session cannot be placed. Should be handled by the caller."""

    def __init__(self, result: ConflictResult, class_id: str | None = None) -> None:
        super().__init__(result.message)
        self.result = result
        self.class_id = class_id


@dataclass
class ContinueReport:
    """
    Outcome of copying a week of sessions to the next week.

    Attributes:
        added (list[Session]): Sessions created.
        warnings (list[str]): Holiday skips and subjects close to their end.
    """

    added: list[Session] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def generate_id() -> str:
    return uuid.uuid4().hex[:12]


class EntityStore:
    """
    In-memory owner of teachers, subjects, classes, sessions, holidays and
    subject completion markers.

    Every write that places a session is validated against holidays and the
    conflict checker first; nothing is written when any target is rejected.
    """

    def __init__(
        self,
        teachers: Iterable[Teacher] = (),
        subjects: Iterable[Subject] = (),
        classes: Iterable[SchoolClass] = (),
        sessions: Iterable[Session] = (),
        holidays: Iterable[Holiday] = (),
        statuses: Iterable[SubjectClassStatus] = (),
    ) -> None:
        self.teachers: list[Teacher] = list(teachers)
        self.subjects: list[Subject] = list(subjects)
        self.classes: list[SchoolClass] = list(classes)
        self.sessions: list[Session] = list(sessions)
        self.holidays: list[Holiday] = list(holidays)
        self._statuses: dict[tuple[str, str], SubjectClassStatus] = {
            s.key: s for s in statuses
        }

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _find(items: list[T], kind: str, id_: str) -> T:
        for item in items:
            if item.id == id_:
                return item
        raise EntityNotFound(kind, id_)

    def _update(self, items: list[T], kind: str, id_: str, changes: dict[str, Any]) -> T:
        item = self._find(items, kind, id_)
        updated = replace(item, **changes)
        items[items.index(item)] = updated
        log.debug("Updated %s %s: %s", kind, id_, sorted(changes))
        return updated

    def _delete(self, items: list[T], kind: str, id_: str) -> T:
        item = self._find(items, kind, id_)
        items.remove(item)
        log.debug("Deleted %s %s", kind, id_)
        return item

    # ------------------------------------------------------------------
    # Teachers, subjects, classes, holidays
    # ------------------------------------------------------------------

    def add_teacher(self, name: str, title: str | None = None) -> Teacher:
        teacher = Teacher(generate_id(), name, title)
        self.teachers.append(teacher)
        return teacher

    def get_teacher(self, teacher_id: str) -> Teacher:
        return self._find(self.teachers, "Teacher", teacher_id)

    def update_teacher(self, teacher_id: str, **changes: Any) -> Teacher:
        return self._update(self.teachers, "Teacher", teacher_id, changes)

    def delete_teacher(self, teacher_id: str) -> Teacher:
        return self._delete(self.teachers, "Teacher", teacher_id)

    def add_subject(self, name: str, major_id: str, total_periods: int, **extra: Any) -> Subject:
        subject = Subject(generate_id(), name, major_id, total_periods, **extra)
        self.subjects.append(subject)
        return subject

    def get_subject(self, subject_id: str) -> Subject:
        return self._find(self.subjects, "Subject", subject_id)

    def update_subject(self, subject_id: str, **changes: Any) -> Subject:
        return self._update(self.subjects, "Subject", subject_id, changes)

    def delete_subject(self, subject_id: str) -> Subject:
        return self._delete(self.subjects, "Subject", subject_id)

    def add_class(self, name: str, major_id: str, **extra: Any) -> SchoolClass:
        school_class = SchoolClass(generate_id(), name, major_id, **extra)
        self.classes.append(school_class)
        return school_class

    def get_class(self, class_id: str) -> SchoolClass:
        return self._find(self.classes, "Class", class_id)

    def update_class(self, class_id: str, **changes: Any) -> SchoolClass:
        return self._update(self.classes, "Class", class_id, changes)

    def delete_class(self, class_id: str) -> SchoolClass:
        return self._delete(self.classes, "Class", class_id)

    def add_holiday(self, name: str, start_date: date, end_date: date) -> Holiday:
        if start_date > end_date:
            raise StoreError(_("The end date must not be before the start date."))
        holiday = Holiday(generate_id(), name, start_date, end_date)
        self.holidays.append(holiday)
        return holiday

    def update_holiday(self, holiday_id: str, **changes: Any) -> Holiday:
        holiday = self._find(self.holidays, "Holiday", holiday_id)
        start = changes.get("start_date", holiday.start_date)
        end = changes.get("end_date", holiday.end_date)
        if start > end:
            raise StoreError(_("The end date must not be before the start date."))
        return self._update(self.holidays, "Holiday", holiday_id, changes)

    def delete_holiday(self, holiday_id: str) -> Holiday:
        return self._delete(self.holidays, "Holiday", holiday_id)

    def holiday_on(self, day: date) -> Holiday | None:
        return find_holiday(day, self.holidays)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> Session:
        return self._find(self.sessions, "Session", session_id)

    def sessions_for_class(
        self, class_id: str, start: date | None = None, end: date | None = None
    ) -> list[Session]:
        """Return the sessions of a class within an inclusive date range, in order."""
        return sorted(
            (
                s
                for s in self.sessions
                if s.class_id == class_id
                and (start is None or s.date >= start)
                and (end is None or s.date <= end)
            ),
            key=lambda s: (s.date, s.start_period),
        )

    def related(self, session_id: str) -> list[Session]:
        """Return the sessions forming the same lecture as `session_id`."""
        source = self.get_session(session_id)
        return related_sessions(source, self.sessions, self.subjects, self.classes)

    def check_placement(
        self,
        candidate: Session,
        exclude_ids: Iterable[str] | None = None,
        shared_class_ids: Iterable[str] | None = None,
        sessions: Iterable[Session] | None = None,
    ) -> ConflictResult:
        """Check a candidate against holidays and every stored session."""
        return check_conflict(
            candidate,
            self.sessions if sessions is None else sessions,
            self.subjects,
            self.classes,
            exclude_ids=exclude_ids,
            holidays=self.holidays,
            shared_class_ids=shared_class_ids,
        )

    @staticmethod
    def validate_periods(session: Session) -> None:
        """
        Check that a session starts on a real period and stays inside its shift.

        Raises:
            StoreError: If the start period is outside 1-14, the period count
                is below one, or the session runs past the end of its shift.
        """
        start, count = session.start_period, session.period_count
        if not FIRST_PERIOD <= start <= LAST_PERIOD:
            raise StoreError(
                _("Start period %(start)d is not between %(first)d and %(last)d.")
                % {"start": start, "first": FIRST_PERIOD, "last": LAST_PERIOD}
            )
        if count < 1:
            raise StoreError(_("A session needs at least one period."))
        if count > max_periods_from(start):
            raise StoreError(
                _(
                    "%(count)d periods from period %(start)d run past the end of the shift"
                    " (%(max)d at most)."
                )
                % {"count": count, "start": start, "max": max_periods_from(start)}
            )

    def _ensure_placeable(
        self,
        candidate: Session,
        exclude_ids: Iterable[str] | None = None,
        shared_class_ids: Iterable[str] | None = None,
    ) -> None:
        result = self.check_placement(candidate, exclude_ids, shared_class_ids)
        if result.has_conflict:
            log.info(
                "Rejected session for class %s on %s: %s",
                candidate.class_id,
                candidate.date,
                result.message,
            )
            raise SchedulingError(result, candidate.class_id)

    def add_session(
        self,
        candidate: Session,
        class_ids: Iterable[str] | None = None,
        status: SessionStatus = SessionStatus.PENDING,
    ) -> list[Session]:
        """
        Place a session for one class, or one shared lecture for several.

        A class added to a shared lecture that is already stored joins that
        lecture's group.

        Args:
            candidate (Session): Session to place. Its id is ignored.
            class_ids (Iterable[str], optional): Classes attending. Defaults to
                the candidate's class.
            status (SessionStatus): Initial status.

        Returns:
            list[Session]: Stored sessions, one per class.

        Raises:
            SchedulingError: If any class cannot take the session. Nothing is
                stored in that case.
            StoreError: If the period range is invalid.
            EntityNotFound: If the subject or a class does not exist.
        """
        class_ids = list(dict.fromkeys(class_ids or [candidate.class_id]))
        subject = self.get_subject(candidate.subject_id)
        self.validate_periods(candidate)

        siblings = []
        if is_shared_subject(subject, self.classes):
            key = shared_key(candidate)
            siblings = [s for s in self.sessions if shared_key(s) == key]
        participants = [*class_ids, *(s.class_id for s in siblings)]

        for class_id in class_ids:
            self.get_class(class_id)
            self._ensure_placeable(
                replace(candidate, class_id=class_id), shared_class_ids=participants
            )

        shared_group_id = next((s.shared_group_id for s in siblings if s.shared_group_id), None)
        if shared_group_id is None and len(participants) > 1:
            shared_group_id = generate_id()
        if siblings:
            self._store_sessions([replace(s, shared_group_id=shared_group_id) for s in siblings])
        created = [
            replace(
                candidate,
                id=generate_id(),
                class_id=class_id,
                status=status,
                shared_group_id=shared_group_id,
            )
            for class_id in class_ids
        ]
        self.sessions.extend(created)
        log.debug("Added sessions %s", [s.id for s in created])
        return created

    def update_session(self, session_id: str, **changes: Any) -> list[Session]:
        """
        Apply changes to a session and every sibling of its shared lecture.

        Each member is re-validated with the whole lecture excluded, so it
        never clashes with itself. The update is all-or-nothing.

        Returns:
            list[Session]: Updated sessions.

        Raises:
            SchedulingError: If any member cannot take the new placement.
            StoreError: If the change touches an id, moves a shared lecture
                to another class, or gives an invalid period range.
        """
        if _IMMUTABLE_SESSION_FIELDS & changes.keys():
            raise StoreError(_("Session ids cannot be changed."))

        members = self.related(session_id)
        if len(members) > 1 and "class_id" in changes:
            raise StoreError(_("A shared session cannot be moved to another class."))

        member_ids = [m.id for m in members]
        participants = {m.class_id for m in members}
        shared_group_id = next((m.shared_group_id for m in members if m.shared_group_id), None)
        if shared_group_id is None and len(members) > 1:
            shared_group_id = generate_id()
        updated = [replace(m, shared_group_id=shared_group_id, **changes) for m in members]
        for session in updated:
            self.validate_periods(session)
        for session in updated:
            if not session.is_cancelled:
                self._ensure_placeable(session, member_ids, participants)

        self._store_sessions(updated)
        return updated

    def set_status(self, session_id: str, status: SessionStatus) -> list[Session]:
        """
        Change the status of a session and every sibling of its lecture.

        Restoring a cancelled session re-validates its slot.
        """
        members = self.related(session_id)
        member_ids = [m.id for m in members]
        participants = {m.class_id for m in members}

        updated = [replace(m, status=status) for m in members]
        if status != SessionStatus.OFF:
            for before, after in zip(members, updated):
                if before.is_cancelled:
                    self._ensure_placeable(after, member_ids, participants)

        self._store_sessions(updated)
        return updated

    def delete_session(self, session_id: str, cascade: bool = True) -> list[Session]:
        """
        Delete a session, and by default every sibling of its lecture.

        Returns:
            list[Session]: Deleted sessions.
        """
        members = self.related(session_id) if cascade else [self.get_session(session_id)]
        ids = {m.id for m in members}
        self.sessions = [s for s in self.sessions if s.id not in ids]
        log.debug("Deleted sessions %s", sorted(ids))
        return members

    def copy_session(self, session_id: str, day: date, start_period: int) -> list[Session]:
        """
        Copy a session (with its whole lecture) to another slot.

        Members that would clash are skipped.

        Returns:
            list[Session]: The copies created, possibly empty.

        Raises:
            SchedulingError: If `day` is a holiday.
            StoreError: If the lecture does not fit in the shift at
                `start_period`.
        """
        holiday = self.holiday_on(day)
        if holiday is not None:
            raise SchedulingError(
                ConflictResult(
                    True,
                    _("Cannot schedule on a holiday: %(name)s") % {"name": holiday.name},
                    ConflictKind.HOLIDAY,
                    holiday.name,
                )
            )

        sources = self.related(session_id)
        shared_group_id = generate_id() if len(sources) > 1 else None
        snapshot = list(self.sessions)
        copies = []

        for source in sources:
            copy = replace(
                source,
                id="",
                date=day,
                start_period=start_period,
                status=SessionStatus.PENDING,
                shared_group_id=shared_group_id,
            )
            self.validate_periods(copy)
            result = self.check_placement(copy, sessions=snapshot)
            if result.has_conflict:
                log.info("Skipped copy for class %s: %s", source.class_id, result.message)
                continue
            copies.append(replace(copy, id=generate_id()))

        self.sessions.extend(copies)
        return copies

    def continue_next_week(self, class_id: str, week_of: date) -> ContinueReport:
        """
        Copy the class sessions of a week to the following week.

        Subjects keep being copied while they have periods left; the last
        copy is shortened to the periods remaining. Shared lectures are
        copied for every attending class. Exams are not copied.

        Args:
            class_id (str): Class whose week to continue.
            week_of (datetime.date): Any date of the week to copy.

        Returns:
            ContinueReport: Sessions added and warnings for the user.
        """
        start = week_start(week_of)
        end = arrow.get(start).shift(days=6).date()
        week = [
            s
            for s in self.sessions_for_class(class_id, start, end)
            if not s.is_cancelled and s.type == SessionType.CLASS
        ]

        # Progress and clashes are judged on the week as it was before copying
        snapshot = list(self.sessions)
        report = ContinueReport()
        added_periods: dict[tuple[str, str, str], int] = {}
        processed: set[tuple] = set()

        for item in week:
            subject = next((s for s in self.subjects if s.id == item.subject_id), None)
            if subject is None:
                continue

            sources = [item]
            if is_shared_subject(subject, self.classes):
                slot = (item.date, item.start_period, item.teacher_id, item.subject_id)
                if slot in processed:
                    continue
                processed.add(slot)
                sources = self.related(item.id)

            # The copies of one lecture form one new group
            shared_group_id = generate_id() if len(sources) > 1 else None
            for source in sources:
                self._continue_one(
                    subject, source, snapshot, added_periods, shared_group_id, report
                )

        return report

    def _continue_one(
        self,
        subject: Subject,
        source: Session,
        snapshot: list[Session],
        added_periods: dict[tuple[str, str, str], int],
        shared_group_id: str | None,
        report: ContinueReport,
    ) -> None:
        key = (source.subject_id, source.class_id, source.group or "")
        school_class = next((c for c in self.classes if c.id == source.class_id), None)
        class_name = school_class.name if school_class else source.class_id
        total = effective_total_periods(subject, school_class)
        progress = subject_progress(
            source.subject_id, source.class_id, total, snapshot, source.group
        )
        remaining = progress.remaining - added_periods.get(key, 0)

        if remaining > 0:
            next_date = arrow.get(source.date).shift(weeks=1).date()
            holiday = self.holiday_on(next_date)
            if holiday is not None:
                message = _(
                    "Class %(class_name)s: cannot schedule on %(date)s, it is a holiday: %(name)s"
                ) % {
                    "class_name": class_name,
                    "date": next_date.strftime("%d/%m/%Y"),
                    "name": holiday.name,
                }
                if message not in report.warnings:
                    report.warnings.append(message)
                return

            taken = any(
                s.class_id == source.class_id
                and s.date == next_date
                and s.start_period == source.start_period
                for s in snapshot
            )
            if not taken:
                copy = replace(
                    source,
                    id="",
                    date=next_date,
                    period_count=min(source.period_count, remaining),
                    status=SessionStatus.PENDING,
                    shared_group_id=shared_group_id,
                )
                if not self.check_placement(copy, sessions=snapshot).has_conflict:
                    copy = replace(copy, id=generate_id())
                    self.sessions.append(copy)
                    report.added.append(copy)
                    added_periods[key] = added_periods.get(key, 0) + copy.period_count

        final_remaining = progress.remaining - added_periods.get(key, 0)
        if 0 < final_remaining <= NEAR_END_THRESHOLD:
            group_label = f" ({source.group})" if source.group else ""
            message = _(
                "Class %(class_name)s%(group)s: %(subject)s is nearly finished (%(count)d periods left)"
            ) % {
                "class_name": class_name,
                "group": group_label,
                "subject": subject.name,
                "count": final_remaining,
            }
            if message not in report.warnings:
                report.warnings.append(message)

    def _store_sessions(self, updated: list[Session]) -> None:
        by_id = {s.id: s for s in updated}
        self.sessions = [by_id.get(s.id, s) for s in self.sessions]
        log.debug("Updated sessions %s", sorted(by_id))

    # ------------------------------------------------------------------
    # Progress and completion
    # ------------------------------------------------------------------

    def statuses(self) -> dict[tuple[str, str], SubjectClassStatus]:
        return dict(self._statuses)

    def _status_record(self, subject_id: str, class_id: str) -> SubjectClassStatus:
        self.get_subject(subject_id)
        self.get_class(class_id)
        record = self._statuses.get((subject_id, class_id))
        if record is None:
            record = SubjectClassStatus(subject_id, class_id)
            self._statuses[record.key] = record
        return record

    def set_subject_override(
        self, subject_id: str, class_id: str, override: StatusOverride | None
    ) -> SubjectClassStatus:
        """Mark a subject completed or in progress for a class; None restores automatic."""
        record = self._status_record(subject_id, class_id)
        record.override = override
        return record

    def mark_paid(self, subject_id: str, class_id: str, paid: bool = True) -> SubjectClassStatus:
        record = self._status_record(subject_id, class_id)
        record.paid = paid
        return record

    def mark_manually_completed(
        self, subject_id: str, class_id: str, completed: bool = True
    ) -> SubjectClassStatus:
        record = self._status_record(subject_id, class_id)
        record.manually_completed = completed
        return record

    def is_finished(self, subject_id: str, class_id: str) -> bool:
        subject = self.get_subject(subject_id)
        school_class = next((c for c in self.classes if c.id == class_id), None)
        return is_subject_finished(subject, school_class, self.sessions, self._statuses)

    def progress(self, subject_id: str, class_id: str, group: str | None = None) -> Progress:
        """Return the progress of a subject for a class using its effective total."""
        subject = self.get_subject(subject_id)
        school_class = self.get_class(class_id)
        total = effective_total_periods(subject, school_class)
        return subject_progress(subject_id, class_id, total, self.sessions, group)

    def sequence(self, session_id: str) -> SequenceInfo:
        session = self.get_session(session_id)
        subject = next((s for s in self.subjects if s.id == session.subject_id), None)
        school_class = next((c for c in self.classes if c.id == session.class_id), None)
        total = effective_total_periods(subject, school_class) if subject else 0
        return session_sequence_info(session, self.sessions, total)

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    def suggest_teachers(self, subject_id: str) -> tuple[list[Teacher], list[Teacher]]:
        """
        Split teachers into those responsible for a subject and the rest.

        Returns:
            tuple[list[Teacher], list[Teacher]]: Suggested and other teachers.
        """
        subject = next((s for s in self.subjects if s.id == subject_id), None)
        names = {
            n.strip().lower() for n in (subject.responsible_teachers if subject else []) if n.strip()
        }
        if not names:
            return [], list(self.teachers)

        suggested = [t for t in self.teachers if t.name.strip().lower() in names]
        others = [t for t in self.teachers if t.name.strip().lower() not in names]
        return suggested, others

    def last_teacher_for(self, subject_id: str, class_id: str) -> str | None:
        """Return the teacher of the latest class session of a subject for a class."""
        matches = [
            s
            for s in self.sessions
            if s.subject_id == subject_id
            and s.class_id == class_id
            and s.type == SessionType.CLASS
            and not s.is_cancelled
        ]
        if not matches:
            return None
        return max(matches, key=lambda s: (s.date, s.start_period)).teacher_id

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Remove every entity and completion marker."""
        self.teachers.clear()
        self.subjects.clear()
        self.classes.clear()
        self.sessions.clear()
        self.holidays.clear()
        self._statuses.clear()

    def to_json(self) -> dict:
        return {
            "teachers": [t.to_json() for t in self.teachers],
            "subjects": [s.to_json() for s in self.subjects],
            "classes": [c.to_json() for c in self.classes],
            "schedules": [s.to_json() for s in self.sessions],
            "holidays": [h.to_json() for h in self.holidays],
            "subjectStatuses": [s.to_json() for s in self._statuses.values()],
        }

    @classmethod
    def from_json(cls, data: dict) -> "EntityStore":
        """
        Build a store from a JSON backup.

        Missing collections default to empty. Completion markers saved by older
        versions as "<subjectId>-<classId>" keys are migrated.
        """
        store = cls(
            teachers=[Teacher.from_json(t) for t in data.get("teachers") or []],
            subjects=[Subject.from_json(s) for s in data.get("subjects") or []],
            classes=[SchoolClass.from_json(c) for c in data.get("classes") or []],
            sessions=[Session.from_json(s) for s in data.get("schedules") or []],
            holidays=[Holiday.from_json(h) for h in data.get("holidays") or []],
            statuses=[SubjectClassStatus.from_json(s) for s in data.get("subjectStatuses") or []],
        )
        store._migrate_legacy_statuses(data)
        return store

    def _migrate_legacy_statuses(self, data: dict) -> None:
        keys = {
            f"{s.id}-{c.id}": (s.id, c.id) for s in self.subjects for c in self.classes
        }

        for composite, meta in (data.get("subject_progress_metadata") or {}).items():
            if composite in keys and (meta or {}).get("statusOverride"):
                record = self._status_record(*keys[composite])
                record.override = StatusOverride(meta["statusOverride"])

        for composite in data.get("paid_completed_subjects") or []:
            if composite in keys:
                self._status_record(*keys[composite]).paid = True

        for composite in data.get("manual_completed_subjects") or []:
            if composite in keys:
                self._status_record(*keys[composite]).manually_completed = True

    @classmethod
    def load(cls, path: Path) -> "EntityStore":
        """Load a store from a JSON file. A missing file gives an empty store."""
        if not path.exists():
            log.debug("No store at %s, starting empty", path)
            return cls()
        with path.open(encoding="utf-8") as file:
            return cls.from_json(json.load(file))

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(self.to_json(), ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(path)
        log.debug("Saved store to %s", path)
