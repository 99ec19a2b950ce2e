from datetime import date
from enum import Enum
from dataclasses import asdict, dataclass, field

from .constants import (
    MAJOR_COMMON,
    MAJOR_CULTURE,
    MAJOR_CULTURE_EXTENDED,
    MAX_RESPONSIBLE_TEACHERS,
)


class SessionType(str, Enum):
    """Kind of a scheduled session."""

    CLASS = "class"
    EXAM = "exam"


class SessionStatus(str, Enum):
    """Lifecycle status of a session."""

    PENDING = "pending"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    OFF = "off"
    MAKEUP = "makeup"


class ClassShift(str, Enum):
    """Study shift of a class."""

    DAY = "Ban ngày"
    EVENING = "Tối"


class SessionLabel(str, Enum):
    """Part of the day a period belongs to."""

    MORNING = "Sáng"
    AFTERNOON = "Chiều"
    EVENING = "Tối"


class StatusOverride(str, Enum):
    """Manual completion marker for a subject in a class."""

    COMPLETED = "completed"
    IN_PROGRESS = "in-progress"


class SubjectCategory(Enum):
    """Curriculum category of a subject, derived from its major."""

    STANDARD_MAJOR = "standard"
    COMMON = "common"
    CULTURE = "culture"
    CULTURE_EXTENDED = "culture_8"


class ConflictKind(str, Enum):
    """Reason a placement was rejected."""

    DUPLICATE_SUBJECT = "duplicate-subject"
    ROOM = "room"
    TEACHER = "teacher"
    CLASS = "class"
    EXAM_CLASS = "exam-class"
    SHARED_CLASS_BUSY = "shared-class-busy"
    HOLIDAY = "holiday"


def _to_date(value: date | str | None) -> date:
    if isinstance(value, date):
        return value
    # Imported here to keep models free of a module cycle
    from .dates import parse_local_date

    return parse_local_date(value)


@dataclass
class Teacher:
    """
    Teacher.

    Attributes:
        id (str): Unique identifier.
        name (str): Full name.
        title (str, optional): Honorific shown before the name.
    """

    id: str
    name: str
    title: str | None = None

    def __str__(self) -> str:
        return f"{self.title} {self.name}" if self.title else self.name

    def to_json(self) -> dict:
        """
        Return a JSON-serialisable dict in the persisted camelCase format.

        Returns:
            dict: Dictionary representation of the teacher.
        """
        return {"id": self.id, "name": self.name, "title": self.title}

    @classmethod
    def from_json(cls, data: dict) -> "Teacher":
        """
        Build a teacher from its persisted dict.

        Args:
            data (dict): Dictionary as written by `to_json`.

        Returns:
            Teacher: The parsed teacher.
        """
        return cls(id=str(data["id"]), name=data.get("name", ""), title=data.get("title"))


@dataclass
class Subject:
    """
    Subject of a curriculum.

    Attributes:
        id (str): Unique identifier.
        name (str): Subject name.
        major_id (str): Major the subject belongs to, or a pseudo-major
            (`common`, `culture`, `culture_8`).
        total_periods (int): Curriculum length for day classes.
        total_periods_evening (int, optional): Curriculum length for evening classes.
        is_shared (bool): Whether the subject is co-taught across classes.
        responsible_teachers (list[str]): Names of the teachers usually in charge.
    """

    id: str
    name: str
    major_id: str
    total_periods: int
    total_periods_evening: int | None = None
    is_shared: bool = False
    responsible_teachers: list[str] = field(default_factory=list)

    @property
    def category(self) -> SubjectCategory:
        """Return the curriculum category of the subject."""
        return subject_category(self.major_id)

    def to_json(self) -> dict:
        """
        Return a JSON-serialisable dict in the persisted camelCase format.
        Responsible teachers are stored as `teacher1`..`teacher3`.

        Returns:
            dict: Dictionary representation of the subject.
        """
        data = {
            "id": self.id,
            "name": self.name,
            "majorId": self.major_id,
            "totalPeriods": self.total_periods,
            "totalPeriodsEvening": self.total_periods_evening,
            "isShared": self.is_shared,
        }
        # Persisted as teacher1..teacher3
        for i, name in enumerate(self.responsible_teachers[:MAX_RESPONSIBLE_TEACHERS]):
            data[f"teacher{i + 1}"] = name
        return data

    @classmethod
    def from_json(cls, data: dict) -> "Subject":
        """
        Build a subject from its persisted dict.

        Args:
            data (dict): Dictionary as written by `to_json`.

        Returns:
            Subject: The parsed subject.
        """
        teachers = [
            data[f"teacher{i}"]
            for i in range(1, MAX_RESPONSIBLE_TEACHERS + 1)
            if data.get(f"teacher{i}")
        ]
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            major_id=str(data.get("majorId", "")),
            total_periods=int(data.get("totalPeriods") or 0),
            total_periods_evening=data.get("totalPeriodsEvening"),
            is_shared=bool(data.get("isShared", False)),
            responsible_teachers=teachers,
        )


@dataclass
class SchoolClass:
    """
    Class (cohort of students).

    Attributes:
        id (str): Unique identifier.
        name (str): Class name, e.g. "Điện Công Nghiệp (25DC2H8)".
        major_id (str): Major of the class.
        shift (ClassShift): Day or evening shift.
        campus (int, optional): Campus number. When missing it is derived
            from the class name.
    """

    id: str
    name: str
    major_id: str
    shift: ClassShift = ClassShift.DAY
    campus: int | None = None

    @property
    def is_evening(self) -> bool:
        return self.shift == ClassShift.EVENING

    def to_json(self) -> dict:
        """
        Return a JSON-serialisable dict in the persisted camelCase format.
        The shift is stored under `session`.

        Returns:
            dict: Dictionary representation of the class.
        """
        return {
            "id": self.id,
            "name": self.name,
            "majorId": self.major_id,
            "session": self.shift.value,
            "campus": self.campus,
        }

    @classmethod
    def from_json(cls, data: dict) -> "SchoolClass":
        """
        Build a class from its persisted dict.
        Free-text campus labels of older files are dropped.

        Args:
            data (dict): Dictionary as written by `to_json`.

        Returns:
            SchoolClass: The parsed class.
        """
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            major_id=str(data.get("majorId", "")),
            shift=ClassShift(data.get("session") or ClassShift.DAY.value),
            campus=_parse_campus(data.get("campus")),
        )


def _parse_campus(value: int | str | None) -> int | None:
    # Older files store a free-text label such as "Cơ sở 2", which is ignored
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


@dataclass
class Holiday:
    """
    Holiday range on which no session may be placed.

    Attributes:
        id (str): Unique identifier.
        name (str): Holiday name, e.g. "Tết".
        start_date (datetime.date): First day off.
        end_date (datetime.date): Last day off (inclusive).
    """

    id: str
    name: str
    start_date: date
    end_date: date

    def contains(self, day: date) -> bool:
        """Return True if `day` falls within the inclusive range."""
        return self.start_date <= day <= self.end_date

    def to_json(self) -> dict:
        """
        Return a JSON-serialisable dict in the persisted camelCase format.
        Dates are ISO strings.

        Returns:
            dict: Dictionary representation of the holiday.
        """
        return {
            "id": self.id,
            "name": self.name,
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
        }

    @classmethod
    def from_json(cls, data: dict) -> "Holiday":
        """
        Build a holiday from its persisted dict.

        Args:
            data (dict): Dictionary as written by `to_json`.

        Returns:
            Holiday: The parsed holiday.
        """
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            start_date=_to_date(data.get("startDate")),
            end_date=_to_date(data.get("endDate")),
        )


@dataclass
class Session:
    """
    Scheduled teaching or exam session for one class.

    A candidate session (not yet stored) has an empty `id`.

    Attributes:
        type (SessionType): Class or exam.
        teacher_id (str): Teacher in charge.
        subject_id (str): Subject taught.
        class_id (str): Class attending.
        room_id (str): Free-text room label.
        date (datetime.date): Calendar date.
        start_period (int): First period (1-14).
        period_count (int): Number of periods.
        status (SessionStatus): Lifecycle status.
        group (str, optional): Sub-class cohort, e.g. a practical group.
        note (str, optional): Free-text note.
        id (str): Unique identifier.
        shared_group_id (str, optional): Identifier stamped on every session
            of one combined-class lecture.
    """

    type: SessionType
    teacher_id: str
    subject_id: str
    class_id: str
    room_id: str
    date: date
    start_period: int
    period_count: int
    status: SessionStatus = SessionStatus.PENDING
    group: str | None = None
    note: str | None = None
    id: str = ""
    shared_group_id: str | None = None

    @property
    def end_period(self) -> int:
        """Return the first period after the session (exclusive end)."""
        return self.start_period + self.period_count

    @property
    def is_cancelled(self) -> bool:
        return self.status == SessionStatus.OFF

    @property
    def is_exam(self) -> bool:
        return self.type == SessionType.EXAM

    def overlaps(self, other: "Session") -> bool:
        """
        Return True if both sessions fall on the same date and their period
        intervals intersect.
        """
        return (
            self.date == other.date
            and self.start_period < other.end_period
            and self.end_period > other.start_period
        )

    def to_json(self) -> dict:
        """
        Return a JSON-serialisable dict in the persisted camelCase format.
        The date is an ISO string.

        Returns:
            dict: Dictionary representation of the session.
        """
        return {
            "id": self.id,
            "type": self.type.value,
            "teacherId": self.teacher_id,
            "subjectId": self.subject_id,
            "classId": self.class_id,
            "roomId": self.room_id,
            "date": self.date.isoformat(),
            "startPeriod": self.start_period,
            "periodCount": self.period_count,
            "status": self.status.value,
            "group": self.group,
            "note": self.note,
            "sharedGroupId": self.shared_group_id,
        }

    @classmethod
    def from_json(cls, data: dict) -> "Session":
        """
        Build a session from its persisted dict.
        Missing fields take their defaults.

        Args:
            data (dict): Dictionary as written by `to_json`.

        Returns:
            Session: The parsed session.
        """
        return cls(
            id=str(data.get("id", "")),
            type=SessionType(data.get("type") or SessionType.CLASS.value),
            teacher_id=str(data.get("teacherId", "")),
            subject_id=str(data.get("subjectId", "")),
            class_id=str(data.get("classId", "")),
            room_id=data.get("roomId", ""),
            date=_to_date(data.get("date")),
            start_period=int(data.get("startPeriod", 1)),
            period_count=int(data.get("periodCount", 1)),
            status=SessionStatus(data.get("status") or SessionStatus.PENDING.value),
            group=data.get("group") or None,
            note=data.get("note") or None,
            shared_group_id=data.get("sharedGroupId") or None,
        )


@dataclass
class SubjectClassStatus:
    """
    Manual completion markers for one subject in one class.

    Attributes:
        subject_id (str): Subject.
        class_id (str): Class.
        override (StatusOverride, optional): Explicit completed/in-progress marker.
        paid (bool): Legacy "paid" marker, counts as completed.
        manually_completed (bool): Legacy manual completion marker.
    """

    subject_id: str
    class_id: str
    override: StatusOverride | None = None
    paid: bool = False
    manually_completed: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return self.subject_id, self.class_id

    def to_json(self) -> dict:
        """
        Return a JSON-serialisable dict in the persisted camelCase format.

        Returns:
            dict: Dictionary representation of the completion marker.
        """
        data = asdict(self)
        data["override"] = self.override.value if self.override else None
        return data

    @classmethod
    def from_json(cls, data: dict) -> "SubjectClassStatus":
        """
        Build a completion marker from its persisted dict.

        Args:
            data (dict): Dictionary as written by `to_json`.

        Returns:
            SubjectClassStatus: The parsed completion marker.
        """
        override = data.get("override")
        return cls(
            subject_id=str(data["subject_id"]),
            class_id=str(data["class_id"]),
            override=StatusOverride(override) if override else None,
            paid=bool(data.get("paid", False)),
            manually_completed=bool(data.get("manually_completed", False)),
        )


@dataclass(frozen=True)
class ConflictResult:
    """
    Outcome of a placement check.

    Attributes:
        has_conflict (bool): False authorises the write.
        message (str): Human-readable diagnostic for display only.
        kind (ConflictKind, optional): Reason of the rejection.
        resource (str, optional): Offending room label, teacher id, class id
            or holiday name.
        session (Session, optional): Existing session the candidate clashed with.
    """

    has_conflict: bool
    message: str = ""
    kind: ConflictKind | None = None
    resource: str | None = None
    session: Session | None = None

    def __bool__(self) -> bool:
        return self.has_conflict


NO_CONFLICT = ConflictResult(False)


@dataclass(frozen=True)
class Progress:
    """Learned/remaining periods of a subject for a class (or group)."""

    learned: int
    total: int
    percentage: int
    remaining: int


@dataclass(frozen=True)
class SequenceInfo:
    """Position of a session within its subject's run of sessions."""

    cumulative: int = 0
    is_first: bool = False
    is_last: bool = False


def subject_category(major_id: str) -> SubjectCategory:
    """
    Classify a major id into a subject category.

    Args:
        major_id (str): Major id of a subject.

    Returns:
        SubjectCategory: The pseudo-major category, or `STANDARD_MAJOR`.
    """
    if major_id == MAJOR_COMMON:
        return SubjectCategory.COMMON
    if major_id == MAJOR_CULTURE:
        return SubjectCategory.CULTURE
    if major_id == MAJOR_CULTURE_EXTENDED:
        return SubjectCategory.CULTURE_EXTENDED
    return SubjectCategory.STANDARD_MAJOR
