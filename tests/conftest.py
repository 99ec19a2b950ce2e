from datetime import date

import pytest

from edu_schedule.modules.models import (
    ClassShift,
    SchoolClass,
    Session,
    SessionStatus,
    SessionType,
    Subject,
    Teacher,
)
from edu_schedule.store import EntityStore

# A Monday
DAY = date(2025, 3, 10)


@pytest.fixture
def teachers():
    return [
        Teacher("t1", "Nguyễn Văn An", "ThS."),
        Teacher("t2", "Trần Thị Bình"),
        Teacher("t3", "Lê Văn Cường"),
    ]


@pytest.fixture
def subjects():
    return [
        Subject("eng", "English", "common", 30, is_shared=True),
        Subject("math", "Applied Maths", "it", 9),
        Subject(
            "net",
            "Networking",
            "it",
            45,
            total_periods_evening=30,
            responsible_teachers=["Trần Thị Bình"],
        ),
        Subject("phy", "Physics", "culture", 30),
        Subject("lit", "Literature", "culture_8", 60),
    ]


@pytest.fixture
def classes():
    return [
        SchoolClass("A", "Class A", "it", campus=1),
        SchoolClass("B", "Class B", "it", campus=1),
        SchoolClass("C", "Class C", "auto", campus=2),
        SchoolClass("U", "Class U", "auto"),
        SchoolClass("E", "Class E", "it", shift=ClassShift.EVENING, campus=1),
    ]


@pytest.fixture
def store(teachers, subjects, classes):
    return EntityStore(teachers=teachers, subjects=subjects, classes=classes)


@pytest.fixture
def make_session():
    def factory(
        class_id="A",
        subject_id="eng",
        teacher_id="t1",
        room_id="R101",
        day=DAY,
        start_period=1,
        period_count=2,
        type=SessionType.CLASS,
        status=SessionStatus.PENDING,
        **extra,
    ):
        return Session(
            type=type,
            teacher_id=teacher_id,
            subject_id=subject_id,
            class_id=class_id,
            room_id=room_id,
            date=day,
            start_period=start_period,
            period_count=period_count,
            status=status,
            **extra,
        )

    return factory
