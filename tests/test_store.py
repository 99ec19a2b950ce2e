from datetime import date

import pytest

from edu_schedule.modules.models import (
    ConflictKind,
    SessionStatus,
    SessionType,
    StatusOverride,
)
from edu_schedule.store import EntityNotFound, EntityStore, SchedulingError, StoreError

DAY = date(2025, 3, 10)


def add_shared(store, make_session, **fields):
    return store.add_session(make_session(**fields), ["A", "B"])


def test_add_single_session(store, make_session):
    created = store.add_session(make_session(subject_id="math"))

    assert len(created) == 1
    assert created[0].id
    assert created[0].shared_group_id is None
    assert created[0].status == SessionStatus.PENDING
    assert store.sessions == created


def test_add_makeup_session(store, make_session):
    created = store.add_session(make_session(subject_id="math"), status=SessionStatus.MAKEUP)

    assert created[0].status == SessionStatus.MAKEUP


def test_add_shared_session_stamps_one_group(store, make_session):
    a, b = add_shared(store, make_session)

    assert (a.class_id, b.class_id) == ("A", "B")
    assert a.shared_group_id and a.shared_group_id == b.shared_group_id
    assert a.id != b.id
    assert store.related(a.id) == [a, b]


def test_class_added_later_joins_the_lecture(store, make_session):
    a, b = add_shared(store, make_session)

    (late,) = store.add_session(make_session(class_id="U"))

    assert late.shared_group_id == a.shared_group_id
    assert store.related(a.id) == store.related(late.id) == [a, b, late]

    store.update_session(a.id, start_period=6)

    assert [s.start_period for s in store.sessions] == [6, 6, 6]


def test_class_added_later_stamps_legacy_siblings(store, make_session):
    store.sessions.append(make_session(class_id="A", id="a"))

    (late,) = store.add_session(make_session(class_id="B"))

    assert late.shared_group_id
    assert store.get_session("a").shared_group_id == late.shared_group_id
    assert len(store.delete_session("a")) == 2


@pytest.mark.parametrize(
    "start_period, period_count",
    [(1, 0), (0, 1), (15, 1), (20, 2), (4, 3), (13, 14), (10, 2)],
)
def test_add_rejects_period_ranges_outside_the_shift(
    store, make_session, start_period, period_count
):
    candidate = make_session(start_period=start_period, period_count=period_count)

    with pytest.raises(StoreError) as e:
        store.add_session(candidate)

    assert not isinstance(e.value, SchedulingError)
    assert store.sessions == []


def test_add_accepts_a_full_shift(store, make_session):
    (lesson,) = store.add_session(make_session(start_period=11, period_count=4))

    assert (lesson.start_period, lesson.period_count) == (11, 4)


def test_update_rejects_period_ranges_outside_the_shift(store, make_session):
    a, _ = add_shared(store, make_session)

    with pytest.raises(StoreError):
        store.update_session(a.id, period_count=0)
    with pytest.raises(StoreError):
        store.update_session(a.id, start_period=5)
    with pytest.raises(StoreError):
        store.update_session(a.id, start_period=15)

    assert [(s.start_period, s.period_count) for s in store.sessions] == [(1, 2), (1, 2)]


def test_copy_rejects_a_start_that_overruns_the_shift(store, make_session):
    (lesson,) = store.add_session(make_session(subject_id="math", period_count=3))

    with pytest.raises(StoreError):
        store.copy_session(lesson.id, date(2025, 3, 12), 9)

    assert len(store.sessions) == 1


def test_add_rejects_every_class_or_none(store, make_session):
    store.add_session(make_session(class_id="B", subject_id="math", teacher_id="t2", room_id="R5"))

    with pytest.raises(SchedulingError) as e:
        add_shared(store, make_session)

    assert e.value.result.kind == ConflictKind.SHARED_CLASS_BUSY
    assert e.value.result.resource == "B"
    assert len(store.sessions) == 1


def test_add_rejects_holidays(store, make_session):
    store.add_holiday("Tết", date(2025, 2, 1), date(2025, 2, 5))

    with pytest.raises(SchedulingError) as e:
        store.add_session(make_session(day=date(2025, 2, 3)))

    assert e.value.result.kind == ConflictKind.HOLIDAY
    assert store.sessions == []


def test_add_unknown_subject(store, make_session):
    with pytest.raises(EntityNotFound) as e:
        store.add_session(make_session(subject_id="nope"))

    assert isinstance(e.value, KeyError)
    assert e.value.kind == "Subject"


def test_update_moves_every_sibling(store, make_session):
    a, _ = add_shared(store, make_session)

    updated = store.update_session(a.id, start_period=6, room_id="R202")

    assert len(updated) == 2
    assert all(s.start_period == 6 and s.room_id == "R202" for s in store.sessions)
    assert {s.shared_group_id for s in store.sessions} == {a.shared_group_id}


def test_update_is_all_or_nothing(store, make_session):
    a, _ = add_shared(store, make_session)
    store.add_session(
        make_session(class_id="B", subject_id="math", teacher_id="t2", room_id="R5", start_period=6)
    )

    with pytest.raises(SchedulingError) as e:
        store.update_session(a.id, start_period=6)

    assert e.value.result.kind == ConflictKind.SHARED_CLASS_BUSY
    assert [s.start_period for s in store.sessions if s.subject_id == "eng"] == [1, 1]


def test_update_checks_holidays_for_every_sibling(store, make_session):
    a, _ = add_shared(store, make_session)
    store.add_holiday("Giỗ Tổ", date(2025, 4, 7), date(2025, 4, 7))

    with pytest.raises(SchedulingError) as e:
        store.update_session(a.id, date=date(2025, 4, 7))

    assert e.value.result.kind == ConflictKind.HOLIDAY


def test_update_refuses_identity_changes(store, make_session):
    a, _ = add_shared(store, make_session)

    with pytest.raises(StoreError):
        store.update_session(a.id, id="other")
    with pytest.raises(StoreError):
        store.update_session(a.id, class_id="C")


def test_update_links_legacy_siblings(store, make_session):
    a = make_session(class_id="A", id="a")
    b = make_session(class_id="B", id="b")
    store.sessions.extend([a, b])

    updated = store.update_session("a", start_period=3)

    assert len(updated) == 2
    assert updated[0].shared_group_id and updated[0].shared_group_id == updated[1].shared_group_id


def test_status_change_spreads_to_siblings(store, make_session):
    a, _ = add_shared(store, make_session)

    store.set_status(a.id, SessionStatus.OFF)

    assert all(s.status == SessionStatus.OFF for s in store.sessions)


def test_restoring_a_cancelled_session_checks_its_slot(store, make_session):
    (lesson,) = store.add_session(make_session(subject_id="math", room_id="R1", period_count=3))
    store.set_status(lesson.id, SessionStatus.OFF)
    store.add_session(make_session(subject_id="net", teacher_id="t2", room_id="R2"))

    with pytest.raises(SchedulingError):
        store.set_status(lesson.id, SessionStatus.PENDING)

    assert store.get_session(lesson.id).status == SessionStatus.OFF


def test_delete_cascades_unless_asked_not_to(store, make_session):
    a, b = add_shared(store, make_session)

    assert store.delete_session(a.id, cascade=False) == [a]
    assert store.sessions == [b]

    # Adding A back makes it rejoin the lecture of B
    (again,) = store.add_session(make_session(class_id="A"))
    assert again.shared_group_id == b.shared_group_id
    assert len(store.delete_session(b.id)) == 2


def test_delete_whole_shared_lecture(store, make_session):
    a, _ = add_shared(store, make_session)

    assert len(store.delete_session(a.id)) == 2
    assert store.sessions == []


def test_copy_shared_lecture(store, make_session):
    a, _ = add_shared(store, make_session)
    target = date(2025, 3, 12)

    copies = store.copy_session(a.id, target, 6)

    assert [c.class_id for c in copies] == ["A", "B"]
    assert all(c.date == target and c.start_period == 6 for c in copies)
    assert copies[0].shared_group_id == copies[1].shared_group_id != a.shared_group_id
    assert len(store.sessions) == 4


def test_copy_skips_busy_classes(store, make_session):
    a, _ = add_shared(store, make_session)
    target = date(2025, 3, 12)
    store.add_session(make_session(class_id="B", subject_id="math", teacher_id="t2", room_id="R5", day=target))

    copies = store.copy_session(a.id, target, 1)

    assert [c.class_id for c in copies] == ["A"]


def test_copy_to_holiday(store, make_session):
    (lesson,) = store.add_session(make_session(subject_id="math"))
    store.add_holiday("Tết", date(2025, 2, 1), date(2025, 2, 5))

    with pytest.raises(SchedulingError):
        store.copy_session(lesson.id, date(2025, 2, 2), 1)


def test_continue_next_week_with_warning(store, make_session):
    store.add_session(make_session(subject_id="math", room_id="R1", period_count=3))

    report = store.continue_next_week("A", DAY)

    assert [(s.date, s.period_count) for s in report.added] == [(date(2025, 3, 17), 3)]
    assert len(report.warnings) == 1
    assert "3" in report.warnings[0]


def test_continue_next_week_trims_to_remaining(store, make_session):
    store.add_session(make_session(subject_id="math", room_id="R1", period_count=4))
    store.add_session(
        make_session(subject_id="math", room_id="R1", period_count=4, day=date(2025, 3, 12))
    )

    report = store.continue_next_week("A", DAY)

    # 8 of 9 periods learned: one period left for the first copy, none for the second
    assert [(s.date, s.period_count) for s in report.added] == [(date(2025, 3, 17), 1)]


def test_continue_next_week_skips_holidays_exams_and_cancellations(store, make_session):
    store.add_session(make_session(subject_id="net", teacher_id="t2", room_id="R2"))
    store.add_session(
        make_session(subject_id="phy", type=SessionType.EXAM, day=date(2025, 3, 11))
    )
    (off,) = store.add_session(make_session(subject_id="eng", day=date(2025, 3, 12)))
    store.set_status(off.id, SessionStatus.OFF)
    store.add_holiday("Nghỉ", date(2025, 3, 17), date(2025, 3, 17))

    report = store.continue_next_week("A", DAY)

    assert report.added == []
    assert len(report.warnings) == 1
    assert "Nghỉ" in report.warnings[0]


def test_continue_next_week_copies_shared_lectures(store, make_session):
    a, _ = add_shared(store, make_session)

    report = store.continue_next_week("A", DAY)

    assert [s.class_id for s in report.added] == ["A", "B"]
    group_ids = {s.shared_group_id for s in report.added}
    assert len(group_ids) == 1 and a.shared_group_id not in group_ids


def test_completion_markers(store, make_session):
    assert not store.is_finished("math", "A")

    store.set_subject_override("math", "A", StatusOverride.COMPLETED)
    assert store.is_finished("math", "A")

    store.set_subject_override("math", "A", None)
    store.mark_paid("math", "A")
    assert store.is_finished("math", "A")

    store.reset()
    assert store.statuses() == {}


def test_completion_markers_need_known_entities(store):
    with pytest.raises(EntityNotFound):
        store.mark_manually_completed("math", "Z")


def test_progress_uses_evening_total(store, make_session):
    store.add_session(make_session(class_id="E", subject_id="net", period_count=3))

    progress = store.progress("net", "E")

    assert (progress.learned, progress.total, progress.remaining) == (3, 30, 27)


def test_sequence(store, make_session):
    (first,) = store.add_session(make_session(subject_id="math", period_count=3))
    (second,) = store.add_session(make_session(subject_id="math", period_count=3, day=date(2025, 3, 11)))

    assert store.sequence(second.id).cumulative == 6
    assert store.sequence(first.id).is_first


def test_teacher_suggestions(store, make_session):
    suggested, others = store.suggest_teachers("net")

    assert [t.id for t in suggested] == ["t2"]
    assert [t.id for t in others] == ["t1", "t3"]
    assert store.suggest_teachers("math") == ([], store.teachers)

    store.add_session(make_session(subject_id="net", teacher_id="t3", room_id="R2"))
    assert store.last_teacher_for("net", "A") == "t3"
    assert store.last_teacher_for("net", "B") is None


def test_entity_crud(store):
    teacher = store.add_teacher("Phạm Văn Dũng")
    assert store.update_teacher(teacher.id, title="TS.").title == "TS."
    assert store.delete_teacher(teacher.id).id == teacher.id

    with pytest.raises(EntityNotFound):
        store.get_teacher(teacher.id)


def test_holiday_dates_must_be_ordered(store):
    with pytest.raises(StoreError):
        store.add_holiday("Bad", date(2025, 2, 5), date(2025, 2, 1))

    holiday = store.add_holiday("Tết", date(2025, 2, 1), date(2025, 2, 5))
    with pytest.raises(StoreError):
        store.update_holiday(holiday.id, end_date=date(2025, 1, 1))
    assert store.holiday_on(date(2025, 2, 2)) == holiday


def test_save_and_load(store, make_session, tmp_path):
    add_shared(store, make_session)
    store.add_holiday("Tết", date(2025, 2, 1), date(2025, 2, 5))
    store.mark_paid("math", "A")
    path = tmp_path / "nested" / "data.json"

    store.save(path)
    loaded = EntityStore.load(path)

    assert loaded.sessions == store.sessions
    assert loaded.subjects == store.subjects
    assert loaded.classes == store.classes
    assert loaded.teachers == store.teachers
    assert loaded.holidays == store.holidays
    assert loaded.statuses() == store.statuses()


def test_load_missing_file(tmp_path):
    store = EntityStore.load(tmp_path / "missing.json")

    assert store.sessions == [] and store.statuses() == {}


def test_legacy_completion_keys_are_migrated(store):
    data = store.to_json()
    data["subject_progress_metadata"] = {"math-A": {"statusOverride": "completed"}}
    data["paid_completed_subjects"] = ["net-A"]
    data["manual_completed_subjects"] = ["phy-B", "gone-A"]

    loaded = EntityStore.from_json(data)

    assert loaded.is_finished("math", "A")
    assert loaded.statuses()[("net", "A")].paid
    assert loaded.statuses()[("phy", "B")].manually_completed
    assert len(loaded.statuses()) == 3


def test_legacy_campus_labels_fall_back_to_the_class_name(teachers, subjects, make_session):
    loaded = EntityStore.from_json(
        {
            "classes": [
                {"id": "N", "name": "25DC2A", "majorId": "it", "campus": "Cơ sở 1"},
                {"id": "O", "name": "24XX01", "majorId": "it", "campus": "Cơ sở 1"},
                {"id": "P", "name": "Class P", "majorId": "it", "campus": 2},
            ]
        }
    )

    assert [c.campus for c in loaded.classes] == [None, None, 2]

    # 25DC2A is on campus 2 and 24XX01 on campus 1, so the room names do not clash
    store = EntityStore(teachers=teachers, subjects=subjects, classes=loaded.classes)
    store.add_session(make_session(class_id="N", subject_id="phy", room_id="Lab"))
    store.add_session(make_session(class_id="O", subject_id="phy", teacher_id="t2", room_id="Lab"))

    assert len(store.sessions) == 2
