from datetime import date

from edu_schedule.modules.completion import is_subject_finished
from edu_schedule.modules.models import Progress, SequenceInfo, SessionStatus, SessionType
from edu_schedule.modules.progress import session_sequence_info, subject_progress


def three_lessons(make_session):
    return [
        make_session(subject_id="math", day=date(2025, 3, d), period_count=3, id=f"s{d}")
        for d in (10, 11, 12)
    ]


def test_full_run_of_a_subject(make_session, subjects, classes):
    sessions = three_lessons(make_session)
    math = next(s for s in subjects if s.id == "math")
    class_a = next(c for c in classes if c.id == "A")

    assert subject_progress("math", "A", 9, sessions) == Progress(9, 9, 100, 0)
    assert session_sequence_info(sessions[0], sessions, 9) == SequenceInfo(3, True, False)
    assert session_sequence_info(sessions[1], sessions, 9) == SequenceInfo(6, False, False)
    assert session_sequence_info(sessions[2], sessions, 9) == SequenceInfo(9, False, True)
    assert is_subject_finished(math, class_a, sessions)


def test_sequence_follows_dates_not_insertion_order(make_session):
    sessions = list(reversed(three_lessons(make_session)))

    assert session_sequence_info(sessions[-1], sessions, 9) == SequenceInfo(3, True, False)


def test_learned_grows_and_remaining_stays_positive(make_session):
    sessions = []
    learned = []
    for d in range(10, 15):
        sessions.append(make_session(subject_id="math", day=date(2025, 3, d), period_count=3))
        learned.append(subject_progress("math", "A", 9, sessions).learned)

    assert learned == [3, 6, 9, 12, 15]
    progress = subject_progress("math", "A", 9, sessions)
    assert progress.remaining == 0
    assert progress.percentage == 100


def test_cancelled_and_foreign_sessions_do_not_count(make_session):
    sessions = [
        make_session(subject_id="math", period_count=3),
        make_session(subject_id="math", period_count=3, status=SessionStatus.OFF),
        make_session(subject_id="math", class_id="B", period_count=3),
        make_session(subject_id="net", period_count=3),
    ]

    assert subject_progress("math", "A", 9, sessions) == Progress(3, 9, 33, 6)


def test_percentage_rounds_half_up(make_session):
    def percentage(learned, total):
        session = make_session(subject_id="math", period_count=learned)
        return subject_progress("math", "A", total, [session]).percentage

    assert percentage(1, 3) == 33
    assert percentage(2, 3) == 67
    assert percentage(1, 8) == 13
    assert percentage(3, 8) == 38


def test_zero_total(make_session):
    assert subject_progress("math", "A", 0, []).percentage == 0
    assert subject_progress("math", "A", 0, [make_session(subject_id="math")]).percentage == 100


def test_group_progress_includes_whole_class_sessions(make_session):
    sessions = [
        make_session(subject_id="net", period_count=2),
        make_session(subject_id="net", period_count=3, group="N1", day=date(2025, 3, 11)),
    ]

    assert subject_progress("net", "A", 45, sessions).learned == 2
    assert subject_progress("net", "A", 45, sessions, group="N1").learned == 5
    assert subject_progress("net", "A", 45, sessions, group="N2").learned == 2


def test_sequence_ignores_exams_cancellations_and_other_groups(make_session):
    lesson = make_session(subject_id="net", period_count=3, id="lesson")
    exam = make_session(
        subject_id="net", type=SessionType.EXAM, day=date(2025, 3, 11), id="exam"
    )
    off = make_session(
        subject_id="net", status=SessionStatus.OFF, day=date(2025, 3, 12), id="off"
    )
    other_group = make_session(subject_id="net", group="N2", day=date(2025, 3, 9), id="n2")
    sessions = [lesson, exam, off, other_group]

    assert session_sequence_info(lesson, sessions, 45) == SequenceInfo(3, True, False)
    assert session_sequence_info(exam, sessions, 45) == SequenceInfo()
    assert session_sequence_info(off, sessions, 45) == SequenceInfo()


def test_sequence_without_total_never_marks_the_end(make_session):
    sessions = three_lessons(make_session)

    assert not session_sequence_info(sessions[2], sessions).is_last
