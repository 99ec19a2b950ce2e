import json
from dataclasses import replace
from datetime import date
from pathlib import Path
from typing import Any, Callable, ParamSpec, TypeVar

import arrow
import click
from arrow.parser import ParserError
from rich.table import Table
from rich.console import Console

from .i18n import _
from .logger import log, set_verbose
from .modules.completion import available_subjects
from .modules.constants import DATE_FORMATS, FIRST_PERIOD, LAST_PERIOD
from .modules.dates import (
    determine_status,
    resolve_campus,
    session_label_from_period,
    today,
    week_start,
)
from .modules.linker import is_shared_subject, shareable_classes
from .modules.models import ClassShift, Session, SessionStatus, SessionType, StatusOverride
from .stats import class_progress, missed_sessions, teacher_load
from .store import EntityStore, SchedulingError, StoreError

# Default store location
APP_NAME = "edu-schedule"
DEFAULT_STORE = Path(click.get_app_dir(APP_NAME)) / "data.json"

# Define generic params and return type
P = ParamSpec("P")
R = TypeVar("R")

# Prepare rich console
console = Console()

PERIOD = click.IntRange(FIRST_PERIOD, LAST_PERIOD)


# Calendar dates parsed with arrow, strictly (no fallback to today)
class DateParamType(click.ParamType):
    name = "date"

    def __init__(self, formats: list[str]) -> None:
        self.formats = formats

    def convert(
        self, value: Any, param: click.Parameter | None, ctx: click.Context | None
    ) -> date:
        if isinstance(value, date):
            return value

        try:
            return arrow.get(str(value).strip(), self.formats).date()
        except (ParserError, ValueError):
            self.fail(
                _("%(value)r is not a date (expected %(formats)s)")
                % {"value": value, "formats": " or ".join(self.formats)},
                param,
                ctx,
            )


DATE = DateParamType([*DATE_FORMATS, "DD/MM/YYYY"])


# Candidate session options decorator
def session_options(f: Callable[P, R]) -> Callable[P, R]:
    f = click.option("--note", help=_("Free-text note."))(f)
    f = click.option("--group", help=_("Sub-class group, e.g. a practical group."))(f)
    f = click.option(
        "--type",
        "session_type",
        type=click.Choice([t.value for t in SessionType]),
        default=SessionType.CLASS.value,
        show_default=True,
    )(f)
    f = click.option(
        "--period-count", type=PERIOD, default=3, show_default=True, help=_("Number of periods.")
    )(f)
    f = click.option("--start-period", type=PERIOD, required=True, help=_("First period (1-14)."))(f)
    f = click.option("--date", "day", type=DATE, required=True, help=_("Session date."))(f)
    f = click.option("--room", required=True, help=_("Room label."))(f)
    f = click.option(
        "--teacher-id",
        help=_("Teacher. An exam defaults to the teacher of the last lesson of the subject."),
    )(f)
    f = click.option("--subject-id", required=True)(f)
    f = click.option(
        "--class-id",
        "class_ids",
        multiple=True,
        required=True,
        help=_("Class attending. Repeat for a shared session."),
    )(f)
    return f


def build_candidate(
    class_ids: tuple[str, ...],
    subject_id: str,
    teacher_id: str,
    room: str,
    day: date,
    start_period: int,
    period_count: int,
    session_type: str,
    group: str | None,
    note: str | None,
) -> Session:
    return Session(
        type=SessionType(session_type),
        teacher_id=teacher_id,
        subject_id=subject_id,
        class_id=class_ids[0],
        room_id=room,
        date=day,
        start_period=start_period,
        period_count=period_count,
        group=group,
        note=note,
    )


def resolve_teacher(
    store: EntityStore, class_ids: tuple[str, ...], fields: dict[str, Any]
) -> None:
    """Fill in the teacher of an exam from the last lesson of its subject."""
    if fields["teacher_id"]:
        return

    if fields["session_type"] == SessionType.EXAM.value:
        teacher_id = store.last_teacher_for(fields["subject_id"], class_ids[0])
        if teacher_id is not None:
            log.info(
                _("Using %(teacher)s, who taught the last lesson")
                % {"teacher": _name(store.teachers, teacher_id)}
            )
            fields["teacher_id"] = teacher_id
            return

    raise click.BadOptionUsage("teacher_id", _("Missing option '--teacher-id'."))


def get_store(ctx: click.Context) -> EntityStore:
    return ctx.obj["store"]


def save_store(ctx: click.Context) -> None:
    get_store(ctx).save(ctx.obj["path"])


def _name(items: list, id_: str) -> str:
    return next((str(item.name) for item in items if item.id == id_), id_)


def _class_names(store: EntityStore, sessions: list[Session]) -> str:
    return ", ".join(_name(store.classes, s.class_id) for s in sessions)


def print_sessions(store: EntityStore, sessions: list[Session], title: str) -> None:
    table = Table(title=title)
    table.add_column(_("ID"))
    table.add_column(_("Date"))
    table.add_column(_("Shift"))
    table.add_column(_("Periods"), justify="right")
    table.add_column(_("Subject"))
    table.add_column(_("Class"))
    table.add_column(_("Teacher"))
    table.add_column(_("Room"))
    table.add_column(_("Group"))
    table.add_column(_("Progress"), justify="right")
    table.add_column(_("Status"))

    for s in sessions:
        info = store.sequence(s.id)
        marker = ""
        if info.is_first:
            marker += " ▶"
        if info.is_last:
            marker += " ■"
        progress = f"{info.cumulative}{marker}" if info.cumulative else "-"
        table.add_row(
            s.id,
            s.date.strftime("%d/%m/%Y"),
            session_label_from_period(s.start_period).value,
            f"{s.start_period}-{s.end_period - 1}",
            _name(store.subjects, s.subject_id),
            _name(store.classes, s.class_id),
            _name(store.teachers, s.teacher_id),
            s.room_id,
            s.group or "-",
            progress,
            determine_status(s.date, s.status).value,
        )

    console.print(table)


def log_rejection(store: EntityStore, error: SchedulingError) -> None:
    if error.class_id is None:
        log.error(error.result.message)
        return
    log.error(
        _("Class %(class_name)s: %(message)s")
        % {"class_name": _name(store.classes, error.class_id), "message": error.result.message}
    )


def confirm_shared(members: list[Session], store: EntityStore, action: str, yes: bool) -> None:
    """Ask before an action spreads to every class of a shared lecture."""
    if yes or len(members) <= 1:
        return
    click.confirm(
        _("This is a shared session of %(count)d classes (%(classes)s). %(action)s all of them?")
        % {"count": len(members), "classes": _class_names(store, members), "action": action},
        abort=True,
    )


def hint_shareable(store: EntityStore, subject_id: str, class_id: str) -> None:
    subject = next((s for s in store.subjects if s.id == subject_id), None)
    school_class = next((c for c in store.classes if c.id == class_id), None)
    if subject is None or school_class is None or not is_shared_subject(subject, store.classes):
        return

    others = shareable_classes(subject, school_class, store.classes)[1:]
    if others:
        log.info(
            _("%(subject)s can be shared with: %(classes)s")
            % {"subject": subject.name, "classes": ", ".join(c.name for c in others)}
        )


@click.group()
@click.option(
    "--store",
    "store_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="EDU_SCHEDULE_STORE",
    default=DEFAULT_STORE,
    show_default=True,
    help=_("JSON file holding the schedule data."),
)
@click.option("--verbose", is_flag=True, help=_("Show debug logs."))
@click.pass_context
def cli(ctx: click.Context, store_path: Path, verbose: bool) -> None:
    set_verbose(verbose)

    try:
        store = EntityStore.load(store_path)
    except (OSError, json.JSONDecodeError, KeyError, ValueError):
        log.exception(_("Cannot read the store at %(path)s") % {"path": store_path})
        ctx.exit(1)

    ctx.ensure_object(dict)
    ctx.obj["path"] = store_path
    ctx.obj["store"] = store


@cli.command(help=_("Check whether a session can be placed."))
@session_options
@click.pass_context
def check(ctx: click.Context, class_ids: tuple[str, ...], **fields: Any) -> None:
    store = get_store(ctx)
    resolve_teacher(store, class_ids, fields)
    candidate = build_candidate(class_ids, **fields)
    try:
        store.validate_periods(candidate)
    except StoreError as e:
        log.error(str(e))
        ctx.exit(1)

    clashes = 0
    for class_id in dict.fromkeys(class_ids):
        result = store.check_placement(
            replace(candidate, class_id=class_id), shared_class_ids=class_ids
        )
        class_name = _name(store.classes, class_id)
        if result.has_conflict:
            clashes += 1
            console.print(f"[bold red]CONFLICT[/bold red] {class_name}: {result.message}")
        else:
            console.print(f"[bold green]OK[/bold green] {class_name}")

    if clashes:
        ctx.exit(1)

    if len(class_ids) == 1:
        hint_shareable(store, candidate.subject_id, class_ids[0])


@cli.command(help=_("Add a session, or a shared session for several classes."))
@session_options
@click.option("--makeup", is_flag=True, help=_("Mark the session as a makeup session."))
@click.pass_context
def add(ctx: click.Context, class_ids: tuple[str, ...], makeup: bool, **fields: Any) -> None:
    store = get_store(ctx)
    resolve_teacher(store, class_ids, fields)
    candidate = build_candidate(class_ids, **fields)
    status = SessionStatus.MAKEUP if makeup else SessionStatus.PENDING

    try:
        created = store.add_session(candidate, class_ids, status=status)
    except SchedulingError as e:
        log_rejection(store, e)
        ctx.exit(1)
    except StoreError as e:
        log.error(str(e))
        ctx.exit(1)

    save_store(ctx)
    log.info(_("Added %(count)d sessions") % {"count": len(created)})
    print_sessions(store, created, _("Added sessions"))


@cli.command(help=_("Move or reassign a session and its shared siblings."))
@click.argument("session_id")
@click.option("--date", "day", type=DATE)
@click.option("--start-period", type=PERIOD)
@click.option("--period-count", type=PERIOD)
@click.option("--room")
@click.option("--teacher-id")
@click.option("--yes", is_flag=True, help=_("Do not ask for confirmation."))
@click.pass_context
def move(
    ctx: click.Context,
    session_id: str,
    day: date | None,
    start_period: int | None,
    period_count: int | None,
    room: str | None,
    teacher_id: str | None,
    yes: bool,
) -> None:
    store = get_store(ctx)
    changes = {
        "date": day,
        "start_period": start_period,
        "period_count": period_count,
        "room_id": room,
        "teacher_id": teacher_id,
    }
    changes = {k: v for k, v in changes.items() if v is not None}
    if not changes:
        log.warning(_("Nothing to change"))
        return

    try:
        confirm_shared(store.related(session_id), store, _("Update"), yes)
        updated = store.update_session(session_id, **changes)
    except SchedulingError as e:
        log_rejection(store, e)
        ctx.exit(1)
    except StoreError as e:
        log.error(str(e))
        ctx.exit(1)

    save_store(ctx)
    print_sessions(store, updated, _("Updated sessions"))


@cli.command("set-status", help=_("Change the status of a session and its shared siblings."))
@click.argument("session_id")
@click.argument("status", type=click.Choice([s.value for s in SessionStatus]))
@click.pass_context
def set_status(ctx: click.Context, session_id: str, status: str) -> None:
    store = get_store(ctx)
    try:
        updated = store.set_status(session_id, SessionStatus(status))
    except (SchedulingError, StoreError) as e:
        log.error(str(e))
        ctx.exit(1)

    save_store(ctx)
    log.info(_("Updated %(count)d sessions") % {"count": len(updated)})


@cli.command(help=_("Delete a session and its shared siblings."))
@click.argument("session_id")
@click.option("--only", is_flag=True, help=_("Delete this class's session only."))
@click.option("--yes", is_flag=True, help=_("Do not ask for confirmation."))
@click.pass_context
def delete(ctx: click.Context, session_id: str, only: bool, yes: bool) -> None:
    store = get_store(ctx)
    try:
        members = store.related(session_id)
        if not only:
            confirm_shared(members, store, _("Delete"), yes)
        deleted = store.delete_session(session_id, cascade=not only)
    except StoreError as e:
        log.error(str(e))
        ctx.exit(1)

    save_store(ctx)
    log.info(_("Deleted %(count)d sessions") % {"count": len(deleted)})


@cli.command(help=_("Copy a session (and its shared siblings) to another slot."))
@click.argument("session_id")
@click.option("--date", "day", type=DATE, required=True)
@click.option("--start-period", type=PERIOD, required=True)
@click.pass_context
def copy(ctx: click.Context, session_id: str, day: date, start_period: int) -> None:
    store = get_store(ctx)
    try:
        copies = store.copy_session(session_id, day, start_period)
    except StoreError as e:
        log.error(str(e))
        ctx.exit(1)

    if not copies:
        log.error(_("Cannot copy: every class is busy at that time"))
        ctx.exit(1)

    save_store(ctx)
    print_sessions(store, copies, _("Copied sessions"))


@cli.command("continue-week", help=_("Copy a class's week to the next week."))
@click.option("--class-id", required=True)
@click.option("--week", type=DATE, help=_("Any date in the week to copy. Defaults to this week."))
@click.pass_context
def continue_week(ctx: click.Context, class_id: str, week: date | None) -> None:
    store = get_store(ctx)
    try:
        report = store.continue_next_week(class_id, week or today())
    except StoreError as e:
        log.error(str(e))
        ctx.exit(1)

    save_store(ctx)
    log.info(_("Copied %(count)d sessions to next week") % {"count": len(report.added)})
    for warning in report.warnings:
        log.warning(warning)


@cli.command(help=_("View the sessions of a class for a week."))
@click.option("--class-id", required=True)
@click.option("--week", type=DATE, help=_("Any date in the week. Defaults to this week."))
@click.pass_context
def sessions(ctx: click.Context, class_id: str, week: date | None) -> None:
    store = get_store(ctx)
    start = week_start(week or today())
    end = arrow.get(start).shift(days=6).date()
    items = store.sessions_for_class(class_id, start, end)

    log.info(_("Found %(count)d sessions - Displaying the table:") % {"count": len(items)})
    print_sessions(
        store,
        items,
        _("Sessions of %(class_name)s (%(start)s - %(end)s)")
        % {
            "class_name": _name(store.classes, class_id),
            "start": start.strftime("%d/%m/%Y"),
            "end": end.strftime("%d/%m/%Y"),
        },
    )


@cli.command(help=_("View subject progress for a class."))
@click.option("--class-id", required=True)
@click.option("--group")
@click.pass_context
def progress(ctx: click.Context, class_id: str, group: str | None) -> None:
    store = get_store(ctx)
    try:
        school_class = store.get_class(class_id)
    except StoreError as e:
        log.error(str(e))
        ctx.exit(1)

    rows = class_progress(school_class, store.subjects, store.sessions, store.statuses(), group)

    table = Table(title=_("Progress of %(class_name)s") % {"class_name": school_class.name})
    table.add_column(_("Subject"))
    table.add_column(_("Learned"), justify="right")
    table.add_column(_("Total"), justify="right")
    table.add_column(_("%"), justify="right")
    table.add_column(_("Remaining"), justify="right")
    table.add_column(_("Finished"), justify="center", style="green")

    for row in rows:
        table.add_row(
            row.subject.name,
            str(row.progress.learned),
            str(row.progress.total),
            str(row.progress.percentage),
            str(row.progress.remaining),
            "✓" if row.finished else "",
        )

    console.print(table)


@cli.command(help=_("List the subjects a new session for a class may use."))
@click.option("--class-id", required=True)
@click.option(
    "--type",
    "session_type",
    type=click.Choice([t.value for t in SessionType]),
    default=SessionType.CLASS.value,
)
@click.pass_context
def subjects(ctx: click.Context, class_id: str, session_type: str) -> None:
    store = get_store(ctx)
    try:
        school_class = store.get_class(class_id)
    except StoreError as e:
        log.error(str(e))
        ctx.exit(1)

    offered = available_subjects(
        school_class, store.subjects, store.sessions, SessionType(session_type), store.statuses()
    )

    table = Table(title=_("Available subjects"))
    table.add_column(_("ID"))
    table.add_column(_("Name"))
    table.add_column(_("Suggested teachers"))
    for subject in offered:
        suggested, _others = store.suggest_teachers(subject.id)
        table.add_row(subject.id, subject.name, ", ".join(t.name for t in suggested) or "-")

    console.print(table)


@cli.command(help=_("List the classes that may attend a shared session with a class."))
@click.option("--class-id", required=True)
@click.option("--subject-id", required=True)
@click.pass_context
def shareable(ctx: click.Context, class_id: str, subject_id: str) -> None:
    store = get_store(ctx)
    try:
        school_class = store.get_class(class_id)
        subject = store.get_subject(subject_id)
    except StoreError as e:
        log.error(str(e))
        ctx.exit(1)

    if not is_shared_subject(subject, store.classes):
        log.warning(_("%(subject)s is not a shared subject") % {"subject": subject.name})

    table = Table(title=_("Classes for %(subject)s") % {"subject": subject.name})
    table.add_column(_("ID"))
    table.add_column(_("Name"))
    table.add_column(_("Major"))
    table.add_column(_("Campus"), justify="right")
    table.add_column(_("Shift"))
    for c in shareable_classes(subject, school_class, store.classes):
        table.add_row(c.id, c.name, c.major_id, str(resolve_campus(c) or "-"), c.shift.value)

    console.print(table)


@cli.command("mark-subject", help=_("Override whether a subject is finished for a class."))
@click.argument("subject_id")
@click.argument("class_id")
@click.argument("state", type=click.Choice([*(o.value for o in StatusOverride), "auto"]))
@click.pass_context
def mark_subject(ctx: click.Context, subject_id: str, class_id: str, state: str) -> None:
    store = get_store(ctx)
    override = None if state == "auto" else StatusOverride(state)
    try:
        store.set_subject_override(subject_id, class_id, override)
    except StoreError as e:
        log.error(str(e))
        ctx.exit(1)

    save_store(ctx)
    finished = store.is_finished(subject_id, class_id)
    log.info(_("Finished: %(finished)s") % {"finished": finished})


@cli.command(help=_("List holidays."))
@click.pass_context
def holidays(ctx: click.Context) -> None:
    store = get_store(ctx)

    table = Table(title=_("Holidays"))
    table.add_column(_("ID"))
    table.add_column(_("Name"))
    table.add_column(_("From"))
    table.add_column(_("To"))
    for h in sorted(store.holidays, key=lambda h: h.start_date):
        table.add_row(h.id, h.name, h.start_date.strftime("%d/%m/%Y"), h.end_date.strftime("%d/%m/%Y"))

    console.print(table)


@cli.command("add-holiday", help=_("Add a holiday range (inclusive)."))
@click.argument("name")
@click.argument("start", type=DATE)
@click.argument("end", type=DATE)
@click.pass_context
def add_holiday(ctx: click.Context, name: str, start: date, end: date) -> None:
    store = get_store(ctx)
    try:
        holiday = store.add_holiday(name, start, end)
    except StoreError as e:
        log.error(str(e))
        ctx.exit(1)

    save_store(ctx)
    console.print(f"[bold green]SUCCESS[/bold green] {holiday.id}")


@cli.command("add-teacher", help=_("Add a teacher."))
@click.argument("name")
@click.option("--title")
@click.pass_context
def add_teacher(ctx: click.Context, name: str, title: str | None) -> None:
    teacher = get_store(ctx).add_teacher(name, title)
    save_store(ctx)
    console.print(f"[bold green]SUCCESS[/bold green] {teacher.id}")


@cli.command("add-subject", help=_("Add a subject."))
@click.argument("name")
@click.option("--major-id", required=True, help=_("Major id, or common/culture/culture_8."))
@click.option("--total-periods", type=int, required=True)
@click.option("--total-periods-evening", type=int)
@click.option("--shared", is_flag=True, help=_("Co-taught across classes."))
@click.option("--teacher", "responsible", multiple=True, help=_("Responsible teacher name (max 3)."))
@click.pass_context
def add_subject(
    ctx: click.Context,
    name: str,
    major_id: str,
    total_periods: int,
    total_periods_evening: int | None,
    shared: bool,
    responsible: tuple[str, ...],
) -> None:
    subject = get_store(ctx).add_subject(
        name,
        major_id,
        total_periods,
        total_periods_evening=total_periods_evening,
        is_shared=shared,
        responsible_teachers=list(responsible[:3]),
    )
    save_store(ctx)
    console.print(f"[bold green]SUCCESS[/bold green] {subject.id}")


@cli.command("add-class", help=_("Add a class."))
@click.argument("name")
@click.option("--major-id", required=True)
@click.option("--evening", is_flag=True, help=_("Evening shift."))
@click.option("--campus", type=int, help=_("Campus number. Derived from the name if omitted."))
@click.pass_context
def add_class(ctx: click.Context, name: str, major_id: str, evening: bool, campus: int | None) -> None:
    school_class = get_store(ctx).add_class(
        name, major_id, shift=ClassShift.EVENING if evening else ClassShift.DAY, campus=campus
    )
    save_store(ctx)
    console.print(f"[bold green]SUCCESS[/bold green] {school_class.id}")


@cli.command(help=_("List cancelled sessions that still need a makeup."))
@click.pass_context
def missed(ctx: click.Context) -> None:
    store = get_store(ctx)
    items = missed_sessions(store.sessions, store.subjects, store.classes, store.statuses())
    log.info(_("Found %(count)d sessions needing a makeup") % {"count": len(items)})
    print_sessions(store, items, _("Sessions needing a makeup"))


@cli.command("teacher-load", help=_("Show active and taught periods per teacher."))
@click.pass_context
def teacher_load_command(ctx: click.Context) -> None:
    store = get_store(ctx)
    loads = teacher_load(
        store.teachers, store.sessions, store.subjects, store.classes, store.statuses()
    )

    table = Table(title=_("Teacher load"))
    table.add_column(_("Teacher"))
    table.add_column(_("Active periods"), justify="right")
    table.add_column(_("Taught periods"), justify="right")
    for load in loads:
        table.add_row(str(load.teacher), str(load.active_periods), str(load.taught_periods))

    console.print(table)


if __name__ == "__main__":
    cli()
