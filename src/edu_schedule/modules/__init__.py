from .models import (
    ClassShift,
    ConflictKind,
    ConflictResult,
    Holiday,
    Progress,
    SchoolClass,
    SequenceInfo,
    Session,
    SessionLabel,
    SessionStatus,
    SessionType,
    StatusOverride,
    Subject,
    SubjectCategory,
    SubjectClassStatus,
    Teacher,
)
from .dates import (
    effective_total_periods,
    is_holiday,
    parse_local_date,
    session_label_from_period,
)
from .conflicts import check_conflict
from .progress import session_sequence_info, subject_progress
from .completion import is_subject_finished
from .linker import related_sessions
