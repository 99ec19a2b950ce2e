# Persisted date format (ISO calendar date)
DATE_FORMAT = "YYYY-MM-DD"
DATE_FORMATS = ["YYYY-MM-DD", "YYYY-M-D"]

# Period boundaries: 1-5 morning, 6-10 afternoon, 11-14 evening
FIRST_PERIOD = 1
LAST_MORNING_PERIOD = 5
LAST_AFTERNOON_PERIOD = 10
LAST_PERIOD = 14

# Pseudo-majors
MAJOR_COMMON = "common"
MAJOR_CULTURE = "culture"
MAJOR_CULTURE_EXTENDED = "culture_8"
PSEUDO_MAJORS = frozenset({MAJOR_COMMON, MAJOR_CULTURE, MAJOR_CULTURE_EXTENDED})

# Marker in class names for the 8-subject culture programme
CULTURE_EXTENDED_CLASS_MARKER = "H8"

# Warn when a subject has this many periods or fewer left after a copy
NEAR_END_THRESHOLD = 4

# Exams whose note contains this count towards teaching load
PRACTICAL_EXAM_MARKER = "thực hành"

# Responsible teacher hints per subject
MAX_RESPONSIBLE_TEACHERS = 3
