from enum import Enum


class JobState(str, Enum):
    IDLE = "idle"
    TRIGGERING = "triggering"
    POLLING = "polling"
    COMPLETE = "complete"
    FAILED = "failed"


class MatchStatus(str, Enum):
    MATCH = "MATCH"
    MISMATCH = "MISMATCH"
    NO_DATA = "NO_DATA"


class ErrorKind(str, Enum):
    TRANSPORT = "transport"
    PARSE = "parse"
    TIMEOUT = "timeout"


class ParseErrorReason(str, Enum):
    MISSING_OUTPUT_ARRAY = "missing-output-array"
    JSON_DECODE_FAILED = "json-decode-failed"
    EMPTY_SECTIONS = "empty-sections"
    UNREADABLE_SECTION = "unreadable-section"


class ResultSource(str, Enum):
    ANALYSIS = "analysis"
    DEMO = "demo"
    FALLBACK = "fallback"


class ConfidenceMode(str, Enum):
    FIXED = "fixed"
    COMPUTED = "computed"


ACTIVE_STATES = frozenset({JobState.TRIGGERING, JobState.POLLING})
TERMINAL_STATES = frozenset({JobState.COMPLETE, JobState.FAILED})
