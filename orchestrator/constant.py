from enum import Enum


class Verdict(str, Enum):
    ACCEPTED = 'ACCEPTED'
    WRONG_ANSWER = 'WRONG_ANSWER'
    COMPILE_ERROR = 'COMPILE_ERROR'
    RUNTIME_ERROR = 'RUNTIME_ERROR'
    TIME_LIMIT_EXCEEDED = 'TIME_LIMIT_EXCEEDED'
    MEMORY_LIMIT_EXCEEDED = 'MEMORY_LIMIT_EXCEEDED'
    FILE_ERROR = 'FILE_ERROR'
    LANGUAGE_NOT_SUPPORTED = 'LANGUAGE_NOT_SUPPORTED'
    INTERNAL_ERROR = 'INTERNAL_ERROR'


class OverallStatus(str, Enum):
    ACCEPTED = 'Accepted'
    COMPLETED_WITH_ISSUES = 'CompletedWithIssues'
    COMPLETED = 'Completed'
    COMPILE_ERROR = 'CompileError'
    FAILED = 'Failed'


class JobState(str, Enum):
    PROVISIONING = 'PROVISIONING'
    STARTING = 'STARTING'
    HEALTH_CHECKING = 'HEALTH_CHECKING'
    DISPATCHED = 'DISPATCHED'
    COMPLETED = 'COMPLETED'
    TIMED_OUT = 'TIMED_OUT'
    SETUP_FAILED = 'SETUP_FAILED'
    ABORTED = 'ABORTED'
