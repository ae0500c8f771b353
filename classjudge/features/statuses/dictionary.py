"""Judge status vocabulary.

Single source of truth for interpreting judge outcomes. The numeric values are
the Judge0 wire ids; everything past the Judge0 adapter works with
``JudgeStatus`` members, never raw integers.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Dict, List, NamedTuple

logger = logging.getLogger(__name__)


class JudgeStatus(enum.IntEnum):
    QUEUED = 1
    PROCESSING = 2
    ACCEPTED = 3
    WRONG_ANSWER = 4
    TIME_LIMIT_EXCEEDED = 5
    COMPILE_ERROR = 6
    RUNTIME_ERROR_SIGSEGV = 7
    RUNTIME_ERROR_SIGXFSZ = 8
    RUNTIME_ERROR_SIGFPE = 9
    RUNTIME_ERROR_SIGABRT = 10
    RUNTIME_ERROR_NZEC = 11
    RUNTIME_ERROR_OTHER = 12
    INTERNAL_ERROR = 13
    EXEC_FORMAT_ERROR = 14


class StatusInfo(NamedTuple):
    code: int
    name: str
    description: str


UNKNOWN_STATUS = StatusInfo(-1, "Unknown", "The judge reported a status this system does not recognise.")

_PENDING = frozenset({JudgeStatus.QUEUED, JudgeStatus.PROCESSING})

_DESCRIPTORS: Dict[JudgeStatus, tuple[str, str]] = {
    JudgeStatus.QUEUED: ("In Queue", "The submission is waiting for a judge worker."),
    JudgeStatus.PROCESSING: ("Processing", "The submission is being compiled and executed."),
    JudgeStatus.ACCEPTED: ("Accepted", "The program produced the expected output."),
    JudgeStatus.WRONG_ANSWER: ("Wrong Answer", "The program output differs from the expected output."),
    JudgeStatus.TIME_LIMIT_EXCEEDED: (
        "Time Limit Exceeded",
        "The program did not finish within the allowed time.",
    ),
    JudgeStatus.COMPILE_ERROR: ("Compilation Error", "The source code failed to compile."),
    JudgeStatus.RUNTIME_ERROR_SIGSEGV: (
        "Runtime Error (SIGSEGV)",
        "Segmentation fault: the program accessed invalid memory.",
    ),
    JudgeStatus.RUNTIME_ERROR_SIGXFSZ: (
        "Runtime Error (SIGXFSZ)",
        "The program exceeded the output size limit.",
    ),
    JudgeStatus.RUNTIME_ERROR_SIGFPE: (
        "Runtime Error (SIGFPE)",
        "Floating point exception, such as a division by zero.",
    ),
    JudgeStatus.RUNTIME_ERROR_SIGABRT: ("Runtime Error (SIGABRT)", "The program aborted."),
    JudgeStatus.RUNTIME_ERROR_NZEC: (
        "Runtime Error (NZEC)",
        "The program exited with a non-zero exit code.",
    ),
    JudgeStatus.RUNTIME_ERROR_OTHER: ("Runtime Error (Other)", "The program failed at runtime."),
    JudgeStatus.INTERNAL_ERROR: ("Internal Error", "The judge failed to evaluate the submission."),
    JudgeStatus.EXEC_FORMAT_ERROR: (
        "Exec Format Error",
        "The compiled program could not be executed.",
    ),
}


def lookup(code: Any) -> StatusInfo:
    """Return name and description for a status code.

    Never raises: anything outside the enumeration (including non-integers)
    resolves to ``UNKNOWN_STATUS`` since this is also consulted from error
    fallback paths.
    """
    if isinstance(code, bool):
        return UNKNOWN_STATUS
    try:
        status = JudgeStatus(int(code))
    except (TypeError, ValueError):
        return UNKNOWN_STATUS
    name, description = _DESCRIPTORS[status]
    return StatusInfo(int(status), name, description)


def from_wire(code: Any) -> JudgeStatus:
    """Translate a Judge0 status id into a ``JudgeStatus``.

    Unknown ids are treated as an internal judge error so stored statuses
    always stay inside the enumeration.
    """
    try:
        return JudgeStatus(int(code))
    except (TypeError, ValueError):
        logger.warning("judge.status.unknown code=%r mapped to INTERNAL_ERROR", code)
        return JudgeStatus.INTERNAL_ERROR


def is_pending(status: JudgeStatus) -> bool:
    return status in _PENDING


def is_terminal(status: JudgeStatus) -> bool:
    return status not in _PENDING


def is_failure(status: JudgeStatus) -> bool:
    """Terminal and not accepted."""
    return is_terminal(status) and status != JudgeStatus.ACCEPTED


def all_statuses() -> List[StatusInfo]:
    return [lookup(status) for status in JudgeStatus]


__all__ = [
    "JudgeStatus",
    "StatusInfo",
    "UNKNOWN_STATUS",
    "lookup",
    "from_wire",
    "is_pending",
    "is_terminal",
    "is_failure",
    "all_statuses",
]
