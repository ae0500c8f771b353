"""Aggregate status of a submission from its corrections.

Mirrors the poller's short-circuit rule so listings and the grading jobs
agree on what "done" means: accepted is the bottom element, any other
terminal status beats it, and between two failures the one with the lowest
test case id wins.
"""

from __future__ import annotations

from typing import Iterable

from classjudge.features.statuses.dictionary import JudgeStatus, is_failure, is_pending


def aggregate(submission, corrections: Iterable) -> JudgeStatus:
    ordered = sorted(corrections, key=lambda c: c.test_case_id)
    if not ordered:
        return JudgeStatus(submission.status_id)
    for correction in ordered:
        status = JudgeStatus(correction.status_id)
        if is_failure(status):
            return status
    if any(is_pending(JudgeStatus(c.status_id)) for c in ordered):
        # Not every verdict is in; the poller has not settled this one yet
        return JudgeStatus(submission.status_id)
    return JudgeStatus.ACCEPTED


__all__ = ["aggregate"]
