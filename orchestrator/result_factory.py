"""
Factory functions for the normalized result sent to the backend.

This module provides consistent result structures for:
- Callback results (runner verdicts correlated to the submitted test cases)
- Synthesized results (compile error, setup failure, timeout, unsupported language)
"""

from typing import List, Optional, Sequence

from .constant import OverallStatus, Verdict
from .meta import (
    RunnerCallback,
    RunnerTestCaseResult,
    SolutionEvaluationResult,
    Submission,
    TestCase,
    TestCaseEvaluationResult,
)

COMPILE_ERROR_MESSAGE = 'Compilation failed (see compiler output).'
UNKNOWN_TEST_CASE = 'Unknown'


def make_case_result(
    test_case: TestCase,
    status: str,
    message: Optional[str] = None,
) -> TestCaseEvaluationResult:
    """
    Build a result for one submitted test case with no execution output.

    Args:
        test_case: The original test case
        status: Verdict string ("COMPILE_ERROR", "INTERNAL_ERROR", ...)
        message: Explanation shown to the user

    Returns:
        Test case result with null stdout/stderr
    """
    return TestCaseEvaluationResult(
        testCaseInputPath=test_case.inputFilePath,
        testCaseId=test_case.testCaseId,
        status=status,
        stdout=None,
        stderr=None,
        message=message,
        durationMs=None,
    )


def make_all_cases_result(
    submission: Submission,
    status: str,
    message: Optional[str] = None,
) -> List[TestCaseEvaluationResult]:
    """
    Build one result per submitted test case, all with the same status.
    """
    return [
        make_case_result(tc, status, message) for tc in submission.testCases
    ]


def find_test_case(
    test_cases: Sequence[TestCase],
    reported_id: Optional[str],
) -> Optional[TestCase]:
    """
    Match a reported result to a submitted test case: by id first, then by
    the reported id being a suffix of the input path.
    """
    if not reported_id:
        return None
    for tc in test_cases:
        if tc.testCaseId == reported_id:
            return tc
    for tc in test_cases:
        if tc.inputFilePath.endswith(reported_id):
            return tc
    return None


def correlate_result(
    test_cases: Sequence[TestCase],
    reported: RunnerTestCaseResult,
) -> TestCaseEvaluationResult:
    original = find_test_case(test_cases, reported.testCaseId)
    return TestCaseEvaluationResult(
        testCaseInputPath=original.inputFilePath
        if original else UNKNOWN_TEST_CASE,
        testCaseId=original.testCaseId if original else reported.testCaseId,
        status=reported.status,
        stdout=reported.stdout,
        stderr=reported.stderr,
        message=reported.message,
        durationMs=reported.durationMs,
        maximumMemoryException=reported.maximumMemoryException,
    )


def is_accepted(status: str) -> bool:
    return (status or '').upper() == Verdict.ACCEPTED.value


def overall_status(
    compilation_success: bool,
    results: Sequence[TestCaseEvaluationResult],
) -> str:
    if not compilation_success:
        return OverallStatus.COMPILE_ERROR.value
    if any(not is_accepted(r.status) for r in results):
        return OverallStatus.COMPLETED_WITH_ISSUES.value
    if results:
        return OverallStatus.ACCEPTED.value
    return OverallStatus.COMPLETED.value


def build_solution_result(
    submission: Submission,
    callback: RunnerCallback,
) -> SolutionEvaluationResult:
    if callback.compilationSuccess:
        results = [
            correlate_result(submission.testCases, r)
            for r in callback.testCaseResults
        ]
    else:
        # never report execution output for a program that did not compile
        results = make_all_cases_result(
            submission,
            Verdict.COMPILE_ERROR.value,
            COMPILE_ERROR_MESSAGE,
        )
    return SolutionEvaluationResult(
        overallStatus=overall_status(callback.compilationSuccess, results),
        compilationSuccess=callback.compilationSuccess,
        compilerOutput=callback.compilerOutput,
        results=results,
    )


def make_failure_result(
    submission: Submission,
    message: str,
    status: str = Verdict.INTERNAL_ERROR.value,
) -> SolutionEvaluationResult:
    """
    Result for a submission that never produced a runner callback
    (setup failure, timeout, orchestrator error, unsupported language).
    """
    return SolutionEvaluationResult(
        overallStatus=OverallStatus.FAILED.value,
        compilationSuccess=False,
        compilerOutput=message,
        results=make_all_cases_result(submission, status, message),
    )
