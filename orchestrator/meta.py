from typing import List, Optional
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    conlist,
    field_validator,
)
from .constant import Verdict


class TestCase(BaseModel):
    model_config = ConfigDict(frozen=True)

    inputFilePath: str = Field(min_length=1)
    expectedOutputFilePath: str = Field(min_length=1)
    maxExecutionTimeMs: int = Field(2000, ge=100, le=10000)
    maxRamMB: int = Field(128, ge=32, le=512)
    # e.g. "test1", "edge_case_null"
    testCaseId: Optional[str] = None


class Submission(BaseModel):
    model_config = ConfigDict(frozen=True)

    submissionId: str = Field(min_length=1)
    language: str = Field(min_length=1)
    version: Optional[str] = None
    codeFilePath: str = Field(min_length=1)
    testCases: conlist(TestCase, min_length=1)

    @field_validator('language')
    @classmethod
    def _normalize_language(cls, v):
        return v.strip().lower()


# --- callback sent by the runner container ---


class RunnerTestCaseResult(BaseModel):
    testCaseId: Optional[str] = None
    status: str = Verdict.INTERNAL_ERROR.value
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    durationMs: Optional[int] = None
    message: Optional[str] = None
    maximumMemoryException: bool = False


class RunnerCallback(BaseModel):
    compilationSuccess: bool
    compilerOutput: Optional[str] = None
    testCaseResults: List[RunnerTestCaseResult] = Field(default_factory=list)


# --- normalized result sent to the backend ---


class TestCaseEvaluationResult(BaseModel):
    testCaseInputPath: str
    testCaseId: Optional[str] = None
    status: str
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    message: Optional[str] = None
    durationMs: Optional[int] = None
    maximumMemoryException: bool = False


class SolutionEvaluationResult(BaseModel):
    overallStatus: str
    compilationSuccess: bool
    compilerOutput: Optional[str] = None
    results: List[TestCaseEvaluationResult] = Field(default_factory=list)
