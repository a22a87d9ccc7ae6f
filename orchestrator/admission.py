import threading
from typing import Set

from .exception import (
    CapacityExceededError,
    DuplicatedSubmissionIdError,
    LanguageNotSupportedError,
)
from .job_tracker import JobTracker
from .meta import Submission
from .utils import logger


class AdmissionController:
    '''
    Capacity and duplicate gate in front of the orchestration flow.

    A submission is "reserved" from admission until it is tracked by the
    JobTracker (or its setup failed), so that submissions still provisioning
    count against the limit and cannot be submitted twice.
    '''

    def __init__(
        self,
        tracker: JobTracker,
        max_jobs: int,
        runner_images: dict,
    ):
        self.tracker = tracker
        self.MAX_JOB_COUNT = max_jobs
        self.runner_images = runner_images
        self._reserved: Set[str] = set()
        self._lock = threading.Lock()

    def runner_image(self, language: str) -> str:
        image = self.runner_images.get(language.lower())
        if not image:
            raise LanguageNotSupportedError(
                f'language {language} is not supported')
        return image

    def load(self) -> int:
        with self._lock:
            return self.tracker.count() + len(self._reserved)

    def admit(self, submission: Submission):
        submission_id = submission.submissionId
        self.runner_image(submission.language)
        with self._lock:
            if self.tracker.count() + len(
                    self._reserved) >= self.MAX_JOB_COUNT:
                logger().info(
                    f'reject submission, capacity reached [id={submission_id}]'
                )
                raise CapacityExceededError(
                    'too many submissions in progress.\n'
                    'please wait a moment and re-send the submission.')
            if (submission_id in self._reserved
                    or self.tracker.is_tracked(submission_id)):
                raise DuplicatedSubmissionIdError(
                    f'duplicated submission id {submission_id}.')
            self._reserved.add(submission_id)
        logger().debug(f'admitted submission [id={submission_id}]')

    def release(self, submission_id: str):
        with self._lock:
            self._reserved.discard(submission_id)
