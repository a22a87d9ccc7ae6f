from typing import Callable

from .job_tracker import Job, JobTracker
from .meta import RunnerCallback, SolutionEvaluationResult
from .result_factory import build_solution_result
from .utils import logger

FinishCallback = Callable[[Job, SolutionEvaluationResult], None]


class ResultCollector:
    '''
    Handles the runner's callback for a tracked submission.
    '''

    def __init__(self, tracker: JobTracker, on_complete: FinishCallback):
        self.tracker = tracker
        self.on_complete = on_complete

    def collect(self, submission_id: str, callback: RunnerCallback) -> bool:
        '''
        Returns False for a stale or duplicated callback, which must be
        ignored by the caller.
        '''
        job = self.tracker.get(submission_id)
        if job is None:
            logger().info(f'ignore callback of untracked submission [id={submission_id}]')
            return False
        # lost the race to the timeout, or a concurrent duplicate callback
        if not self.tracker.complete(submission_id, job):
            logger().info(f'ignore callback of finished submission [id={submission_id}]')
            return False
        if not callback.compilationSuccess:
            logger().warning(
                f'Compilation failed [id={submission_id}]. Compiler Output: {callback.compilerOutput}'
            )
        result = build_solution_result(job.submission, callback)
        logger().info(
            f'collected result [id={submission_id}, status={result.overallStatus}, cases={len(result.results)}]'
        )
        self.on_complete(job, result)
        return True
