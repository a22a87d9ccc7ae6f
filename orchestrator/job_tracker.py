import heapq
import itertools
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .container import ContainerHandle
from .meta import Submission
from .utils import logger

TimeoutCallback = Callable[[str, Submission, ContainerHandle], None]


@dataclass(eq=False)
class Job:
    submission_id: str
    submission: Submission
    container: ContainerHandle
    on_timeout: TimeoutCallback
    deadline: float
    created_at: datetime = field(default_factory=datetime.now)
    disposed: bool = False

    def dispose(self):
        # a disposed job's deadline is skipped by the reaper
        self.disposed = True


class JobTracker:
    '''
    In-flight jobs keyed by submission id.

    Every terminal transition goes through a remove-if-present on `_jobs`
    under `_cond`, so a timeout and a completion for the same job can never
    both succeed. A single reaper thread serves the deadlines of all jobs.
    '''

    def __init__(self, timeout: float):
        self.timeout = timeout
        self._jobs: Dict[str, Job] = {}
        self._cond = threading.Condition()
        # (deadline, seq, job)
        self._deadlines = []
        self._seq = itertools.count()
        self._do_run = True
        self._reaper = threading.Thread(
            target=self._reap,
            name='job-reaper',
            daemon=True,
        )
        self._reaper.start()

    def track(
        self,
        submission_id: str,
        submission: Submission,
        container: ContainerHandle,
        on_timeout: TimeoutCallback,
    ) -> bool:
        with self._cond:
            if submission_id in self._jobs:
                logger().info(
                    f'attempted to track submission which is already being tracked [id={submission_id}]'
                )
                return False
            job = Job(
                submission_id=submission_id,
                submission=submission,
                container=container,
                on_timeout=on_timeout,
                deadline=time.monotonic() + self.timeout,
            )
            self._jobs[submission_id] = job
            heapq.heappush(self._deadlines, (job.deadline, next(self._seq), job))
            self._cond.notify()
        logger().info(
            f'started tracking submission [id={submission_id} timeout={self.timeout}s]'
        )
        return True

    def complete(self, submission_id: str, job: Optional[Job] = None) -> bool:
        '''
        Remove the job if present. With `job`, only that exact entry is
        removed. Returns whether this call removed it.
        '''
        with self._cond:
            current = self._jobs.get(submission_id)
            if current is None or (job is not None and current is not job):
                return False
            del self._jobs[submission_id]
            current.dispose()
        logger().info(f'completing tracking for submission [id={submission_id}]')
        return True

    def is_tracked(self, submission_id: str) -> bool:
        with self._cond:
            return submission_id in self._jobs

    def get(self, submission_id: str) -> Optional[Job]:
        with self._cond:
            return self._jobs.get(submission_id)

    def count(self) -> int:
        with self._cond:
            return len(self._jobs)

    def tracked_ids(self) -> List[str]:
        with self._cond:
            return [*self._jobs.keys()]

    def stop(self):
        with self._cond:
            self._do_run = False
            self._cond.notify_all()
        self._reaper.join()

    def _expire(self, job: Job) -> bool:
        with self._cond:
            # the id may have been completed, or completed and tracked again
            if self._jobs.get(job.submission_id) is not job:
                return False
            del self._jobs[job.submission_id]
            job.dispose()
        logger().warning(f'submission timed out [id={job.submission_id}]')
        try:
            job.on_timeout(job.submission_id, job.submission, job.container)
        except Exception as exc:
            logger().error(
                f'timeout handler failed [id={job.submission_id}]: {exc}')
        return True

    def _next_expired(self) -> Optional[Job]:
        with self._cond:
            while self._do_run:
                while self._deadlines and self._deadlines[0][2].disposed:
                    heapq.heappop(self._deadlines)
                if not self._deadlines:
                    self._cond.wait()
                    continue
                delay = self._deadlines[0][0] - time.monotonic()
                if delay <= 0:
                    return heapq.heappop(self._deadlines)[2]
                self._cond.wait(delay)
            return None

    def _reap(self):
        logger().debug('start job reaper')
        while True:
            job = self._next_expired()
            if job is None:
                break
            self._expire(job)
        logger().debug('exit job reaper')
