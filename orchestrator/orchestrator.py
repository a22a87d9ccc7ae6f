import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from . import config
from .admission import AdmissionController
from .backend import BackendNotifier
from .collector import ResultCollector
from .constant import JobState
from .container import (
    ContainerController,
    ContainerHandle,
    ContainerLimits,
    build_container_spec,
    get_free_port,
)
from .evaluation import EvaluationClient, build_execute_request
from .exception import SetupError, SubmissionIdNotFoundError
from .job_tracker import Job, JobTracker
from .meta import RunnerCallback, SolutionEvaluationResult, Submission
from .result_factory import make_failure_result
from .utils import logger

SHUTDOWN_MESSAGE = 'Orchestrator shutting down'


class Orchestrator:

    def __init__(
        self,
        orchestrator_config=None,
        tracker: Optional[JobTracker] = None,
        containers: Optional[ContainerController] = None,
        evaluation: Optional[EvaluationClient] = None,
        notifier: Optional[BackendNotifier] = None,
        pool=None,
    ):
        cfg = config.get_orchestrator_config(orchestrator_config)
        self.MAX_JOB_COUNT = int(cfg['MAX_CONCURRENT_JOBS'])
        self.JOB_TIMEOUT = float(cfg['JOB_TIMEOUT'])
        self.limits = ContainerLimits.from_config(cfg)
        self.internal_port = int(cfg['RUNNER_INTERNAL_PORT'])
        self.runner_env = cfg['RUNNER_ENV']

        self.tracker = tracker or JobTracker(timeout=self.JOB_TIMEOUT)
        self.containers = containers or ContainerController(
            docker_url=cfg['DOCKER_URL'],
            stop_grace_seconds=int(cfg['STOP_GRACE_SECONDS']),
        )
        self.evaluation = evaluation or EvaluationClient.from_config(cfg)
        self.notifier = notifier or BackendNotifier(
            timeout=float(cfg['HTTP_TIMEOUT']))
        self.admission = AdmissionController(
            tracker=self.tracker,
            max_jobs=self.MAX_JOB_COUNT,
            runner_images=cfg['RUNNER_IMAGES'],
        )
        self.collector = ResultCollector(self.tracker, self.on_complete)
        # provisioning flows plus teardown/notify work
        self.pool = pool or ThreadPoolExecutor(
            max_workers=self.MAX_JOB_COUNT * 2,
            thread_name_prefix='orchestrator',
        )
        self._stopping = threading.Event()

    def handle(self, submission: Submission):
        submission_id = submission.submissionId
        logger().info(
            f'receive submission {submission_id} [lang={submission.language}, cases={len(submission.testCases)}]'
        )
        self.admission.admit(submission)
        try:
            self.pool.submit(self.run_submission, submission)
        except RuntimeError:
            self.admission.release(submission_id)
            raise

    def _ensure_running(self):
        if self._stopping.is_set():
            raise SetupError(SHUTDOWN_MESSAGE)

    def _transition(self, submission_id: str, state: JobState):
        logger().debug(f'submission state [id={submission_id}] -> {state.name}')

    def run_submission(self, submission: Submission) -> Optional[JobState]:
        '''
        Provision a runner for the submission and hand it the work.

        Returns DISPATCHED once the runner accepted the evaluation,
        SETUP_FAILED if it never did (the failure result is then sent from
        here), or None when a callback or timeout already finished the job.
        '''
        submission_id = submission.submissionId
        handle: Optional[ContainerHandle] = None
        tracked = False
        try:
            self._transition(submission_id, JobState.PROVISIONING)
            self._ensure_running()
            image = self.admission.runner_image(submission.language)
            self.containers.ensure_image(image)
            spec = build_container_spec(
                submission,
                image=image,
                host_port=get_free_port(),
                limits=self.limits,
                internal_port=self.internal_port,
                extra_env=self.runner_env,
            )
            handle = self.containers.create(spec)

            self._transition(submission_id, JobState.STARTING)
            self.containers.start(handle)

            self._transition(submission_id, JobState.HEALTH_CHECKING)
            self.evaluation.wait_until_healthy(handle.host_port)

            self._ensure_running()
            # track before dispatch: the runner may call back at any time
            # once it has the work
            tracked = self.tracker.track(
                submission_id,
                submission,
                handle,
                self.on_timeout,
            )
            self.admission.release(submission_id)
            if not tracked:
                logger().error(
                    f'submission already tracked, drop duplicate runner [id={submission_id}]'
                )
                self.containers.teardown(handle)
                return None

            self.evaluation.start_evaluation(
                handle.host_port,
                build_execute_request(submission),
            )
            self._transition(submission_id, JobState.DISPATCHED)
            return JobState.DISPATCHED
        except SetupError as exc:
            logger().warning(f'setup failed [id={submission_id}]: {exc}')
            message = str(exc)
        except Exception as exc:
            container_id = handle.container_id if handle else 'N/A'
            logger().error(
                f'Critical error during batch solution evaluation [id={submission_id}, lang={submission.language}, container={container_id}]: {exc}'
            )
            message = f'Orchestrator critical error: {exc}'
        finally:
            self.admission.release(submission_id)

        if tracked and not self.tracker.complete(submission_id):
            logger().info(
                f'setup failure after job finished, ignore [id={submission_id}]'
            )
            return None
        self._transition(submission_id, JobState.SETUP_FAILED)
        self.containers.teardown(handle)
        self.notifier.send_evaluation_result(
            submission_id,
            make_failure_result(submission, message),
        )
        return JobState.SETUP_FAILED

    def on_timeout(
        self,
        submission_id: str,
        submission: Submission,
        handle: ContainerHandle,
    ):
        result = make_failure_result(
            submission,
            f'Evaluation timed out after {self.JOB_TIMEOUT:g}s',
        )
        self._schedule_finish(
            submission_id,
            handle,
            result,
            JobState.TIMED_OUT,
        )

    def on_complete(self, job: Job, result: SolutionEvaluationResult):
        self._schedule_finish(
            job.submission_id,
            job.container,
            result,
            JobState.COMPLETED,
        )

    def _schedule_finish(
        self,
        submission_id: str,
        handle: ContainerHandle,
        result: SolutionEvaluationResult,
        state: JobState,
    ):
        try:
            self.pool.submit(self._finish, submission_id, handle, result,
                             state)
        except RuntimeError:
            # pool already shut down
            self._finish(submission_id, handle, result, state)

    def _finish(
        self,
        submission_id: str,
        handle: ContainerHandle,
        result: SolutionEvaluationResult,
        state: JobState,
    ):
        self._transition(submission_id, state)
        self.containers.teardown(handle)
        self.notifier.send_evaluation_result(submission_id, result)

    def on_callback(self, submission_id: str, callback: RunnerCallback):
        if not self.collector.collect(submission_id, callback):
            raise SubmissionIdNotFoundError(
                f'submission {submission_id} is not in progress')

    def status(self) -> dict:
        return {
            'trackedCount': self.tracker.count(),
            'inFlightCount': self.admission.load(),
            'maxJobCount': self.MAX_JOB_COUNT,
            'submissions': self.tracker.tracked_ids(),
        }

    def stop(self):
        '''
        Finish every in-flight submission with a failure result.

        Provisioning flows still running fail their own submission once they
        see the stop flag, so after the pool drained only tracked jobs are
        left to abort here.
        '''
        self._stopping.set()
        self.tracker.stop()
        self.pool.shutdown(wait=True)
        for submission_id in self.tracker.tracked_ids():
            job = self.tracker.get(submission_id)
            if job is None or not self.tracker.complete(submission_id, job):
                continue
            logger().warning(f'abort submission on shutdown [id={submission_id}]')
            self._finish(
                submission_id,
                job.container,
                make_failure_result(job.submission, SHUTDOWN_MESSAGE),
                JobState.ABORTED,
            )
