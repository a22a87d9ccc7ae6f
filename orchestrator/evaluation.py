import time

import requests

from . import config
from .exception import DispatchError, HealthCheckTimeoutError
from .meta import Submission
from .utils import logger

EXECUTE_ENDPOINT = '/execute'
# requests rejects a zero timeout
MIN_HEALTH_CHECK_TIMEOUT = 0.1


def build_execute_request(submission: Submission) -> dict:
    '''
    Map a submission onto the runner's batch execute contract.
    Test case order and ids are kept as given.
    '''
    return {
        'language': submission.language,
        'version': submission.version,
        'codeFilePath': submission.codeFilePath,
        'submissionId': submission.submissionId,
        'testCases': [{
            'inputFilePath': tc.inputFilePath,
            'expectedOutputFilePath': tc.expectedOutputFilePath,
            'timeLimitMs': tc.maxExecutionTimeMs,
            'maxRamMB': tc.maxRamMB,
            'testCaseId': tc.testCaseId,
        } for tc in submission.testCases],
    }


class EvaluationClient:
    '''
    HTTP side of a runner container: readiness check and the execute call.
    '''

    def __init__(
        self,
        host: str = 'localhost',
        health_endpoint: str = '/health',
        health_interval: float = 1.0,
        max_boot_wait: float = 30,
        timeout: float = 10,
        token: str | None = None,
    ):
        self.host = host
        self.health_endpoint = health_endpoint
        self.health_interval = health_interval
        self.max_boot_wait = max_boot_wait
        self.timeout = timeout
        self.token = token or config.RUNNER_TOKEN

    @classmethod
    def from_config(cls, cfg: dict) -> 'EvaluationClient':
        return cls(
            host=cfg['RUNNER_HOST'],
            health_endpoint=cfg['HEALTH_ENDPOINT'],
            health_interval=float(cfg['HEALTH_CHECK_INTERVAL']),
            max_boot_wait=float(cfg['MAX_BOOT_WAIT']),
            timeout=float(cfg['HTTP_TIMEOUT']),
        )

    def _url(self, port: int, path: str) -> str:
        return f'http://{self.host}:{port}{path}'

    def _headers(self) -> dict:
        return {
            config.API_KEY_HEADER: self.token,
            'Accept': 'application/json',
        }

    def health_check(self, port: int, timeout: float | None = None) -> bool:
        try:
            resp = requests.get(
                self._url(port, self.health_endpoint),
                headers=self._headers(),
                timeout=self.timeout if timeout is None else timeout,
            )
        except requests.RequestException:
            return False
        return resp.ok

    def wait_until_healthy(self, port: int):
        deadline = time.monotonic() + self.max_boot_wait
        attempt = 0
        while True:
            attempt += 1
            # a hanging health check must not outlive the boot budget
            remaining = deadline - time.monotonic()
            check_timeout = max(min(self.timeout, remaining),
                                MIN_HEALTH_CHECK_TIMEOUT)
            if self.health_check(port, timeout=check_timeout):
                logger().debug(
                    f'runner on port {port} healthy after {attempt} attempt(s)')
                return
            if time.monotonic() + self.health_interval > deadline:
                raise HealthCheckTimeoutError(
                    f'runner on port {port} not healthy after {self.max_boot_wait}s'
                )
            time.sleep(self.health_interval)

    def start_evaluation(self, port: int, payload: dict):
        submission_id = payload.get('submissionId')
        logger().info(
            f'Sending batch evaluation request [id={submission_id}] via port {port}...'
        )
        try:
            resp = requests.post(
                self._url(port, EXECUTE_ENDPOINT),
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise DispatchError(
                f'Runner API communication failed: {exc}') from exc
        if not resp.ok:
            logger().error(
                f'Runner API batch call failed [id={submission_id}, status={resp.status_code}, resp={resp.text}]'
            )
            raise DispatchError(
                f'Runner API communication failed: {resp.status_code}')
        logger().debug(f'runner accepted evaluation [id={submission_id}]')
