import requests

from . import config
from .meta import SolutionEvaluationResult
from .utils import logger


class BackendNotifier:
    '''
    Delivers the final result of a submission to the backend.

    One POST per call, no retry: a failed delivery is logged with the
    payload and dropped.
    '''

    def __init__(
        self,
        backend_url: str | None = None,
        token: str | None = None,
        timeout: float = 10,
    ):
        self.backend_url = backend_url or config.BACKEND_API
        self.token = token or config.SANDBOX_TOKEN
        self.timeout = timeout

    def send_evaluation_result(
        self,
        submission_id: str,
        result: SolutionEvaluationResult,
    ) -> bool:
        payload = result.model_dump()
        logger().info(
            f'send to BE [submission_id={submission_id}, status={result.overallStatus}]'
        )
        try:
            resp = requests.post(
                f'{self.backend_url}/{submission_id}/submit',
                json=payload,
                headers={config.API_KEY_HEADER: self.token},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger().warning(
                f'send to BE failed [submission_id={submission_id}]: {exc}, payload={payload}'
            )
            return False
        logger().debug(f'get BE response: [{resp.status_code}] {resp.text}')
        if not resp.ok:
            logger().warning(
                f'BE rejected result [submission_id={submission_id}, status={resp.status_code}, resp={resp.text}]'
            )
        return resp.ok
