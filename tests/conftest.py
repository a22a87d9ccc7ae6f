import json
import pytest
from unittest.mock import MagicMock, patch
from orchestrator import meta
from orchestrator.container import ContainerHandle
from orchestrator.job_tracker import JobTracker

TEST_IMAGES = {
    'python': 'generic-runner-python:latest',
    'c': 'generic-runner-c:latest',
}


class ImmediatePool:
    '''
    Runs submitted work in the calling thread.
    '''

    def __init__(self):
        self.submitted = []

    def submit(self, fn, *args, **kwargs):
        self.submitted.append(fn)
        return fn(*args, **kwargs)

    def shutdown(self, wait=True):
        pass


@pytest.fixture
def immediate_pool():
    return ImmediatePool()


@pytest.fixture
def runner_images():
    return dict(TEST_IMAGES)


@pytest.fixture
def make_submission():

    def _make(submission_id='sub-001',
              language='python',
              case_count=2,
              with_ids=True):
        return meta.Submission(
            submissionId=submission_id,
            language=language,
            codeFilePath=f'code/{submission_id}/main.py',
            testCases=[
                meta.TestCase(
                    inputFilePath=f'problems/1/tests/{i}.in',
                    expectedOutputFilePath=f'problems/1/tests/{i}.out',
                    maxExecutionTimeMs=1000,
                    maxRamMB=64,
                    testCaseId=f'tc{i}' if with_ids else None,
                ) for i in range(case_count)
            ],
        )

    return _make


@pytest.fixture
def handle():
    return ContainerHandle(
        container_id='c0ffee' * 8,
        name='batch-runner-python-abc123',
        host_port=49152,
        image=TEST_IMAGES['python'],
    )


@pytest.fixture
def tracker():
    t = JobTracker(timeout=60)
    yield t
    t.stop()


@pytest.fixture
def mock_docker_client():
    with patch('orchestrator.container.docker.APIClient') as mock_api:
        client_instance = MagicMock()
        mock_api.return_value = client_instance
        yield client_instance


@pytest.fixture
def orchestrator_config(tmp_path):
    path = tmp_path / 'orchestrator.json'
    path.write_text(
        json.dumps({
            'MAX_CONCURRENT_JOBS': 2,
            'JOB_TIMEOUT': 60,
            'RUNNER_IMAGES': TEST_IMAGES,
        }))
    return path
