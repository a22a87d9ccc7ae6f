import socket
from unittest.mock import patch

import docker
import pytest

from orchestrator import config
from orchestrator.container import (
    ContainerController,
    ContainerLimits,
    build_container_spec,
    get_free_port,
)
from orchestrator.exception import ContainerStartError, ImagePullError


@pytest.fixture
def controller(mock_docker_client):
    return ContainerController(docker_url='unix://fake.sock',
                               stop_grace_seconds=3)


@pytest.fixture
def spec(make_submission):
    return build_container_spec(
        make_submission(),
        image='generic-runner-python:latest',
        host_port=40001,
        limits=ContainerLimits(),
        internal_port=5000,
        name='batch-runner-python-test01',
    )


def test_build_container_spec_sandbox_settings(make_submission):
    limits = ContainerLimits(
        mem_limit='256m',
        cpu_period=100000,
        cpu_fraction=0.25,
        pids_limit=32,
        scratch_size='16m',
    )
    spec = build_container_spec(
        make_submission('sub-042'),
        image='generic-runner-python:latest',
        host_port=40001,
        limits=limits,
        internal_port=5000,
    )

    assert spec.image == 'generic-runner-python:latest'
    assert spec.name.startswith('batch-runner-python-')
    assert spec.host_port == 40001
    assert spec.internal_port == 5000
    assert spec.mem_limit == '256m'
    assert spec.memswap_limit == '256m'
    assert spec.cpu_period == 100000
    assert spec.cpu_quota == 25000
    assert spec.pids_limit == 32
    assert spec.tmpfs == {'/tmp': 'rw,exec,nosuid,size=16m'}
    assert spec.read_only is True
    assert spec.cap_drop == ('ALL', )
    assert spec.cap_add == ('KILL', )
    assert spec.network_mode == 'bridge'
    assert spec.auto_remove is True
    assert spec.environment['Execution__Language'] == 'python'
    assert spec.environment['Execution__CallbackUrl'].endswith(
        '/callback/sub-042')
    assert spec.environment['Authentication__ApiKey'] == config.RUNNER_TOKEN
    assert spec.environment['ASPNETCORE_URLS'] == 'http://+:5000'


def test_build_container_spec_is_pure(make_submission):
    submission = make_submission()
    kwargs = dict(
        image='generic-runner-python:latest',
        host_port=40001,
        limits=ContainerLimits(),
        name='batch-runner-python-fixed1',
        extra_env={'AzureStorage__ContainerName': 'submissions'},
    )
    first = build_container_spec(submission, **kwargs)
    second = build_container_spec(submission, **kwargs)
    assert first == second
    assert first.environment['AzureStorage__ContainerName'] == 'submissions'


def test_container_names_are_unique(make_submission):
    submission = make_submission()
    names = {
        build_container_spec(submission,
                             image='img:latest',
                             host_port=1,
                             limits=ContainerLimits()).name
        for _ in range(20)
    }
    assert len(names) == 20


def test_get_free_port_can_be_bound():
    port = get_free_port()
    assert 0 < port < 65536
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', port))


def test_ensure_image_skips_existing_image(controller, mock_docker_client):
    mock_docker_client.images.return_value = [{'Id': 'sha256:...'}]

    controller.ensure_image('generic-runner-python:latest')

    mock_docker_client.images.assert_called_with(
        filters={'reference': 'generic-runner-python:latest'})
    mock_docker_client.pull.assert_not_called()


def test_ensure_image_pulls_missing_image(controller, mock_docker_client):
    mock_docker_client.images.return_value = []
    mock_docker_client.pull.return_value = iter([
        {
            'status': 'Pulling from generic-runner-python'
        },
        {
            'status': 'Downloading',
            'progressDetail': {}
        },
        {
            'status': 'Status: Downloaded newer image'
        },
    ])

    controller.ensure_image('generic-runner-python:3.12')

    mock_docker_client.pull.assert_called_once_with(
        'generic-runner-python',
        tag='3.12',
        stream=True,
        decode=True,
    )


def test_ensure_image_defaults_to_latest_tag(controller, mock_docker_client):
    mock_docker_client.images.return_value = []
    mock_docker_client.pull.return_value = iter([])

    controller.ensure_image('localhost:5000/runner')

    mock_docker_client.pull.assert_called_once_with(
        'localhost:5000/runner',
        tag='latest',
        stream=True,
        decode=True,
    )


def test_ensure_image_stream_error_is_pull_error(controller,
                                                 mock_docker_client):
    mock_docker_client.images.return_value = []
    mock_docker_client.pull.return_value = iter([
        {
            'error': 'manifest unknown'
        },
    ])

    with pytest.raises(ImagePullError, match='manifest unknown'):
        controller.ensure_image('generic-runner-python:latest')


def test_ensure_image_api_error_is_pull_error(controller, mock_docker_client):
    mock_docker_client.images.return_value = []
    mock_docker_client.pull.side_effect = docker.errors.APIError('denied')

    with pytest.raises(ImagePullError):
        controller.ensure_image('generic-runner-python:latest')


def test_create_applies_container_spec(controller, mock_docker_client, spec):
    mock_docker_client.create_host_config.return_value = {'hc': True}
    mock_docker_client.create_container.return_value = {'Id': 'container-456'}

    handle = controller.create(spec)

    assert handle.container_id == 'container-456'
    assert handle.host_port == 40001
    assert handle.name == 'batch-runner-python-test01'
    assert handle.image == 'generic-runner-python:latest'

    hc_kwargs = mock_docker_client.create_host_config.call_args[1]
    assert hc_kwargs['port_bindings'] == {5000: 40001}
    assert hc_kwargs['mem_limit'] == spec.mem_limit
    assert hc_kwargs['memswap_limit'] == spec.mem_limit
    assert hc_kwargs['cpu_period'] == 100000
    assert hc_kwargs['cpu_quota'] == 50000
    assert hc_kwargs['pids_limit'] == spec.pids_limit
    assert hc_kwargs['tmpfs'] == spec.tmpfs
    assert hc_kwargs['read_only'] is True
    assert hc_kwargs['cap_drop'] == ['ALL']
    assert hc_kwargs['cap_add'] == ['KILL']
    assert hc_kwargs['network_mode'] == 'bridge'
    assert hc_kwargs['auto_remove'] is True

    c_kwargs = mock_docker_client.create_container.call_args[1]
    assert c_kwargs['image'] == 'generic-runner-python:latest'
    assert c_kwargs['name'] == 'batch-runner-python-test01'
    assert c_kwargs['ports'] == [5000]
    assert c_kwargs['host_config'] == {'hc': True}
    assert c_kwargs['environment'] == spec.environment


def test_create_failure_is_start_error(controller, mock_docker_client, spec):
    mock_docker_client.create_container.side_effect = docker.errors.APIError(
        'Conflict')

    with pytest.raises(ContainerStartError):
        controller.create(spec)


def test_start_failure_is_start_error(controller, mock_docker_client,
                                      handle):
    mock_docker_client.start.side_effect = docker.errors.APIError(
        'port is already allocated')

    with pytest.raises(ContainerStartError, match='port is already allocated'):
        controller.start(handle)


def test_uninitialized_client_fails_setup():
    with patch('orchestrator.container.docker.APIClient',
               side_effect=docker.errors.DockerException('no daemon')):
        controller = ContainerController(docker_url='unix://fake.sock')
    assert controller.client is None
    with pytest.raises(ContainerStartError):
        controller.ensure_image('generic-runner-python:latest')


def test_teardown_stops_container(controller, mock_docker_client, handle):
    controller.teardown(handle)

    mock_docker_client.stop.assert_called_once_with(handle.container_id,
                                                    timeout=3)
    mock_docker_client.remove_container.assert_not_called()


def test_teardown_tolerates_already_gone(controller, mock_docker_client,
                                         handle):
    mock_docker_client.stop.side_effect = docker.errors.NotFound('gone')

    controller.teardown(handle)

    mock_docker_client.remove_container.assert_not_called()


def test_teardown_force_removes_on_stop_failure(controller,
                                                mock_docker_client, handle):
    mock_docker_client.stop.side_effect = docker.errors.APIError('timeout')

    controller.teardown(handle)

    mock_docker_client.remove_container.assert_called_once_with(
        handle.container_id, v=True, force=True)


def test_teardown_never_raises(controller, mock_docker_client, handle):
    mock_docker_client.stop.side_effect = RuntimeError('socket closed')
    mock_docker_client.remove_container.side_effect = docker.errors.APIError(
        'busy')

    controller.teardown(handle)


def test_teardown_without_handle_is_noop(controller, mock_docker_client):
    controller.teardown(None)
    mock_docker_client.stop.assert_not_called()

