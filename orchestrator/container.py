import random
import socket
import string
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import docker
from docker.utils import parse_repository_tag

from . import config
from .exception import ContainerStartError, ImagePullError
from .meta import Submission
from .utils import logger


@dataclass(frozen=True)
class ContainerLimits:
    mem_limit: str = '512m'
    cpu_period: int = 100000
    cpu_fraction: float = 0.5
    pids_limit: int = 64
    scratch_size: str = '64m'

    @classmethod
    def from_config(cls, cfg: dict) -> 'ContainerLimits':
        return cls(
            mem_limit=cfg['CONTAINER_MEM_LIMIT'],
            cpu_period=int(cfg['CONTAINER_CPU_PERIOD']),
            cpu_fraction=float(cfg['CONTAINER_CPU_FRACTION']),
            pids_limit=int(cfg['CONTAINER_PIDS_LIMIT']),
            scratch_size=cfg['SCRATCH_SIZE'],
        )


@dataclass(frozen=True)
class ContainerSpec:
    image: str
    name: str
    internal_port: int
    host_port: int
    mem_limit: str
    memswap_limit: str
    cpu_period: int
    cpu_quota: int
    pids_limit: int
    tmpfs: Dict[str, str]
    environment: Dict[str, str] = field(default_factory=dict)
    cap_drop: Tuple[str, ...] = ('ALL', )
    # enough to kill the sandboxed process tree, nothing more
    cap_add: Tuple[str, ...] = ('KILL', )
    security_opt: Tuple[str, ...] = ('no-new-privileges', )
    read_only: bool = True
    network_mode: str = 'bridge'
    auto_remove: bool = True


@dataclass(frozen=True)
class ContainerHandle:
    container_id: str
    name: str
    host_port: int
    image: str


def generate_container_name(language: str, length: int = 6) -> str:
    chars = string.ascii_lowercase + string.digits
    suffix = ''.join(random.choice(chars) for _ in range(length))
    return f'batch-runner-{language}-{suffix}'


def get_free_port() -> int:
    '''
    Ask the OS for a free ephemeral port on loopback.
    The port is released before docker binds it, so another process may
    grab it in between; that shows up as a start failure.
    '''
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        port = s.getsockname()[1]
    logger().debug(f'found free tcp port: {port}')
    return port


def runner_environment(
    submission: Submission,
    internal_port: int,
    extra_env: Optional[Dict[str, str]] = None,
) -> Dict[str, str]:
    env = {
        'Authentication__ApiKey': config.RUNNER_TOKEN,
        'Authentication__HeaderName': config.API_KEY_HEADER,
        'Execution__Language': submission.language,
        'Execution__CallbackUrl':
        f'{config.CALLBACK_BASE_URL}/callback/{submission.submissionId}',
        'ASPNETCORE_URLS': f'http://+:{internal_port}',
    }
    env.update(extra_env or {})
    return env


def build_container_spec(
    submission: Submission,
    image: str,
    host_port: int,
    limits: ContainerLimits,
    internal_port: int = 5000,
    name: Optional[str] = None,
    extra_env: Optional[Dict[str, str]] = None,
) -> ContainerSpec:
    return ContainerSpec(
        image=image,
        name=name or generate_container_name(submission.language),
        internal_port=internal_port,
        host_port=host_port,
        mem_limit=limits.mem_limit,
        # same as mem_limit: no swap
        memswap_limit=limits.mem_limit,
        cpu_period=limits.cpu_period,
        cpu_quota=int(limits.cpu_period * limits.cpu_fraction),
        pids_limit=limits.pids_limit,
        tmpfs={'/tmp': f'rw,exec,nosuid,size={limits.scratch_size}'},
        environment=runner_environment(submission, internal_port, extra_env),
    )


class ContainerController:

    def __init__(
        self,
        docker_url: str,
        stop_grace_seconds: int = 3,
        client=None,
    ):
        self.docker_url = docker_url
        self.stop_grace_seconds = stop_grace_seconds
        self.client = client
        if self.client is None:
            try:
                self.client = docker.APIClient(base_url=docker_url)
            except Exception as e:
                logger().error(f'Failed to initialize Docker client: {e}')
                self.client = None

    def _require_client(self):
        if not self.client:
            raise ContainerStartError('Docker client not initialized')
        return self.client

    def ensure_image(self, image: str):
        if not image or not image.strip():
            raise ImagePullError('empty runner image name')
        client = self._require_client()
        try:
            logger().debug(f'Checking if image {image} exists locally...')
            if client.images(filters={'reference': image}):
                logger().debug(f'Image {image} found locally.')
                return
            repository, tag = parse_repository_tag(image)
            if not tag:
                logger().debug(f"No tag specified for {image}, assuming 'latest'.")
                tag = 'latest'
            logger().info(f'Image {image} not found locally. Pulling...')
            for progress in client.pull(
                    repository,
                    tag=tag,
                    stream=True,
                    decode=True,
            ):
                if progress.get('error'):
                    raise ImagePullError(
                        f"pull {image} failed: {progress['error']}")
                status = progress.get('status')
                if status and not status.startswith(
                    ('Pulling fs layer', 'Downloading', 'Extracting')):
                    logger().debug(f'Pull status for {image}: {status}')
            logger().info(f'Image {image} pulled successfully.')
        except ImagePullError:
            raise
        except Exception as exc:
            raise ImagePullError(
                f'failed to ensure image {image}: {exc}') from exc

    def create(self, spec: ContainerSpec) -> ContainerHandle:
        client = self._require_client()
        try:
            host_config = client.create_host_config(
                port_bindings={spec.internal_port: spec.host_port},
                mem_limit=spec.mem_limit,
                memswap_limit=spec.memswap_limit,
                cpu_period=spec.cpu_period,
                cpu_quota=spec.cpu_quota,
                pids_limit=spec.pids_limit,
                tmpfs=spec.tmpfs,
                read_only=spec.read_only,
                cap_drop=list(spec.cap_drop),
                cap_add=list(spec.cap_add),
                security_opt=list(spec.security_opt),
                network_mode=spec.network_mode,
                auto_remove=spec.auto_remove,
            )
            logger().info(
                f"Creating batch runner container '{spec.name}' on host port {spec.host_port}..."
            )
            container = client.create_container(
                image=spec.image,
                name=spec.name,
                environment=spec.environment,
                ports=[spec.internal_port],
                host_config=host_config,
                detach=True,
            )
        except docker.errors.DockerException as exc:
            raise ContainerStartError(
                f'create container {spec.name} failed: {exc}') from exc
        return ContainerHandle(
            container_id=container.get('Id'),
            name=spec.name,
            host_port=spec.host_port,
            image=spec.image,
        )

    def start(self, handle: ContainerHandle):
        client = self._require_client()
        logger().info(
            f"Starting batch runner container '{handle.name}' ({handle.container_id[:12]})..."
        )
        try:
            client.start(handle.container_id)
        except docker.errors.DockerException as exc:
            raise ContainerStartError(
                f'start container {handle.name} failed: {exc}') from exc

    def teardown(self, handle: Optional[ContainerHandle]):
        '''
        Best effort. Errors are logged, never raised: the container was
        created with auto-remove.
        '''
        if handle is None or not self.client:
            return
        cid = handle.container_id
        logger().debug(f'Stopping batch runner container {cid[:12]}...')
        try:
            self.client.stop(cid, timeout=self.stop_grace_seconds)
            logger().info(f'Stopped batch runner container {cid[:12]}.')
            return
        except docker.errors.NotFound:
            logger().debug(f'Container {cid[:12]} already gone.')
            return
        except Exception as e:
            logger().warning(f'Stop container {cid[:12]} failed: {e}')
        try:
            self.client.remove_container(cid, v=True, force=True)
            logger().info(f'Force removed batch runner container {cid[:12]}.')
        except docker.errors.NotFound:
            logger().debug(f'Container {cid[:12]} already gone.')
        except Exception as e:
            logger().error(f'Remove container {cid[:12]} failed: {e}')
