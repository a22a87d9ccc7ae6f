import json
import os
from pathlib import Path

# backend config
BACKEND_API = os.getenv(
    'BACKEND_API',
    'http://web:8080/api/submissions',
)
# key shared with the backend (incoming submissions, outgoing results)
SANDBOX_TOKEN = os.getenv(
    'SANDBOX_TOKEN',
    'KoNoSandboxDa',
)
# key shared with runner containers (health, execute, callback)
RUNNER_TOKEN = os.getenv(
    'RUNNER_TOKEN',
    'KoNoRunnerDa',
)
API_KEY_HEADER = os.getenv('API_KEY_HEADER', 'X-Api-Key')
# address runner containers use to reach this service
CALLBACK_BASE_URL = os.getenv(
    'CALLBACK_BASE_URL',
    'http://host.docker.internal:8080',
)
LOG_DIR = Path(os.getenv('LOG_DIR', 'logs'))

_DEFAULT_ORCHESTRATOR_CONFIG_PATH = Path(
    os.getenv('ORCHESTRATOR_CONFIG', '.config/orchestrator.json'))

DEFAULT_ORCHESTRATOR_CONFIG = {
    # admission
    'MAX_CONCURRENT_JOBS': 8,
    # seconds a dispatched container may take before reporting back
    'JOB_TIMEOUT': 120,
    # container resource ceilings
    'CONTAINER_MEM_LIMIT': '512m',
    'CONTAINER_CPU_PERIOD': 100000,
    'CONTAINER_CPU_FRACTION': 0.5,
    'CONTAINER_PIDS_LIMIT': 64,
    'SCRATCH_SIZE': '64m',
    # runner
    'RUNNER_IMAGES': {
        'c': 'generic-runner-c:latest',
        'cpp': 'generic-runner-cpp:latest',
        'python': 'generic-runner-python:latest',
        'java': 'generic-runner-java:latest',
    },
    'RUNNER_INTERNAL_PORT': 5000,
    'RUNNER_HOST': 'localhost',
    'RUNNER_ENV': {},
    'HEALTH_ENDPOINT': '/health',
    'HEALTH_CHECK_INTERVAL': 1.0,
    'MAX_BOOT_WAIT': 30,
    'STOP_GRACE_SECONDS': 3,
    'HTTP_TIMEOUT': 10,
    'DOCKER_URL': 'unix://var/run/docker.sock',
}


def _load_orchestrator_config(path: Path) -> dict:
    try:
        with path.open() as f:
            return json.load(f)
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError:
        return {}


def _coerce(default, raw: str):
    if isinstance(default, bool):
        return raw.lower() == 'true'
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    if isinstance(default, dict):
        return json.loads(raw)
    return raw


def get_orchestrator_config(config_path: str | Path | None = None) -> dict:
    '''
    Defaults, overridden by the JSON config file, overridden by environment
    variables of the same name.
    '''
    path = Path(
        config_path) if config_path else _DEFAULT_ORCHESTRATOR_CONFIG_PATH
    file_cfg = _load_orchestrator_config(path) if path else {}
    cfg = {}
    for key, default in DEFAULT_ORCHESTRATOR_CONFIG.items():
        value = file_cfg.get(key, default)
        raw = os.getenv(key)
        if raw is not None:
            value = _coerce(default, raw)
        cfg[key] = value
    if int(cfg['MAX_CONCURRENT_JOBS']) < 1:
        raise ValueError(
            f"MAX_CONCURRENT_JOBS must be at least 1, got {cfg['MAX_CONCURRENT_JOBS']}")
    if float(cfg['JOB_TIMEOUT']) <= 0:
        raise ValueError(
            f"JOB_TIMEOUT must be positive, got {cfg['JOB_TIMEOUT']}")
    # lookup is case-insensitive on the language tag
    cfg['RUNNER_IMAGES'] = {
        lang.lower(): image
        for lang, image in cfg['RUNNER_IMAGES'].items()
    }
    return cfg
