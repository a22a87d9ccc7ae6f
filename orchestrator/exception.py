__all__ = [
    'DuplicatedSubmissionIdError',
    'CapacityExceededError',
    'LanguageNotSupportedError',
    'SubmissionIdNotFoundError',
    'SetupError',
    'ImagePullError',
    'ContainerStartError',
    'HealthCheckTimeoutError',
    'DispatchError',
]


class DuplicatedSubmissionIdError(Exception):
    pass


class CapacityExceededError(Exception):
    pass


class LanguageNotSupportedError(Exception):
    pass


class SubmissionIdNotFoundError(Exception):
    pass


class SetupError(Exception):
    """Raised when a runner container could not be brought to the point
    where it accepted the evaluation request."""


class ImagePullError(SetupError):
    pass


class ContainerStartError(SetupError):
    pass


class HealthCheckTimeoutError(SetupError):
    pass


class DispatchError(SetupError):
    pass
