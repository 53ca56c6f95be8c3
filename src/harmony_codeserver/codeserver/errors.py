"""Exception taxonomy for the code server."""

from __future__ import annotations


class CodeServerError(RuntimeError):
    """Base class for every error raised by the code server."""


class ConfigurationError(CodeServerError, ValueError):
    """Session configuration is unusable; the session must not start."""


class MissingConfigKey(ConfigurationError):
    """A required session configuration key is absent."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Session does not define {key}.")
        self.key = key


class InvalidEndpoint(ConfigurationError):
    """An endpoint URI could not be parsed."""


class InvalidWorkerSpec(ConfigurationError):
    """A worker host specification could not be parsed."""


class SetupStepFailed(ConfigurationError):
    """The one-time host setup command exited with an error."""


class RegistryExhausted(CodeServerError):
    """A point arrived while no worker slot was free."""


class WorkerLaunchError(CodeServerError):
    """The generation command could not be started."""


class WorkerFailedError(CodeServerError):
    """The generation command exited with a nonzero status."""

    def __init__(self, hostname: str, step: int, exit_code: int) -> None:
        super().__init__(
            f"Generator {hostname} failed on step {step} with exit code {exit_code}.",
        )
        self.hostname = hostname
        self.step = step
        self.exit_code = exit_code


class RelayError(CodeServerError):
    """A result file could not be copied to the reply endpoint."""
