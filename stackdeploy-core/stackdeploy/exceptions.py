"""Errors raised while deploying, hotswapping or destroying stacks."""

from typing import Optional


class StackDeployError(Exception):
    """Base class for all errors raised by stackdeploy."""


class ConfigurationError(StackDeployError):
    """Raised for invalid option combinations, before any call to AWS is made."""


class StackOperationError(StackDeployError):
    """A stack operation ended in a failure status."""

    stack_name: Optional[str]
    status: Optional[str]

    def __init__(self, message: str, stack_name: str = None, status: str = None):
        super().__init__(message)
        self.stack_name = stack_name
        self.status = status


class ChangeSetError(StackDeployError):
    """A change set failed to create or did not finish in time."""


class MissingParametersError(StackDeployError):
    """Template parameters have neither a value nor a default."""

    def __init__(self, missing: list[str]):
        super().__init__(
            f"The following CloudFormation Parameters are missing a value: {', '.join(missing)}"
        )
        self.missing = missing


class HotswapTimeoutError(StackDeployError):
    """A waiter timed out or hit a terminal state while applying a hotswap change."""

    def __init__(self, state: str, reason: str):
        super().__init__(
            f"Resource is not in the expected state due to waiter status: {state}. {reason}."
        )
        self.state = state
        self.reason = reason
