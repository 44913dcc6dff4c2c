from dataclasses import dataclass, field
from typing import Dict, Literal, Optional, Union

from stackdeploy.exceptions import StackDeployError


@dataclass
class SuccessfulDeployStackResult:
    """The stack is deployed (or did not need deploying, if ``no_op`` is set)."""

    no_op: bool
    outputs: Dict[str, str] = field(default_factory=dict)
    stack_arn: Optional[str] = None
    type: Literal["did-deploy-stack"] = "did-deploy-stack"


@dataclass
class NeedRollbackFirstDeployStackResult:
    """
    The stack is paused in a failed state and needs to be rolled back before it can be deployed.

    ``reason`` is ``replacement`` if the deployment replaces resources, or ``not-norollback`` if the deployment
    was requested with rollback enabled.
    """

    reason: Literal["replacement", "not-norollback"]
    status: str
    type: Literal["failpaused-need-rollback-first"] = "failpaused-need-rollback-first"


@dataclass
class ReplacementRequiresRollbackStackResult:
    """The deployment replaces resources, which cannot be done with rollback disabled."""

    type: Literal["replacement-requires-rollback"] = "replacement-requires-rollback"


DeployStackResult = Union[
    SuccessfulDeployStackResult,
    NeedRollbackFirstDeployStackResult,
    ReplacementRequiresRollbackStackResult,
]


def assert_is_successful_deploy_stack_result(result: DeployStackResult) -> SuccessfulDeployStackResult:
    if not isinstance(result, SuccessfulDeployStackResult):
        raise StackDeployError(f"Unexpected deploy_stack result. This should not happen: {result!r}")
    return result
