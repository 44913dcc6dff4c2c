"""Reading the deployed state of a CloudFormation stack, and waiting for it to settle."""

import logging
import threading
from enum import Enum
from typing import Dict, List, Optional

from botocore.exceptions import ClientError

from stackdeploy.exceptions import StackOperationError
from stackdeploy.utils.backoff import ExponentialBackoff
from stackdeploy.utils.json import parse_json_or_yaml
from stackdeploy.utils.sync import wait_for

LOG = logging.getLogger(__name__)

NOT_FOUND = "NOT_FOUND"


class RollbackChoice(Enum):
    START_ROLLBACK = "START_ROLLBACK"
    CONTINUE_UPDATE_ROLLBACK = "CONTINUE_UPDATE_ROLLBACK"
    # the stack is in ROLLBACK_FAILED, it can only be deleted
    ROLLBACK_FAILED = "ROLLBACK_FAILED"
    NONE = "NONE"


class StackStatus:
    """A CloudFormation stack status, with the predicates the deployment decisions are based on."""

    name: str
    reason: Optional[str]

    def __init__(self, name: str, reason: Optional[str] = None):
        self.name = name
        self.reason = reason

    @classmethod
    def from_stack_description(cls, description: dict) -> "StackStatus":
        return cls(description["StackStatus"], description.get("StackStatusReason"))

    @property
    def is_not_found(self) -> bool:
        return self.name == NOT_FOUND

    @property
    def is_creation_failure(self) -> bool:
        """The stack failed to create and was rolled back, it can only be deleted."""
        return self.name in ("ROLLBACK_COMPLETE", "ROLLBACK_FAILED")

    @property
    def is_deleted(self) -> bool:
        return self.name.startswith("DELETE_")

    @property
    def is_failure(self) -> bool:
        return self.name.endswith("FAILED")

    @property
    def is_in_progress(self) -> bool:
        return self.name.endswith("_IN_PROGRESS") and not self.is_review_in_progress

    @property
    def is_review_in_progress(self) -> bool:
        return self.name == "REVIEW_IN_PROGRESS"

    @property
    def is_deploy_success(self) -> bool:
        return not self.is_not_found and self.name in (
            "CREATE_COMPLETE",
            "UPDATE_COMPLETE",
            "IMPORT_COMPLETE",
        )

    @property
    def is_rollback_success(self) -> bool:
        return self.name in ("ROLLBACK_COMPLETE", "UPDATE_ROLLBACK_COMPLETE")

    @property
    def rollback_choice(self) -> RollbackChoice:
        """What kind of rollback a stack left in this (paused) state needs before it can be updated again."""
        if self.name in ("CREATE_FAILED", "UPDATE_FAILED"):
            return RollbackChoice.START_ROLLBACK
        if self.name == "UPDATE_ROLLBACK_FAILED":
            return RollbackChoice.CONTINUE_UPDATE_ROLLBACK
        if self.name == "ROLLBACK_FAILED":
            return RollbackChoice.ROLLBACK_FAILED
        return RollbackChoice.NONE

    @property
    def is_rollbackable(self) -> bool:
        return self.rollback_choice in (
            RollbackChoice.START_ROLLBACK,
            RollbackChoice.CONTINUE_UPDATE_ROLLBACK,
        )

    def __str__(self):
        return self.name + (f" ({self.reason})" if self.reason else "")

    def __repr__(self):
        return f"StackStatus({self.name!r}, {self.reason!r})"


def is_stack_not_found_error(error: Exception, stack_name: str = None) -> bool:
    """Whether the given error is the ValidationError CloudFormation raises for an unknown stack."""
    if not isinstance(error, ClientError):
        return False
    if error.response.get("Error", {}).get("Code") != "ValidationError":
        return False
    message = error.response.get("Error", {}).get("Message", "")
    return "does not exist" in message and (not stack_name or stack_name in message)


class CloudFormationStack:
    """
    A snapshot of a deployed stack.

    A stack that does not exist is represented by an instance without description. It reports
    ``exists == False``, the status ``NOT_FOUND`` and empty collections for everything else.
    The template is fetched lazily and only once.
    """

    def __init__(self, cfn, stack_name: str, description: Optional[dict] = None, retrieve_processed_template: bool = False):
        self._cfn = cfn
        self.stack_name = stack_name
        self._description = description
        self._retrieve_processed_template = retrieve_processed_template
        self._template = None
        self._template_lock = threading.Lock()

    @classmethod
    def lookup(cls, cfn, stack_name: str, retrieve_processed_template: bool = False) -> "CloudFormationStack":
        try:
            response = cfn.describe_stacks(StackName=stack_name)
        except ClientError as e:
            if is_stack_not_found_error(e, stack_name):
                return cls(cfn, stack_name, None)
            raise
        stacks = response.get("Stacks") or []
        return cls(cfn, stack_name, stacks[0] if stacks else None, retrieve_processed_template)

    @classmethod
    def does_not_exist(cls, cfn, stack_name: str) -> "CloudFormationStack":
        """Returns a snapshot of a stack known to be absent, without calling CloudFormation."""
        return cls(cfn, stack_name, None)

    @property
    def exists(self) -> bool:
        return self._description is not None

    @property
    def description(self) -> Optional[dict]:
        return self._description

    @property
    def stack_id(self) -> Optional[str]:
        return self._description["StackId"] if self.exists else None

    @property
    def stack_status(self) -> StackStatus:
        if not self.exists:
            return StackStatus(NOT_FOUND, "Stack not found during lookup")
        return StackStatus.from_stack_description(self._description)

    @property
    def tags(self) -> List[Dict[str, str]]:
        return list(self._description.get("Tags") or []) if self.exists else []

    @property
    def notification_arns(self) -> List[str]:
        return list(self._description.get("NotificationARNs") or []) if self.exists else []

    @property
    def outputs(self) -> Dict[str, str]:
        if not self.exists:
            return {}
        return {
            output["OutputKey"]: output.get("OutputValue")
            for output in self._description.get("Outputs") or []
        }

    @property
    def parameters(self) -> Dict[str, str]:
        """The current parameter values, preferring the resolved value of parameter store references."""
        if not self.exists:
            return {}
        result = {}
        for param in self._description.get("Parameters") or []:
            result[param["ParameterKey"]] = param.get("ResolvedValue", param.get("ParameterValue"))
        return result

    @property
    def termination_protection(self) -> bool:
        return bool(self._description.get("EnableTerminationProtection")) if self.exists else False

    def template(self) -> dict:
        """The deployed template, or an empty dict if the stack does not exist."""
        if not self.exists:
            return {}
        with self._template_lock:
            if self._template is None:
                response = self._cfn.get_template(
                    StackName=self.stack_name,
                    TemplateStage="Processed" if self._retrieve_processed_template else "Original",
                )
                body = response.get("TemplateBody") or {}
                self._template = parse_json_or_yaml(body) if isinstance(body, str) else body
            return self._template

    def __repr__(self):
        return f"CloudFormationStack({self.stack_name!r}, status={self.stack_status.name})"


def stabilize_stack(cfn, stack_name: str, backoff: ExponentialBackoff = None) -> Optional[CloudFormationStack]:
    """
    Waits until the stack is no longer in progress.

    :return: the settled stack, or None if it does not exist (anymore)
    """
    LOG.debug("Waiting for stack %s to finish creating or updating...", stack_name)

    def _check():
        stack = CloudFormationStack.lookup(cfn, stack_name)
        if not stack.exists:
            LOG.debug("Stack %s does not exist", stack_name)
            return True, None
        status = stack.stack_status
        if status.is_in_progress:
            LOG.debug("Stack %s has an ongoing operation in progress and is not stable (%s)", stack_name, status)
            return False, None
        if status.is_review_in_progress:
            # the stack was created by a change set that was never executed, it won't settle on its own
            LOG.debug("Stack %s is in REVIEW_IN_PROGRESS state. Considering this is a stable status (%s)", stack_name, status)
        return True, stack

    return wait_for(_check, backoff)


def wait_for_stack_deploy(cfn, stack_name: str, backoff: ExponentialBackoff = None) -> Optional[CloudFormationStack]:
    """
    Waits for a create or update of the stack to finish.

    :raises StackOperationError: if the stack ended up in anything but a successful deploy state
    """
    stack = stabilize_stack(cfn, stack_name, backoff)
    if not stack:
        return None

    status = stack.stack_status
    if status.is_creation_failure:
        raise StackOperationError(
            f"The stack named {stack_name} failed creation, it may need to be manually deleted from the AWS console: {status}",
            stack_name=stack_name,
            status=status.name,
        )
    if not status.is_deploy_success:
        raise StackOperationError(
            f"The stack named {stack_name} failed to deploy: {status}",
            stack_name=stack_name,
            status=status.name,
        )
    return stack


def wait_for_stack_delete(cfn, stack_name: str, backoff: ExponentialBackoff = None) -> Optional[CloudFormationStack]:
    """
    Waits for the deletion of the stack to finish.

    :return: None once the stack is gone, or the stack if it still exists in a deleted state
    :raises StackOperationError: if the deletion failed
    """
    stack = stabilize_stack(cfn, stack_name, backoff)
    if not stack:
        return None

    status = stack.stack_status
    if status.is_failure:
        raise StackOperationError(
            f"The stack named {stack_name} is in a failed state. You may need to delete it from the AWS console : {status}",
            stack_name=stack_name,
            status=status.name,
        )
    if status.is_deleted:
        return None
    return stack
