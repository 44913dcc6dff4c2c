"""Helpers around the lifecycle of a CloudFormation change set."""

import logging

from stackdeploy import config
from stackdeploy.exceptions import ChangeSetError
from stackdeploy.utils.backoff import ExponentialBackoff
from stackdeploy.utils.sync import WaitTimeoutError, wait_for

LOG = logging.getLogger(__name__)

NO_CHANGES_REASONS = (
    "The submitted information didn't contain changes.",
    "No updates are to be performed.",
)

REPLACEMENT_POLICY_ACTIONS = ("ReplaceAndDelete", "ReplaceAndRetain", "ReplaceAndSnapshot")


def describe_change_set(cfn, stack_name: str, change_set_name: str, fetch_all: bool) -> dict:
    """
    Describes a change set.

    :param fetch_all: whether to follow all pages of ``Changes``, otherwise only the first page is returned
    """
    response = cfn.describe_change_set(StackName=stack_name, ChangeSetName=change_set_name)

    # only the first page is needed to decide whether the change set is ready
    if not fetch_all:
        return response

    while response.get("NextToken"):
        next_page = cfn.describe_change_set(
            StackName=stack_name,
            ChangeSetName=change_set_name,
            NextToken=response["NextToken"],
        )
        response["Changes"] = (response.get("Changes") or []) + (next_page.get("Changes") or [])
        response["NextToken"] = next_page.get("NextToken")

    return response


def change_set_has_no_changes(description: dict) -> bool:
    """Whether the change set failed because it would not change anything."""
    reason = description.get("StatusReason") or ""
    return description.get("Status") == "FAILED" and reason.startswith(NO_CHANGES_REASONS)


def has_replacement(description: dict) -> bool:
    """Whether any change in the change set deletes and recreates a resource."""
    return any(
        (change.get("ResourceChange") or {}).get("PolicyAction") in REPLACEMENT_POLICY_ACTIONS
        for change in description.get("Changes") or []
    )


def wait_for_change_set(
    cfn,
    stack_name: str,
    change_set_name: str,
    fetch_all: bool,
    backoff: ExponentialBackoff = None,
) -> dict:
    """
    Waits for a change set to be available for triggering a stack update.

    Will return a change set that is either ready to be executed or has no changes.
    Will raise in other cases.

    :param fetch_all: whether to fetch all pages of changes once the change set is ready
    :return: the description of the change set
    """
    LOG.debug("Waiting for changeset %s on stack %s to finish creating...", change_set_name, stack_name)

    def _check():
        description = describe_change_set(cfn, stack_name, change_set_name, fetch_all)

        if description.get("Status") in ("CREATE_PENDING", "CREATE_IN_PROGRESS"):
            LOG.debug("Changeset %s on stack %s is still creating", change_set_name, stack_name)
            return False, None

        if description.get("Status") == "CREATE_COMPLETE" or change_set_has_no_changes(description):
            return True, description

        status = description.get("Status") or "NO_STATUS"
        reason = description.get("StatusReason") or "no reason provided"
        raise ChangeSetError(
            f"Failed to create ChangeSet {change_set_name} on {stack_name}: {status}, {reason}"
        )

    backoff = backoff or ExponentialBackoff.for_stack_polling(max_time_elapsed=config.CHANGE_SET_TIMEOUT)
    try:
        return wait_for(_check, backoff)
    except WaitTimeoutError as e:
        raise ChangeSetError(
            f"ChangeSet {change_set_name} on {stack_name} did not finish creating: {e}"
        ) from e


def cleanup_old_change_set(cfn, stack_name: str, change_set_name: str) -> None:
    """
    Deletes a change set with the given name, if it exists.

    Change set names must be unique per stack. The delete request succeeds as long as the stack exists, even
    if the change set does not, so callers must only call this for existing stacks.
    """
    LOG.debug("Removing existing change set with name %s if it exists", change_set_name)
    cfn.delete_change_set(StackName=stack_name, ChangeSetName=change_set_name)
