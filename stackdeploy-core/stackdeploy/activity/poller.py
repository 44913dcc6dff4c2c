import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from botocore.exceptions import ClientError

LOG = logging.getLogger(__name__)

STACK_BEGIN_OPERATION_STATES = (
    "CREATE_IN_PROGRESS",
    "UPDATE_IN_PROGRESS",
    "DELETE_IN_PROGRESS",
    "UPDATE_ROLLBACK_IN_PROGRESS",
    "ROLLBACK_IN_PROGRESS",
)


@dataclass
class ResourceEvent:
    # the StackEvent as returned by DescribeStackEvents
    event: dict
    # logical ids of the nested stack resources leading from the root stack to the stack of this event
    parent_stack_logical_ids: List[str] = field(default_factory=list)
    # whether the event is about the stack itself rather than one of its resources
    is_stack_event: bool = False


def is_stack_begin_operation_state(state: Optional[str]) -> bool:
    return (state or "") in STACK_BEGIN_OPERATION_STATES


def is_stack_terminal_state(state: Optional[str]) -> bool:
    return not (state or "").endswith("_IN_PROGRESS")


class StackEventPoller:
    """
    Incrementally reads the event history of a stack, and of the nested stacks it touches.

    Every call to ``poll()`` returns the events that appeared since the previous call, oldest first. Events
    older than ``start_time`` are never returned. Nested stacks are followed from the moment they start an
    operation until they report a terminal status.

    A poller is not thread safe, calls to ``poll()`` must be serialized.
    """

    def __init__(
        self,
        cfn,
        stack_name: str,
        start_time: Optional[datetime] = None,
        parent_stack_logical_ids: List[str] = None,
        stack_statuses: List[str] = None,
    ):
        """
        :param cfn: the CloudFormation client
        :param stack_name: name or id of the stack
        :param start_time: ignore events that happened before this point in time
        :param parent_stack_logical_ids: logical ids of the parent nested stack resources, for nested stacks
        :param stack_statuses: stop reading when reaching a stack event with one of these statuses
        """
        self.cfn = cfn
        self.stack_name = stack_name
        self.start_time = start_time
        self.parent_stack_logical_ids = list(parent_stack_logical_ids or [])
        self.stack_statuses = list(stack_statuses or [])
        self.events: List[ResourceEvent] = []
        self.complete = False
        self._event_ids = set()
        self._nested_stack_pollers: Dict[str, "StackEventPoller"] = {}

    def poll(self) -> List[ResourceEvent]:
        events = self._do_poll()

        for logical_id, poller in list(self._nested_stack_pollers.items()):
            events.extend(poller.poll())
            if poller.complete:
                del self._nested_stack_pollers[logical_id]

        events.sort(key=lambda e: e.event["Timestamp"])
        self.events.extend(events)
        return events

    def _do_poll(self) -> List[ResourceEvent]:
        """Reads pages of events (newest first) until reaching one that is known or too old."""
        events = []
        try:
            next_token = None
            while True:
                kwargs = {"StackName": self.stack_name}
                if next_token:
                    kwargs["NextToken"] = next_token
                page = self.cfn.describe_stack_events(**kwargs)

                for event in page.get("StackEvents") or []:
                    if self.start_time is not None and event["Timestamp"] < self.start_time:
                        return events

                    if event["EventId"] in self._event_ids:
                        return events
                    self._event_ids.add(event["EventId"])

                    # events about the stack itself are reported next to the ones about its resources
                    is_parent_stack_event = event.get("PhysicalResourceId") == event.get("StackId")

                    if is_parent_stack_event and event.get("ResourceStatus") in self.stack_statuses:
                        return events

                    events.append(
                        ResourceEvent(
                            event=event,
                            parent_stack_logical_ids=self.parent_stack_logical_ids,
                            is_stack_event=is_parent_stack_event,
                        )
                    )

                    if (
                        not is_parent_stack_event
                        and event.get("ResourceType") == "AWS::CloudFormation::Stack"
                        and is_stack_begin_operation_state(event.get("ResourceStatus"))
                    ):
                        self._track_nested_stack(
                            event,
                            self.parent_stack_logical_ids + [event.get("LogicalResourceId") or ""],
                        )

                    if is_parent_stack_event and is_stack_terminal_state(event.get("ResourceStatus")):
                        self.complete = True

                next_token = page.get("NextToken")
                if not next_token:
                    break
        except ClientError as e:
            error = e.response.get("Error", {})
            if not (
                error.get("Code") == "ValidationError"
                and error.get("Message") == f"Stack [{self.stack_name}] does not exist"
            ):
                raise
            LOG.debug("Stack %s does not exist (anymore), no events to read", self.stack_name)

        return events

    def _track_nested_stack(self, event: dict, parent_stack_logical_ids: List[str]) -> None:
        logical_id = event.get("LogicalResourceId")
        physical_resource_id = event.get("PhysicalResourceId")

        # the first IN_PROGRESS event of a nested stack has no physical id yet
        if not physical_resource_id or not logical_id:
            return

        if logical_id not in self._nested_stack_pollers:
            LOG.debug("Following events of nested stack %s (%s)", logical_id, physical_resource_id)
            self._nested_stack_pollers[logical_id] = StackEventPoller(
                self.cfn,
                stack_name=physical_resource_id,
                start_time=event["Timestamp"],
                parent_stack_logical_ids=parent_stack_logical_ids,
            )
