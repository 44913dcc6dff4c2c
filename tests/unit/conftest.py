import copy
import json
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from stackdeploy import config
from stackdeploy.aws.sdk import Account, Sdk
from stackdeploy.io import RecordingIoHost
from stackdeploy.testing.config import (
    TEST_AWS_ACCESS_KEY_ID,
    TEST_AWS_ACCOUNT_ID,
    TEST_AWS_PARTITION,
    TEST_AWS_REGION_NAME,
    TEST_AWS_SECRET_ACCESS_KEY,
)

READ_OPERATIONS = (
    "describe_stacks",
    "describe_change_set",
    "describe_stack_events",
    "get_template",
    "list_stack_resources",
    "list_exports",
)


@pytest.fixture(autouse=True)
def set_boto_test_credentials_and_region(monkeypatch):
    """
    Automatically sets the default credentials and region for all unit tests.
    """
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", TEST_AWS_ACCESS_KEY_ID)
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", TEST_AWS_SECRET_ACCESS_KEY)
    monkeypatch.setenv("AWS_DEFAULT_REGION", TEST_AWS_REGION_NAME)


@pytest.fixture(autouse=True)
def fast_stack_polling(monkeypatch):
    """Polls stacks and change sets without noticeable sleeps."""
    monkeypatch.setattr(config, "STACK_POLL_INTERVAL", 0.01)
    monkeypatch.setattr(config, "STACK_POLL_MAX_INTERVAL", 0.01)


def client_error(code: str, message: str, operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def stack_arn(stack_name: str) -> str:
    return (
        f"arn:aws:cloudformation:{TEST_AWS_REGION_NAME}:{TEST_AWS_ACCOUNT_ID}:"
        f"stack/{stack_name}/8b3e6f40-0000-11ef-0000-0a1b2c3d4e5f"
    )


def stack_description(
    stack_name: str,
    status: str = "CREATE_COMPLETE",
    parameters: Dict[str, str] = None,
    outputs: Dict[str, str] = None,
    tags: List[dict] = None,
    notification_arns: List[str] = None,
    termination_protection: bool = False,
) -> dict:
    return {
        "StackId": stack_arn(stack_name),
        "StackName": stack_name,
        "StackStatus": status,
        "CreationTime": datetime(2024, 1, 1, tzinfo=timezone.utc),
        "Parameters": [
            {"ParameterKey": k, "ParameterValue": v} for k, v in (parameters or {}).items()
        ],
        "Outputs": [{"OutputKey": k, "OutputValue": v} for k, v in (outputs or {}).items()],
        "Tags": list(tags or []),
        "NotificationARNs": list(notification_arns or []),
        "EnableTerminationProtection": termination_protection,
    }


class FakeCloudFormation:
    """
    An in-memory CloudFormation client, recording every call.

    Mutating operations move the stack to the status configured in ``final_status``, so that waiting for the
    stack finishes right away. Single operations can be overridden with ``handlers``.
    """

    def __init__(self):
        self.stacks: Dict[str, dict] = {}
        self.templates: Dict[str, dict] = {}
        self.events: Dict[str, List[dict]] = {}
        self.resources: Dict[str, List[dict]] = {}
        self.change_set: dict = {"Status": "CREATE_COMPLETE", "Changes": []}
        self.final_status: Optional[str] = None
        self.handlers: Dict[str, Callable[..., dict]] = {}
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def add_stack(self, stack_name: str, template: dict = None, **kwargs) -> dict:
        self.stacks[stack_name] = stack_description(stack_name, **kwargs)
        self.templates[stack_name] = copy.deepcopy(template or {})
        return self.stacks[stack_name]

    def calls_to(self, operation: str) -> List[dict]:
        return [kwargs for name, kwargs in self.calls if name == operation]

    @property
    def mutations(self) -> List[str]:
        return [name for name, _ in self.calls if name not in READ_OPERATIONS]

    def _record(self, operation: str, kwargs: dict) -> Optional[dict]:
        with self._lock:
            self.calls.append((operation, kwargs))
        handler = self.handlers.get(operation)
        if handler:
            return handler(**kwargs)
        return None

    def _stack(self, stack_name: str) -> dict:
        if stack_name not in self.stacks:
            raise client_error("ValidationError", f"Stack with id {stack_name} does not exist")
        return self.stacks[stack_name]

    def _finish(self, stack_name: str, default_status: str) -> None:
        self.stacks[stack_name]["StackStatus"] = self.final_status or default_status

    #
    # read operations
    #

    def describe_stacks(self, **kwargs):
        result = self._record("describe_stacks", kwargs)
        if result is not None:
            return result
        return {"Stacks": [copy.deepcopy(self._stack(kwargs["StackName"]))]}

    def get_template(self, **kwargs):
        result = self._record("get_template", kwargs)
        if result is not None:
            return result
        self._stack(kwargs["StackName"])
        return {"TemplateBody": json.dumps(self.templates.get(kwargs["StackName"]) or {})}

    def describe_change_set(self, **kwargs):
        result = self._record("describe_change_set", kwargs)
        if result is not None:
            return result
        stack_name = kwargs["StackName"]
        return {
            "ChangeSetName": kwargs["ChangeSetName"],
            "ChangeSetId": f"arn:aws:cloudformation:::changeSet/{kwargs['ChangeSetName']}/1",
            "StackId": stack_arn(stack_name),
            "StackName": stack_name,
            "CreationTime": datetime.now(tz=timezone.utc),
            **copy.deepcopy(self.change_set),
        }

    def describe_stack_events(self, **kwargs):
        result = self._record("describe_stack_events", kwargs)
        if result is not None:
            return result
        # newest first, like CloudFormation
        events = sorted(
            self.events.get(kwargs["StackName"]) or [],
            key=lambda e: e["Timestamp"],
            reverse=True,
        )
        return {"StackEvents": events}

    def list_stack_resources(self, **kwargs):
        result = self._record("list_stack_resources", kwargs)
        if result is not None:
            return result
        return {"StackResourceSummaries": list(self.resources.get(kwargs["StackName"]) or [])}

    def list_exports(self, **kwargs):
        result = self._record("list_exports", kwargs)
        return result if result is not None else {"Exports": []}

    #
    # mutating operations
    #

    def create_change_set(self, **kwargs):
        result = self._record("create_change_set", kwargs)
        if result is not None:
            return result
        stack_name = kwargs["StackName"]
        if stack_name not in self.stacks:
            self.add_stack(stack_name, status="REVIEW_IN_PROGRESS")
        return {"Id": f"arn:aws:cloudformation:::changeSet/{kwargs['ChangeSetName']}/1"}

    def delete_change_set(self, **kwargs):
        return self._record("delete_change_set", kwargs) or {}

    def execute_change_set(self, **kwargs):
        result = self._record("execute_change_set", kwargs)
        if result is not None:
            return result
        stack_name = kwargs["StackName"]
        was_created = self.stacks[stack_name]["StackStatus"] == "REVIEW_IN_PROGRESS"
        self._finish(stack_name, "CREATE_COMPLETE" if was_created else "UPDATE_COMPLETE")
        return {}

    def create_stack(self, **kwargs):
        result = self._record("create_stack", kwargs)
        if result is not None:
            return result
        self.add_stack(kwargs["StackName"], status="CREATE_IN_PROGRESS")
        self._finish(kwargs["StackName"], "CREATE_COMPLETE")
        return {"StackId": stack_arn(kwargs["StackName"])}

    def update_stack(self, **kwargs):
        result = self._record("update_stack", kwargs)
        if result is not None:
            return result
        self._stack(kwargs["StackName"])
        self._finish(kwargs["StackName"], "UPDATE_COMPLETE")
        return {"StackId": stack_arn(kwargs["StackName"])}

    def delete_stack(self, **kwargs):
        result = self._record("delete_stack", kwargs)
        if result is not None:
            return result
        if self.final_status:
            self.stacks[kwargs["StackName"]]["StackStatus"] = self.final_status
        else:
            self.stacks.pop(kwargs["StackName"], None)
        return {}

    def update_termination_protection(self, **kwargs):
        result = self._record("update_termination_protection", kwargs)
        if result is not None:
            return result
        self._stack(kwargs["StackName"])["EnableTerminationProtection"] = kwargs[
            "EnableTerminationProtection"
        ]
        return {}


class FakeSdk(Sdk):
    """An Sdk serving fake or mocked clients, with a fixed account."""

    def __init__(self, cfn: FakeCloudFormation = None, **clients):
        super().__init__(region_name=TEST_AWS_REGION_NAME)
        self.clients = {"cloudformation": cfn or FakeCloudFormation(), **clients}

    def client(self, service_name: str):
        if service_name not in self.clients:
            self.clients[service_name] = MagicMock(name=f"{service_name}-client")
        return self.clients[service_name]

    def current_account(self) -> Account:
        return Account(account_id=TEST_AWS_ACCOUNT_ID, partition=TEST_AWS_PARTITION)


def stack_event(
    stack_name: str,
    logical_id: str,
    status: str,
    seconds: int,
    resource_type: str = "AWS::SQS::Queue",
    reason: str = None,
    physical_id: str = None,
    start: datetime = None,
) -> dict:
    """A StackEvent, ``seconds`` after ``start``."""
    start = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
    is_stack = logical_id == stack_name
    event = {
        "EventId": f"{logical_id}-{status}-{seconds}",
        "StackId": stack_arn(stack_name),
        "StackName": stack_name,
        "LogicalResourceId": logical_id,
        "PhysicalResourceId": stack_arn(stack_name) if is_stack else (physical_id or ""),
        "ResourceType": "AWS::CloudFormation::Stack" if is_stack else resource_type,
        "ResourceStatus": status,
        "Timestamp": start + timedelta(seconds=seconds),
    }
    if reason:
        event["ResourceStatusReason"] = reason
    return event


@pytest.fixture
def cfn() -> FakeCloudFormation:
    return FakeCloudFormation()


@pytest.fixture
def sdk(cfn) -> FakeSdk:
    return FakeSdk(cfn)


@pytest.fixture
def io_host() -> RecordingIoHost:
    return RecordingIoHost()
