import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import Field
from pydantic.dataclasses import dataclass as pydantic_dataclass

from stackdeploy.aws.sdk import Sdk
from stackdeploy.exceptions import StackDeployError

from .diff import PropertyDifference

LOG = logging.getLogger(__name__)

ICON = "✨"


class HotswapMode(str, Enum):
    # try a hotswap deployment, and fall back to a full deployment if some changes cannot be hotswapped
    FALL_BACK = "fall-back"
    # only hotswap, changes that cannot be hotswapped are ignored
    HOTSWAP_ONLY = "hotswap-only"
    # a regular CloudFormation deployment
    FULL_DEPLOYMENT = "full-deployment"


class CfnEvaluationException(StackDeployError):
    """A CloudFormation expression of the template could not be resolved."""


@pydantic_dataclass
class EcsHotswapProperties:
    # the lower limit on the number of tasks that must remain RUNNING during the deployment
    minimum_healthy_percent: Optional[int] = Field(default=None, ge=0)
    # the upper limit on the number of tasks that may be RUNNING or PENDING during the deployment
    maximum_healthy_percent: Optional[int] = Field(default=None, ge=0)

    def is_empty(self) -> bool:
        return self.minimum_healthy_percent is None and self.maximum_healthy_percent is None


@dataclass
class HotswapPropertyOverrides:
    ecs_hotswap_properties: EcsHotswapProperties = field(default_factory=EcsHotswapProperties)


@dataclass
class HotswappableChange:
    """A change that can be applied by calling service APIs directly."""

    # the service the change is applied to, used in the user agent, e.g. "lambda"
    service: str
    # human readable names of all resources updated by ``apply``
    resource_names: List[str]
    # the names of the properties that changed, "*" for all
    props_changed: List[str]
    apply: Callable[[Sdk], Any]
    resource_type: Optional[str] = None
    logical_id: Optional[str] = None
    hotswappable: bool = field(default=True, init=False)


@dataclass
class NonHotswappableChange:
    """A change that needs a full CloudFormation deployment."""

    logical_id: str
    resource_type: str
    reason: str
    rejected_changes: List[str] = field(default_factory=list)
    # whether the change is worth reporting when only hotswapping
    hotswap_only_visible: Optional[bool] = None
    hotswappable: bool = field(default=False, init=False)


ClassifiedChange = Union[HotswappableChange, NonHotswappableChange]
ChangeHotswapResult = List[ClassifiedChange]


@dataclass
class HotswappableChangeCandidate:
    """A resource whose type did not change, and whose properties may be updated in place."""

    logical_id: str
    old_value: dict
    new_value: dict
    property_updates: Dict[str, PropertyDifference]

    @property
    def resource_type(self) -> str:
        return self.new_value.get("Type")

    @property
    def new_properties(self) -> dict:
        return self.new_value.get("Properties") or {}

    @property
    def old_properties(self) -> dict:
        return self.old_value.get("Properties") or {}


class ClassifiedProperties:
    """The changed properties of a resource, split by whether the resource type can hotswap them."""

    def __init__(
        self,
        change: HotswappableChangeCandidate,
        hotswappable_props: Dict[str, PropertyDifference],
        non_hotswappable_props: Dict[str, PropertyDifference],
    ):
        self.change = change
        self.hotswappable_props = hotswappable_props
        self.non_hotswappable_props = non_hotswappable_props

    @property
    def names_of_hotswappable_props(self) -> List[str]:
        return list(self.hotswappable_props.keys())

    def report_non_hotswappable_property_changes(self, ret: ChangeHotswapResult) -> None:
        names = list(self.non_hotswappable_props.keys())
        if not names:
            return
        if names == ["Tags"]:
            reason = "Tags are not hotswappable"
        else:
            reason = (
                f"resource properties '{','.join(names)}' are not hotswappable on this resource type"
            )
        report_non_hotswappable_change(ret, self.change, self.non_hotswappable_props, reason)


def classify_changes(
    change: HotswappableChangeCandidate, hotswappable_prop_names: List[str]
) -> ClassifiedProperties:
    hotswappable_props = {}
    non_hotswappable_props = {}
    for name, diff in change.property_updates.items():
        if name in hotswappable_prop_names:
            hotswappable_props[name] = diff
        else:
            non_hotswappable_props[name] = diff
    return ClassifiedProperties(change, hotswappable_props, non_hotswappable_props)


def report_non_hotswappable_change(
    ret: ChangeHotswapResult,
    change: HotswappableChangeCandidate,
    non_hotswappable_props: Dict[str, PropertyDifference] = None,
    reason: str = None,
    hotswap_only_visible: bool = True,
) -> None:
    """Adds a rejected change, by default rejecting all changed properties of the resource."""
    if non_hotswappable_props is None:
        non_hotswappable_props = change.property_updates
    ret.append(
        NonHotswappableChange(
            logical_id=change.logical_id,
            resource_type=change.resource_type,
            reason=reason,
            rejected_changes=list(non_hotswappable_props.keys()),
            hotswap_only_visible=hotswap_only_visible,
        )
    )


def report_non_hotswappable_resource(
    change: HotswappableChangeCandidate, reason: str = None
) -> ChangeHotswapResult:
    return [
        NonHotswappableChange(
            logical_id=change.logical_id,
            resource_type=change.resource_type,
            reason=reason,
            rejected_changes=list(change.property_updates.keys()),
        )
    ]

