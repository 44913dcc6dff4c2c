"""
Splits the changes between the deployed and the new template into hotswappable and non-hotswappable ones.
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Union

from stackdeploy.constants import HOTSWAP_CONCURRENCY

from .common import (
    ChangeHotswapResult,
    HotswappableChange,
    HotswappableChangeCandidate,
    HotswapPropertyOverrides,
    NonHotswappableChange,
    report_non_hotswappable_change,
)
from .diff import ResourceDifference, TemplateDiff, full_diff
from .evaluate import EvaluateCloudFormationTemplate, NestedStackTemplates
from .registry import DetectorContext, get_detector

LOG = logging.getLogger(__name__)

NESTED_STACK_TYPE = "AWS::CloudFormation::Stack"


@dataclass
class ClassifiedResourceChanges:
    hotswappable_changes: List[HotswappableChange] = field(default_factory=list)
    non_hotswappable_changes: List[NonHotswappableChange] = field(default_factory=list)

    def add(self, change: Union[HotswappableChange, NonHotswappableChange]) -> None:
        if change.hotswappable:
            self.hotswappable_changes.append(change)
        else:
            self.non_hotswappable_changes.append(change)

    def extend(self, other: "ClassifiedResourceChanges") -> None:
        self.hotswappable_changes.extend(other.hotswappable_changes)
        self.non_hotswappable_changes.extend(other.non_hotswappable_changes)


def classify_resource_changes(
    stack_changes: TemplateDiff,
    evaluate: EvaluateCloudFormationTemplate,
    nested_stacks: Dict[str, NestedStackTemplates],
    property_overrides: HotswapPropertyOverrides = None,
) -> ClassifiedResourceChanges:
    """
    Classifies every changed resource and output of a stack, recursing into changed nested stacks.

    Resources without a registered detector, added and removed resources, resources whose type changed and
    all changed outputs are non-hotswappable. Detectors of different resources run concurrently, the order
    of the results follows the order of the resources in the diff.
    """
    property_overrides = property_overrides or HotswapPropertyOverrides()
    context = DetectorContext(evaluate=evaluate, property_overrides=property_overrides)
    result = ClassifiedResourceChanges()

    for logical_id in stack_changes.outputs:
        result.add(
            NonHotswappableChange(
                logical_id=logical_id,
                resource_type="Stack Output",
                reason="output was changed",
                rejected_changes=[],
            )
        )

    detections: List[Callable[[], ChangeHotswapResult]] = []
    for logical_id, change in get_stack_resource_differences(stack_changes).items():
        if (
            change.new_resource_type == NESTED_STACK_TYPE
            and change.old_resource_type == NESTED_STACK_TYPE
            and logical_id in nested_stacks
        ):
            result.extend(
                find_nested_hotswappable_changes(
                    logical_id, change, nested_stacks, evaluate, property_overrides
                )
            )
            continue

        candidate = is_candidate_for_hotswapping(change, logical_id)
        if isinstance(candidate, NonHotswappableChange):
            result.add(candidate)
            continue

        detector = get_detector(candidate.resource_type)
        if detector:
            detections.append(_detection(detector, logical_id, candidate, context))
        else:
            rejected = []
            report_non_hotswappable_change(
                rejected,
                candidate,
                reason="This resource type is not supported for hotswap deployments",
            )
            result.add(rejected[0])

    if detections:
        with ThreadPoolExecutor(
            max_workers=HOTSWAP_CONCURRENCY, thread_name_prefix="hotswap-detect"
        ) as executor:
            for changes in executor.map(lambda detect: detect(), detections):
                for change in changes:
                    result.add(change)

    return result


def _detection(detector, logical_id, candidate, context) -> Callable[[], ChangeHotswapResult]:
    def _detect():
        LOG.debug("Classifying changes of %s (%s)", logical_id, candidate.resource_type)
        return detector.classify(logical_id, candidate, context)

    return _detect


def find_nested_hotswappable_changes(
    logical_id: str,
    change: ResourceDifference,
    nested_stacks: Dict[str, NestedStackTemplates],
    evaluate: EvaluateCloudFormationTemplate,
    property_overrides: HotswapPropertyOverrides,
) -> ClassifiedResourceChanges:
    nested_stack = nested_stacks[logical_id]
    if not nested_stack.physical_name:
        return ClassifiedResourceChanges(
            non_hotswappable_changes=[
                NonHotswappableChange(
                    logical_id=logical_id,
                    resource_type=NESTED_STACK_TYPE,
                    reason=(
                        f"physical name for {NESTED_STACK_TYPE} '{logical_id}' could not be found in "
                        f"CloudFormation, so this is a newly created nested stack and cannot be hotswapped"
                    ),
                    rejected_changes=[],
                )
            ]
        )

    nested_evaluate = evaluate.create_nested_evaluate(
        nested_stack.physical_name,
        nested_stack.generated_template,
        change.new_properties.get("Parameters"),
    )
    nested_diff = full_diff(nested_stack.deployed_template, nested_stack.generated_template)
    return classify_resource_changes(
        nested_diff, nested_evaluate, nested_stack.nested_stack_templates, property_overrides
    )


def get_stack_resource_differences(stack_changes: TemplateDiff) -> Dict[str, ResourceDifference]:
    """
    Returns the changed resources, with renamed resources merged into a single difference.

    A resource is renamed when an added resource has the same type and the same properties as a removed
    one. The merged difference is keyed by the new logical id and has the old value of the removed resource.
    """
    changes = dict(stack_changes.resources)
    removals = {
        logical_id: change for logical_id, change in changes.items() if change.is_removal
    }

    for logical_id, addition in list(changes.items()):
        if not addition.is_addition:
            continue
        for removed_id, removal in list(removals.items()):
            if changes_are_for_same_resource(removal, addition):
                changes[logical_id] = make_rename_difference(removal, addition)
                del changes[removed_id]
                del removals[removed_id]
                break

    return changes


def changes_are_for_same_resource(removal: ResourceDifference, addition: ResourceDifference) -> bool:
    return removal.old_resource_type == addition.new_resource_type and _canonical(
        removal.old_properties
    ) == _canonical(addition.new_properties)


def _canonical(properties: dict) -> str:
    return json.dumps(properties, sort_keys=True, default=str)


def make_rename_difference(
    removal: ResourceDifference, addition: ResourceDifference
) -> ResourceDifference:
    # the old value must be set, otherwise the merged change would count as an addition
    return ResourceDifference(
        removal.old_value,
        addition.new_value,
        property_diffs=addition.property_diffs,
        other_diffs=addition.other_diffs,
    )


def is_candidate_for_hotswapping(
    change: ResourceDifference, logical_id: str
) -> Union[HotswappableChangeCandidate, NonHotswappableChange]:
    if not change.old_value:
        return NonHotswappableChange(
            logical_id=logical_id,
            resource_type=change.new_resource_type,
            reason=f"resource '{logical_id}' was created by this deployment",
        )
    if not change.new_value:
        return NonHotswappableChange(
            logical_id=logical_id,
            resource_type=change.old_resource_type,
            reason=f"resource '{logical_id}' was destroyed by this deployment",
        )
    if change.new_resource_type != change.old_resource_type:
        return NonHotswappableChange(
            logical_id=logical_id,
            resource_type=change.new_resource_type,
            reason=(
                f"resource '{logical_id}' had its type changed from "
                f"'{change.old_resource_type}' to '{change.new_resource_type}'"
            ),
        )
    return HotswappableChangeCandidate(
        logical_id=logical_id,
        old_value=change.old_value,
        new_value=change.new_value,
        property_updates=change.property_updates,
    )
