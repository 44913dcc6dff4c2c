import logging
from typing import Dict, List, Optional

from stackdeploy.aws.sdk import Sdk
from stackdeploy.deploy.artifact import StackArtifact
from stackdeploy.deploy.results import SuccessfulDeployStackResult
from stackdeploy.deploy.stack import CloudFormationStack
from stackdeploy.io import IoHost, RecordingIoHost

from .applier import apply_all_hotswappable_changes
from .classifier import classify_resource_changes
from .common import HotswapMode, HotswapPropertyOverrides, NonHotswappableChange
from .diff import full_diff
from .evaluate import EvaluateCloudFormationTemplate
from .nested_stacks import load_current_template_with_nested_stacks

LOG = logging.getLogger(__name__)


def try_hotswap_deployment(
    sdk: Sdk,
    stack_params: Dict[str, str],
    cloudformation_stack: CloudFormationStack,
    stack_artifact: StackArtifact,
    hotswap_mode: HotswapMode,
    property_overrides: HotswapPropertyOverrides = None,
    io_host: IoHost = None,
) -> Optional[SuccessfulDeployStackResult]:
    """
    Performs a hotswap deployment, short-circuiting CloudFormation where possible.

    :param stack_params: the values of the stack parameters, used to evaluate expressions of the template
    :return: None if the deployment needs to fall back to CloudFormation, the result of the deployment
        otherwise
    """
    io_host = io_host or RecordingIoHost()

    # the environment is needed to substitute pseudo parameters like AWS::Region
    account = sdk.current_account()
    account_id = stack_artifact.environment.account or account.account_id
    region = stack_artifact.environment.region or sdk.region

    current_template = load_current_template_with_nested_stacks(
        stack_artifact, sdk, deployed_stack_name=cloudformation_stack.stack_name
    )
    evaluate = EvaluateCloudFormationTemplate(
        stack_name=cloudformation_stack.stack_name,
        template=stack_artifact.template,
        parameters=stack_params,
        account=account_id,
        region=region,
        partition=account.partition,
        sdk=sdk,
        nested_stacks=current_template.nested_stacks,
    )

    stack_changes = full_diff(current_template.deployed_root_template, stack_artifact.template)
    classified = classify_resource_changes(
        stack_changes, evaluate, current_template.nested_stacks, property_overrides
    )

    log_non_hotswappable_changes(classified.non_hotswappable_changes, hotswap_mode, io_host)

    if hotswap_mode == HotswapMode.FALL_BACK and classified.non_hotswappable_changes:
        return None

    apply_all_hotswappable_changes(sdk, classified.hotswappable_changes, io_host)

    return SuccessfulDeployStackResult(
        no_op=not classified.hotswappable_changes,
        stack_arn=cloudformation_stack.stack_id,
        outputs=cloudformation_stack.outputs,
    )


def log_non_hotswappable_changes(
    non_hotswappable_changes: List[NonHotswappableChange],
    hotswap_mode: HotswapMode,
    io_host: IoHost,
) -> None:
    if not non_hotswappable_changes:
        return

    if hotswap_mode == HotswapMode.HOTSWAP_ONLY:
        # changes that were rejected here but are applied by another detector are not worth reporting
        non_hotswappable_changes = [
            change for change in non_hotswappable_changes if change.hotswap_only_visible is True
        ]
        if not non_hotswappable_changes:
            return
        io_host.warn(
            "\n⚠️ The following non-hotswappable changes were found. "
            "To reconcile these using CloudFormation, specify --hotswap-fallback",
            code="SD_HOTSWAP_NON_HOTSWAPPABLE",
        )
    else:
        io_host.warn(
            "\n⚠️ The following non-hotswappable changes were found:",
            code="SD_HOTSWAP_NON_HOTSWAPPABLE",
        )

    for change in non_hotswappable_changes:
        if change.rejected_changes:
            io_host.warn(
                f"    logicalID: {change.logical_id}, type: {change.resource_type}, "
                f"rejected changes: {','.join(change.rejected_changes)}, reason: {change.reason}"
            )
        else:
            io_host.warn(
                f"    logicalID: {change.logical_id}, type: {change.resource_type}, "
                f"reason: {change.reason}"
            )
    io_host.warn("")
