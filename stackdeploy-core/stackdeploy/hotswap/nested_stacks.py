import logging
from dataclasses import dataclass
from typing import Dict, Optional

from botocore.exceptions import ClientError

from stackdeploy.aws.sdk import Sdk
from stackdeploy.constants import NESTED_STACK_TEMPLATE_METADATA_KEY
from stackdeploy.deploy.artifact import StackArtifact
from stackdeploy.deploy.stack import CloudFormationStack

from .evaluate import LazyListStackResources, NestedStackTemplates

LOG = logging.getLogger(__name__)


@dataclass
class TemplateWithNestedStacks:
    deployed_root_template: dict
    nested_stacks: Dict[str, NestedStackTemplates]


def load_current_template_with_nested_stacks(
    root_stack: StackArtifact,
    sdk: Sdk,
    retrieve_processed_template: bool = False,
    deployed_stack_name: Optional[str] = None,
) -> TemplateWithNestedStacks:
    """
    Reads the deployed template of a stack, and the generated and deployed templates of all the nested
    stacks it contains (recursively).

    :param deployed_stack_name: the name the root stack is deployed under, if not the name of the artifact
    """
    deployed_stack_name = deployed_stack_name or root_stack.stack_name
    deployed_template = load_current_template(
        deployed_stack_name, sdk, retrieve_processed_template
    )
    nested_stacks = _load_nested_stacks(
        root_stack,
        sdk,
        generated_template=root_stack.template,
        deployed_stack_name=deployed_stack_name,
    )
    return TemplateWithNestedStacks(deployed_template, nested_stacks)


def load_current_template(
    stack_name: str, sdk: Sdk, retrieve_processed_template: bool = False
) -> dict:
    stack = CloudFormationStack.lookup(sdk.cloudformation(), stack_name, retrieve_processed_template)
    return stack.template()


def is_managed_nested_stack(resource: dict) -> bool:
    """Whether the resource is a nested stack whose template is part of the local assembly."""
    return resource.get("Type") == "AWS::CloudFormation::Stack" and bool(
        (resource.get("Metadata") or {}).get(NESTED_STACK_TEMPLATE_METADATA_KEY)
    )


def _load_nested_stacks(
    root_stack: StackArtifact,
    sdk: Sdk,
    generated_template: dict,
    deployed_stack_name: Optional[str],
) -> Dict[str, NestedStackTemplates]:
    stack_resources = (
        LazyListStackResources(sdk, deployed_stack_name) if deployed_stack_name else None
    )
    result = {}
    for logical_id, resource in (generated_template.get("Resources") or {}).items():
        if not is_managed_nested_stack(resource):
            continue

        asset_path = resource["Metadata"][NESTED_STACK_TEMPLATE_METADATA_KEY]
        nested_generated_template = root_stack.read_nested_template(asset_path)

        nested_stack_arn = _get_nested_stack_arn(logical_id, stack_resources)
        # arn:aws:cloudformation:<region>:<account>:stack/<name>/<uuid>
        physical_name = nested_stack_arn.split("/")[1] if nested_stack_arn else None
        nested_deployed_template = load_current_template(physical_name, sdk) if physical_name else {}

        result[logical_id] = NestedStackTemplates(
            generated_template=nested_generated_template,
            deployed_template=nested_deployed_template,
            physical_name=physical_name,
            nested_stack_templates=_load_nested_stacks(
                root_stack,
                sdk,
                generated_template=nested_generated_template,
                deployed_stack_name=physical_name,
            ),
        )
    return result


def _get_nested_stack_arn(
    logical_id: str, stack_resources: Optional[LazyListStackResources]
) -> Optional[str]:
    if not stack_resources:
        return None
    try:
        resources = stack_resources.list_stack_resources()
    except ClientError as e:
        message = e.response.get("Error", {}).get("Message", "")
        if message.startswith("Stack with id ") and message.endswith(" does not exist"):
            return None
        raise
    for resource in resources:
        if resource.get("LogicalResourceId") == logical_id:
            return resource.get("PhysicalResourceId")
    return None
