"""
Evaluation of CloudFormation expressions against the currently deployed stack.

Hotswap detectors need the physical names of resources, and the values of expressions like ``Fn::Sub`` in
the properties they update. Those are resolved from the template parameters, the pseudo parameters, the
resources of the deployed stack (``ListStackResources``) and the exports of the account (``ListExports``).
"""

import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from stackdeploy.aws.sdk import Sdk

from .common import CfnEvaluationException

LOG = logging.getLogger(__name__)

SUB_PLACEHOLDER_REGEX = re.compile(r"\$\{([^}]*)\}")


@dataclass
class NestedStackTemplates:
    """The generated and the deployed template of a nested stack, with its own nested stacks."""

    generated_template: dict
    deployed_template: dict
    # None if the nested stack is not deployed yet
    physical_name: Optional[str] = None
    nested_stack_templates: Dict[str, "NestedStackTemplates"] = field(default_factory=dict)


class LazyListStackResources:
    """Lists the resources of a stack on first use, and caches them."""

    def __init__(self, sdk: Sdk, stack_name: str):
        self.sdk = sdk
        self.stack_name = stack_name
        self._resources: Optional[List[dict]] = None
        self._lock = threading.Lock()

    def list_stack_resources(self) -> List[dict]:
        with self._lock:
            if self._resources is None:
                self._resources = self._fetch()
            return self._resources

    def _fetch(self) -> List[dict]:
        cfn = self.sdk.cloudformation()
        resources = []
        kwargs = {"StackName": self.stack_name}
        while True:
            response = cfn.list_stack_resources(**kwargs)
            resources.extend(response.get("StackResourceSummaries") or [])
            if not response.get("NextToken"):
                return resources
            kwargs["NextToken"] = response["NextToken"]


class LazyLookupExport:
    """Looks up stack exports by name, reading pages of ``ListExports`` only as far as needed."""

    def __init__(self, sdk: Sdk):
        self.sdk = sdk
        self._cached: Dict[str, dict] = {}
        self._next_token: Optional[str] = None
        self._exhausted = False
        self._lock = threading.Lock()

    def lookup_export(self, name: str) -> Optional[dict]:
        with self._lock:
            while name not in self._cached and not self._exhausted:
                kwargs = {"NextToken": self._next_token} if self._next_token else {}
                response = self.sdk.cloudformation().list_exports(**kwargs)
                for export in response.get("Exports") or []:
                    self._cached[export["Name"]] = export
                self._next_token = response.get("NextToken")
                self._exhausted = not self._next_token
            return self._cached.get(name)


#
# formats of the attributes that can be derived from the physical id of a resource
#


def _iam_arn(p: dict) -> str:
    # IAM resources are global, their ARNs have no region
    return f"arn:{p['partition']}:{p['service']}::{p['account']}:{p['resource_type']}/{p['name']}"


def _colon_arn(p: dict) -> str:
    return (
        f"arn:{p['partition']}:{p['service']}:{p['region']}:{p['account']}:"
        f"{p['resource_type']}:{p['name']}"
    )


def _slash_arn(p: dict) -> str:
    return (
        f"arn:{p['partition']}:{p['service']}:{p['region']}:{p['account']}:"
        f"{p['resource_type']}/{p['name']}"
    )


def _s3_arn(p: dict) -> str:
    return f"arn:{p['partition']}:{p['service']}:::{p['name']}"


def _arn_path_part(index: int) -> Callable[[dict], str]:
    # e.g. arn:aws:appsync:us-east-1:111111111111:apis/<apiId>/functions/<functionId>
    def _fmt(p: dict) -> str:
        return p["name"].split("/")[index]

    return _fmt


RESOURCE_TYPE_SPECIAL_NAMES = {"AWS::Events::EventBus": "event-bus"}

RESOURCE_TYPE_ATTRIBUTES_FORMATS: Dict[str, Dict[str, Callable[[dict], str]]] = {
    "AWS::IAM::Role": {"Arn": _iam_arn},
    "AWS::IAM::User": {"Arn": _iam_arn},
    "AWS::IAM::Group": {"Arn": _iam_arn},
    "AWS::S3::Bucket": {"Arn": _s3_arn},
    "AWS::Lambda::Function": {"Arn": _colon_arn},
    "AWS::Events::EventBus": {"Arn": _slash_arn, "Name": lambda p: p["name"]},
    "AWS::DynamoDB::Table": {"Arn": _slash_arn},
    "AWS::AppSync::GraphQLApi": {"ApiId": _arn_path_part(1)},
    "AWS::AppSync::FunctionConfiguration": {"FunctionId": _arn_path_part(3)},
    "AWS::AppSync::DataSource": {"Name": _arn_path_part(3)},
    "AWS::KMS::Key": {"Arn": _slash_arn},
}


class EvaluateCloudFormationTemplate:
    def __init__(
        self,
        stack_name: str,
        template: dict,
        parameters: Dict[str, Any],
        account: str,
        region: str,
        partition: str,
        sdk: Sdk,
        nested_stacks: Dict[str, NestedStackTemplates] = None,
        stack_resources: LazyListStackResources = None,
        lookup_export: LazyLookupExport = None,
    ):
        self.stack_name = stack_name
        self.template = template or {}
        self.account = account
        self.region = region
        self.partition = partition
        self.sdk = sdk
        self.nested_stacks = nested_stacks or {}
        self.context = {
            "AWS::AccountId": account,
            "AWS::Region": region,
            "AWS::Partition": partition,
            **(parameters or {}),
        }
        self.stack_resources = stack_resources or LazyListStackResources(sdk, stack_name)
        # exports are account wide, nested evaluators share the lookup
        self.lookup_export = lookup_export or LazyLookupExport(sdk)
        self._url_suffix: Optional[str] = None

    def create_nested_evaluate(
        self, stack_name: str, nested_template: dict, nested_stack_parameters: Optional[dict]
    ) -> "EvaluateCloudFormationTemplate":
        """Returns an evaluator for a nested stack, with its parameters evaluated in this stack."""
        evaluated_params = self.evaluate_cfn_expression(nested_stack_parameters) or {}
        return EvaluateCloudFormationTemplate(
            stack_name=stack_name,
            template=nested_template,
            parameters=evaluated_params,
            account=self.account,
            region=self.region,
            partition=self.partition,
            sdk=self.sdk,
            nested_stacks=self.nested_stacks,
            lookup_export=self.lookup_export,
        )

    def establish_resource_physical_name(
        self, logical_id: str, physical_name_in_template: Any
    ) -> Optional[str]:
        """
        Returns the physical name of a resource: the evaluated name from the template if it has one, otherwise
        the name of the resource in the deployed stack.
        """
        if physical_name_in_template is not None:
            try:
                return self.evaluate_cfn_expression(physical_name_in_template)
            except CfnEvaluationException as e:
                LOG.debug("Unable to evaluate the name of %s, looking it up instead: %s", logical_id, e)
        return self.find_physical_name_for(logical_id)

    def find_physical_name_for(self, logical_id: str) -> Optional[str]:
        for resource in self.stack_resources.list_stack_resources():
            if resource.get("LogicalResourceId") == logical_id:
                return resource.get("PhysicalResourceId")
        return None

    def find_references_to(self, logical_id: str) -> List[dict]:
        """Returns the definitions (with an added ``LogicalId``) of all resources mentioning the given id."""
        result = []
        for resource_id, definition in (self.template.get("Resources") or {}).items():
            if resource_id != logical_id and self._references(logical_id, definition):
                result.append({**definition, "LogicalId": resource_id})
        return result

    def evaluate_cfn_expression(self, expression: Any) -> Any:
        if expression is None:
            return None
        if isinstance(expression, list):
            return [self.evaluate_cfn_expression(item) for item in expression]
        if isinstance(expression, dict):
            intrinsic = self._parse_intrinsic(expression)
            if intrinsic:
                return self._evaluate_intrinsic(*intrinsic)
            return {key: self.evaluate_cfn_expression(value) for key, value in expression.items()}
        return expression

    #
    # intrinsic functions
    #

    def _evaluate_intrinsic(self, name: str, args: Any) -> Any:
        handler = self._intrinsics().get(name)
        if not handler:
            raise CfnEvaluationException(f"CloudFormation function {name} is not supported")
        args = args if isinstance(args, list) else [args]
        return handler(*args)

    def _intrinsics(self) -> Dict[str, Callable]:
        return {
            "Ref": self._fn_ref,
            "Fn::GetAtt": self._fn_get_att,
            "Fn::Join": self._fn_join,
            "Fn::Split": self._fn_split,
            "Fn::Select": self._fn_select,
            "Fn::Sub": self._fn_sub,
            "Fn::ImportValue": self._fn_import_value,
        }

    def _fn_join(self, separator: str, values: Any) -> str:
        evaluated = self.evaluate_cfn_expression(values)
        return separator.join(str(v) for v in evaluated)

    def _fn_split(self, separator: str, value: Any) -> List[str]:
        return self.evaluate_cfn_expression(value).split(separator)

    def _fn_select(self, index: Any, values: Any) -> Any:
        evaluated = self.evaluate_cfn_expression(values)
        return evaluated[int(self.evaluate_cfn_expression(index))]

    def _fn_ref(self, logical_id: str) -> str:
        target = self._find_ref_target(logical_id)
        if target:
            return target
        raise CfnEvaluationException(
            f"Parameter or resource '{logical_id}' could not be found for evaluation"
        )

    def _fn_get_att(self, logical_id: str, attribute_name: Any = None) -> str:
        if attribute_name is None:
            # the short form "LogicalId.Attribute"
            logical_id, _, attribute_name = logical_id.partition(".")
        attribute_name = self.evaluate_cfn_expression(attribute_name)
        value = self._find_get_att_target(logical_id, attribute_name)
        if value:
            return value
        raise CfnEvaluationException(
            f"Attribute '{attribute_name}' of resource '{logical_id}' could not be found for evaluation"
        )

    def _fn_sub(self, template: str, explicit_placeholders: dict = None) -> str:
        placeholders = self.evaluate_cfn_expression(explicit_placeholders) or {}

        def _replace(match: re.Match) -> str:
            key = match.group(1)
            if key.startswith("!"):
                # ${!Literal} renders as ${Literal}
                return "${" + key[1:] + "}"
            if key in placeholders:
                return str(placeholders[key])
            if "." in key:
                logical_id, _, attribute = key.partition(".")
                return str(self._fn_get_att(logical_id, attribute))
            return str(self._fn_ref(key))

        return SUB_PLACEHOLDER_REGEX.sub(_replace, template)

    def _fn_import_value(self, name: Any) -> str:
        name = self.evaluate_cfn_expression(name)
        exported = self.lookup_export.lookup_export(name)
        if not exported:
            raise CfnEvaluationException(f"Export '{name}' could not be found for evaluation")
        if not exported.get("Value"):
            raise CfnEvaluationException(f"Export '{name}' exists without a value")
        return exported["Value"]

    #
    # lookups
    #

    def _find_ref_target(self, logical_id: str) -> Optional[str]:
        if logical_id == "AWS::URLSuffix":
            if not self._url_suffix:
                self._url_suffix = self.sdk.url_suffix()
            return self._url_suffix

        # parameters given to the stack, then the defaults of the template parameters
        parameter_target = self.context.get(logical_id)
        if parameter_target:
            return parameter_target
        default_value = ((self.template.get("Parameters") or {}).get(logical_id) or {}).get("Default")
        if default_value:
            return default_value

        # otherwise a resource of the deployed stack
        return self._find_get_att_target(logical_id)

    def _find_get_att_target(self, logical_id: str, attribute: str = None) -> Optional[str]:
        # outputs of this stack, referenced by the parent of a nested stack
        if logical_id == "Outputs" and attribute:
            output = (self.template.get("Outputs") or {}).get(attribute) or {}
            return self.evaluate_cfn_expression(output.get("Value"))

        resource = next(
            (
                r
                for r in self.stack_resources.list_stack_resources()
                if r.get("LogicalResourceId") == logical_id
            ),
            None,
        )
        if not resource:
            return None

        if (
            resource.get("ResourceType") == "AWS::CloudFormation::Stack"
            and attribute
            and attribute.startswith("Outputs.")
        ):
            nested_stack = self._find_nested_stack(logical_id, self.nested_stacks)
            if not nested_stack or not nested_stack.physical_name:
                # a newly created nested stack, which has no outputs yet
                return None
            nested_evaluate = self.create_nested_evaluate(
                nested_stack.physical_name,
                nested_stack.generated_template,
                nested_stack.generated_template.get("Parameters"),
            )
            return nested_evaluate.evaluate_cfn_expression(
                {"Fn::GetAtt": attribute.split(".", 1)}
            )

        return self._format_resource_attribute(resource, attribute)

    def _find_nested_stack(
        self, logical_id: str, nested_stacks: Dict[str, NestedStackTemplates]
    ) -> Optional[NestedStackTemplates]:
        for nested_logical_id, nested_stack in nested_stacks.items():
            if nested_logical_id == logical_id:
                return nested_stack
            found = self._find_nested_stack(logical_id, nested_stack.nested_stack_templates)
            if found:
                return found
        return None

    def _format_resource_attribute(self, resource: dict, attribute: Optional[str]) -> Optional[str]:
        physical_id = resource.get("PhysicalResourceId")
        # no attribute means a Ref, which is the physical id
        if not attribute:
            return physical_id

        resource_type = resource.get("ResourceType") or ""
        formats = RESOURCE_TYPE_ATTRIBUTES_FORMATS.get(resource_type)
        if not formats:
            raise CfnEvaluationException(
                f"We don't support attributes of the '{resource_type}' resource"
            )
        fmt = formats.get(attribute)
        if not fmt:
            raise CfnEvaluationException(
                f"We don't support the '{attribute}' attribute of the '{resource_type}' resource"
            )

        type_parts = resource_type.split("::")
        return fmt(
            {
                "partition": self.partition,
                "service": type_parts[1].lower(),
                "region": self.region,
                "account": self.account,
                "resource_type": RESOURCE_TYPE_SPECIAL_NAMES.get(resource_type)
                or type_parts[2].lower(),
                "name": physical_id,
            }
        )

    def _references(self, logical_id: str, element: Any) -> bool:
        if isinstance(element, str):
            return element == logical_id
        if isinstance(element, list):
            return any(self._references(logical_id, e) for e in element)
        if isinstance(element, dict):
            return any(self._references(logical_id, e) for e in element.values())
        return False

    @staticmethod
    def _parse_intrinsic(expression: dict):
        keys = list(expression.keys())
        if len(keys) == 1 and (keys[0].startswith("Fn::") or keys[0] == "Ref"):
            return keys[0], expression[keys[0]]
        return None
