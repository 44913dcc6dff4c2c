import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from stackdeploy.aws.sdk import Sdk
from stackdeploy.utils.archives import zip_string

from ..common import (
    CfnEvaluationException,
    ChangeHotswapResult,
    HotswappableChange,
    HotswappableChangeCandidate,
    classify_changes,
)
from ..diff import PropertyDifference
from ..evaluate import EvaluateCloudFormationTemplate
from ..registry import DetectorContext, HotswapDetector, register_detector

LOG = logging.getLogger(__name__)

HOTSWAPPABLE_FUNCTION_PROPERTIES = ["Code", "Environment", "Description"]

# total time to wait for a function update, in seconds
FUNCTION_UPDATE_TIMEOUT = 300


@dataclass
class LambdaFunctionCode:
    s3_bucket: Optional[str] = None
    s3_key: Optional[str] = None
    s3_object_version: Optional[str] = None
    image_uri: Optional[str] = None
    zip_file: Optional[bytes] = None


@dataclass
class LambdaFunctionConfigurations:
    description: Optional[str] = None
    environment: Optional[dict] = None


@dataclass
class LambdaFunctionChange:
    code: Optional[LambdaFunctionCode] = None
    configurations: Optional[LambdaFunctionConfigurations] = None


@register_detector
class LambdaVersionDetector(HotswapDetector):
    # a new version is published whenever the function itself is hotswapped
    resource_types = ("AWS::Lambda::Version",)

    def classify(self, logical_id, change, context) -> ChangeHotswapResult:
        return [
            HotswappableChange(
                service="lambda",
                resource_names=[],
                props_changed=[],
                apply=lambda sdk: None,
                resource_type=change.resource_type,
                logical_id=logical_id,
            )
        ]


@register_detector
class LambdaAliasDetector(HotswapDetector):
    # aliases are updated along with their function, only other changes to them are reported
    resource_types = ("AWS::Lambda::Alias",)

    def classify(self, logical_id, change, context) -> ChangeHotswapResult:
        ret = []
        classify_changes(change, ["FunctionVersion"]).report_non_hotswappable_property_changes(ret)
        return ret


@register_detector
class LambdaFunctionDetector(HotswapDetector):
    resource_types = ("AWS::Lambda::Function",)

    def classify(
        self, logical_id: str, change: HotswappableChangeCandidate, context: DetectorContext
    ) -> ChangeHotswapResult:
        evaluate = context.evaluate
        ret = []
        classified = classify_changes(change, HOTSWAPPABLE_FUNCTION_PROPERTIES)
        classified.report_non_hotswappable_property_changes(ret)

        if not classified.names_of_hotswappable_props:
            return ret

        function_name = evaluate.establish_resource_physical_name(
            logical_id, change.new_properties.get("FunctionName")
        )
        versions, alias_names = versions_and_aliases(logical_id, evaluate)

        resource_names = [f"Lambda Function '{function_name}'"]
        resource_names += [
            f"Lambda Alias '{alias}' for Function '{function_name}'" for alias in alias_names
        ]
        if versions:
            resource_names.append(f"Lambda Version for Function '{function_name}'")

        # evaluated up front, an unresolvable expression must surface before anything is applied
        function_change = evaluate_lambda_function_props(
            classified.hotswappable_props, change.new_properties.get("Runtime"), evaluate
        )
        if function_change is None or not function_name:
            return ret

        def _apply(sdk: Sdk):
            apply_function_change(sdk, function_name, function_change, bool(versions), alias_names)

        ret.append(
            HotswappableChange(
                service="lambda",
                resource_names=resource_names,
                props_changed=classified.names_of_hotswappable_props,
                apply=_apply,
                resource_type=change.resource_type,
                logical_id=logical_id,
            )
        )
        return ret


def apply_function_change(
    sdk: Sdk,
    function_name: str,
    function_change: LambdaFunctionChange,
    publish_version: bool,
    alias_names: List[str],
) -> None:
    client = sdk.lambda_()

    if function_change.code is not None:
        code = function_change.code
        request = {
            "FunctionName": function_name,
            "S3Bucket": code.s3_bucket,
            "S3Key": code.s3_key,
            "S3ObjectVersion": code.s3_object_version,
            "ImageUri": code.image_uri,
            "ZipFile": code.zip_file,
        }
        response = client.update_function_code(**{k: v for k, v in request.items() if v is not None})
        wait_for_function_update(client, function_name, response)

    if function_change.configurations is not None:
        request = {"FunctionName": function_name}
        if function_change.configurations.description is not None:
            request["Description"] = function_change.configurations.description
        if function_change.configurations.environment is not None:
            request["Environment"] = function_change.configurations.environment
        response = client.update_function_configuration(**request)
        wait_for_function_update(client, function_name, response)

    # only a changed function is worth a new version
    if publish_version:
        version = client.publish_version(FunctionName=function_name)
        for alias in alias_names:
            client.update_alias(
                FunctionName=function_name, Name=alias, FunctionVersion=version["Version"]
            )


def wait_for_function_update(client, function_name: str, configuration: dict) -> None:
    """Waits for the last update of a function to finish, using the ``function_updated_v2`` waiter."""
    # updates of functions in a VPC, or with image code, take much longer
    slow_update = bool((configuration.get("VpcConfig") or {}).get("VpcId")) or (
        configuration.get("PackageType") == "Image"
    )
    delay = 5 if slow_update else 1
    LOG.debug("Waiting for the update of function %s to finish", function_name)
    client.get_waiter("function_updated_v2").wait(
        FunctionName=function_name,
        WaiterConfig={"Delay": delay, "MaxAttempts": FUNCTION_UPDATE_TIMEOUT // delay},
    )


def versions_and_aliases(logical_id: str, evaluate: EvaluateCloudFormationTemplate):
    """Returns the versions referencing the function, and the names of the aliases of those versions."""
    versions = [
        r for r in evaluate.find_references_to(logical_id) if r.get("Type") == "AWS::Lambda::Version"
    ]
    aliases = [
        r
        for version in versions
        for r in evaluate.find_references_to(version["LogicalId"])
        if r.get("Type") == "AWS::Lambda::Alias"
    ]
    alias_names = [
        evaluate.evaluate_cfn_expression((alias.get("Properties") or {}).get("Name"))
        for alias in aliases
    ]
    return versions, alias_names


def evaluate_lambda_function_props(
    hotswappable_props: Dict[str, PropertyDifference],
    runtime: Any,
    evaluate: EvaluateCloudFormationTemplate,
) -> Optional[LambdaFunctionChange]:
    code = None
    configurations = None
    for name, diff in hotswappable_props.items():
        if name == "Code":
            code = LambdaFunctionCode()
            new_code = diff.new_value or {}
            if "S3Bucket" in new_code:
                code.s3_bucket = evaluate.evaluate_cfn_expression(new_code["S3Bucket"])
            if "S3Key" in new_code:
                code.s3_key = evaluate.evaluate_cfn_expression(new_code["S3Key"])
            if "S3ObjectVersion" in new_code:
                code.s3_object_version = evaluate.evaluate_cfn_expression(
                    new_code["S3ObjectVersion"]
                )
            if "ImageUri" in new_code:
                code.image_uri = evaluate.evaluate_cfn_expression(new_code["ImageUri"])
            if "ZipFile" in new_code:
                # inline code has to be uploaded as a zip archive
                function_code = evaluate.evaluate_cfn_expression(new_code["ZipFile"])
                function_runtime = evaluate.evaluate_cfn_expression(runtime)
                if not function_runtime:
                    return None
                file_ext = determine_code_file_ext_from_runtime(function_runtime)
                code.zip_file = zip_string(f"index.{file_ext}", function_code)
        elif name == "Description":
            configurations = configurations or LambdaFunctionConfigurations()
            configurations.description = evaluate.evaluate_cfn_expression(diff.new_value)
        elif name == "Environment":
            configurations = configurations or LambdaFunctionConfigurations()
            configurations.environment = evaluate.evaluate_cfn_expression(diff.new_value)
        else:
            raise ValueError(f"Property {name} of a function cannot be hotswapped")

    if code is None and configurations is None:
        return None
    return LambdaFunctionChange(code=code, configurations=configurations)


def determine_code_file_ext_from_runtime(runtime: str) -> str:
    # inline code is only supported for Node.js and Python
    if runtime.startswith("node"):
        return "js"
    if runtime.startswith("python"):
        return "py"
    raise CfnEvaluationException(
        f"runtime {runtime} is unsupported, only node.js and python runtimes are currently supported."
    )
