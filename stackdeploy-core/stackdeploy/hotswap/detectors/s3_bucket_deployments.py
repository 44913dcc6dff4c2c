import json
from typing import Any

from ..common import (
    ChangeHotswapResult,
    HotswappableChange,
    HotswappableChangeCandidate,
    report_non_hotswappable_resource,
)
from ..evaluate import EvaluateCloudFormationTemplate
from ..registry import HotswapDetector, register_detector

BUCKET_DEPLOYMENT_TYPE = "Custom::CDKBucketDeployment"

# the custom resource handler checks these request fields exist, it never uses them during an update
REQUIRED_BY_CFN = "required-to-be-present-by-cfn"


@register_detector
class BucketDeploymentDetector(HotswapDetector):
    """
    Hotswaps the contents of a bucket deployment by invoking its custom resource handler with an
    update request, the same request CloudFormation would send.
    """

    resource_types = (BUCKET_DEPLOYMENT_TYPE,)

    def classify(self, logical_id, change, context) -> ChangeHotswapResult:
        evaluate = context.evaluate
        # the ARN of the handler, which invoke() accepts as well as the name
        function_name = evaluate.evaluate_cfn_expression(change.new_properties.get("ServiceToken"))
        if not function_name:
            return []

        properties = {k: v for k, v in change.new_properties.items() if k != "ServiceToken"}
        resource_properties = evaluate.evaluate_cfn_expression(properties)

        def _apply(sdk):
            payload = {
                "RequestType": "Update",
                "ResponseURL": REQUIRED_BY_CFN,
                "PhysicalResourceId": REQUIRED_BY_CFN,
                "StackId": REQUIRED_BY_CFN,
                "RequestId": REQUIRED_BY_CFN,
                "LogicalResourceId": REQUIRED_BY_CFN,
                # CloudFormation sends all property values as strings
                "ResourceProperties": stringify_object(resource_properties),
            }
            sdk.lambda_().invoke(FunctionName=function_name, Payload=json.dumps(payload))

        return [
            HotswappableChange(
                service="custom-s3-deployment",
                resource_names=[
                    f"Contents of S3 Bucket '{resource_properties.get('DestinationBucketName')}'"
                ],
                props_changed=["*"],
                apply=_apply,
                resource_type=change.resource_type,
                logical_id=logical_id,
            )
        ]


@register_detector
class IamPolicyDetector(HotswapDetector):
    resource_types = ("AWS::IAM::Policy",)

    def classify(self, logical_id, change, context) -> ChangeHotswapResult:
        # the policy of a bucket deployment handler references the assets, it changes along with them
        if skip_change_for_bucket_deployment_policy(logical_id, change, context.evaluate):
            return []
        return report_non_hotswappable_resource(
            change, "This resource type is not supported for hotswap deployments"
        )


def skip_change_for_bucket_deployment_policy(
    policy_logical_id: str,
    change: HotswappableChangeCandidate,
    evaluate: EvaluateCloudFormationTemplate,
) -> bool:
    """
    Whether the policy is only used by the handlers of bucket deployments: it is attached to roles that are
    only used by functions, which in turn are only used by bucket deployments.
    """
    if change.resource_type != "AWS::IAM::Policy":
        return False

    roles = change.new_properties.get("Roles")
    # a policy without roles is not used by a custom resource
    if not roles:
        return False

    for role in roles:
        role_logical_id = role.get("Ref") if isinstance(role, dict) else None
        if not role_logical_id or not evaluate.find_physical_name_for(role_logical_id):
            return False

        role_users = [
            r
            for r in evaluate.find_references_to(role_logical_id)
            if r["LogicalId"] != policy_logical_id
        ]
        if not role_users:
            return False
        for role_user in role_users:
            if role_user.get("Type") != "AWS::Lambda::Function":
                return False
            function_users = evaluate.find_references_to(role_user["LogicalId"])
            if not function_users:
                return False
            if any(r.get("Type") != BUCKET_DEPLOYMENT_TYPE for r in function_users):
                return False

    return True


def stringify_object(obj: Any) -> Any:
    if obj is None:
        return obj
    if isinstance(obj, list):
        return [stringify_object(item) for item in obj]
    if isinstance(obj, dict):
        return {key: stringify_object(value) for key, value in obj.items()}
    if isinstance(obj, bool):
        return "true" if obj else "false"
    if isinstance(obj, float) and obj.is_integer():
        return str(int(obj))
    return str(obj)
