import logging
import time

from botocore.exceptions import ClientError

from stackdeploy.aws.sdk import Sdk, select_operation_input
from stackdeploy.exceptions import StackDeployError
from stackdeploy.utils.collections import transform_object_keys
from stackdeploy.utils.strings import lower_case_first_character, to_str
from stackdeploy.utils.sync import retry

from ..common import ChangeHotswapResult, HotswappableChange, classify_changes
from ..registry import HotswapDetector, register_detector

LOG = logging.getLogger(__name__)

RESOLVER = "AWS::AppSync::Resolver"
FUNCTION_CONFIGURATION = "AWS::AppSync::FunctionConfiguration"
GRAPHQL_SCHEMA = "AWS::AppSync::GraphQLSchema"
API_KEY = "AWS::AppSync::ApiKey"

HOTSWAPPABLE_PROPERTIES = [
    "RequestMappingTemplate",
    "RequestMappingTemplateS3Location",
    "ResponseMappingTemplate",
    "ResponseMappingTemplateS3Location",
    "Code",
    "CodeS3Location",
    "Definition",
    "DefinitionS3Location",
    "Expires",
]

# the SDK only takes inline content, these are replaced by the content of the S3 object they point to
S3_LOCATION_PROPERTIES = {
    "requestMappingTemplateS3Location": "requestMappingTemplate",
    "responseMappingTemplateS3Location": "responseMappingTemplate",
    "definitionS3Location": "definition",
    "codeS3Location": "code",
}

SCHEMA_CREATION_POLL_INTERVAL = 1


@register_detector
class AppSyncDetector(HotswapDetector):
    resource_types = (RESOLVER, FUNCTION_CONFIGURATION, GRAPHQL_SCHEMA, API_KEY)

    def classify(self, logical_id, change, context) -> ChangeHotswapResult:
        evaluate = context.evaluate
        resource_type = change.resource_type
        ret = []
        classified = classify_changes(change, HOTSWAPPABLE_PROPERTIES)
        classified.report_non_hotswappable_property_changes(ret)

        if not classified.names_of_hotswappable_props:
            return ret

        arn = evaluate.establish_resource_physical_name(
            logical_id,
            change.new_properties.get("Name") if resource_type == FUNCTION_CONFIGURATION else None,
        )
        if resource_type == RESOLVER and arn:
            # arn:aws:appsync:<region>:<account>:apis/<apiId>/types/<type>/resolvers/<field>
            arn_parts = arn.split("/")
            physical_name = f"{arn_parts[3]}.{arn_parts[5]}"
        else:
            physical_name = arn

        def _apply(sdk: Sdk):
            if not physical_name:
                return
            properties = dict(change.old_properties)
            # hotswappable properties come from the new template, the rest is deployed
            for name in HOTSWAPPABLE_PROPERTIES:
                properties[name] = change.new_properties.get(name)
            request = transform_object_keys(
                evaluate.evaluate_cfn_expression(properties), lower_case_first_character
            )
            for location_key, content_key in S3_LOCATION_PROPERTIES.items():
                location = request.pop(location_key, None)
                if location:
                    request[content_key] = fetch_file_from_s3(location, sdk)

            client = sdk.appsync()
            if resource_type == RESOLVER:
                client.update_resolver(**select_operation_input(client, "UpdateResolver", request))
            elif resource_type == FUNCTION_CONFIGURATION:
                update_function(client, physical_name, request)
            elif resource_type == GRAPHQL_SCHEMA:
                update_schema(client, request)
            else:
                if not request.get("id"):
                    # the key id is optional in the template but required by the API
                    # arn:aws:appsync:<region>:<account>:apis/<apiId>/apikeys/<keyId>
                    arn_parts = physical_name.split("/")
                    if len(arn_parts) == 4:
                        request["id"] = arn_parts[3]
                client.update_api_key(**select_operation_input(client, "UpdateApiKey", request))

        ret.append(
            HotswappableChange(
                service="appsync",
                resource_names=[f"{resource_type} '{physical_name}'"],
                props_changed=classified.names_of_hotswappable_props,
                apply=_apply,
                resource_type=resource_type,
                logical_id=logical_id,
            )
        )
        return ret


def update_function(client, function_name: str, request: dict) -> None:
    # the version only applies to mapping templates, the runtime only to code
    if request.get("code"):
        request.pop("functionVersion", None)
    else:
        request.pop("runtime", None)

    function_id = None
    paginator = client.get_paginator("list_functions")
    for page in paginator.paginate(apiId=request["apiId"]):
        for function in page.get("functions") or []:
            if function.get("name") == function_name:
                function_id = function.get("functionId")
    request["functionId"] = function_id

    # updating several functions at once, or a function and the schema, is rejected by AppSync
    retry(
        lambda: client.update_function(**select_operation_input(client, "UpdateFunction", request)),
        retries=5,
        sleep=1,
        retry_on=_is_concurrent_modification,
    )


def update_schema(client, request: dict) -> None:
    response = client.start_schema_creation(
        **select_operation_input(client, "StartSchemaCreation", request)
    )
    while response.get("status") in ("PROCESSING", "DELETING"):
        time.sleep(SCHEMA_CREATION_POLL_INTERVAL)
        response = client.get_schema_creation_status(apiId=request["apiId"])
    if response.get("status") == "FAILED":
        raise StackDeployError(response.get("details") or "Schema creation failed")


def fetch_file_from_s3(s3_url: str, sdk: Sdk) -> str:
    # s3://<bucket>/<key>
    parts = s3_url.split("/")
    bucket = parts[2]
    key = "/".join(parts[3:])
    response = sdk.s3().get_object(Bucket=bucket, Key=key)
    return to_str(response["Body"].read())


def _is_concurrent_modification(error: Exception) -> bool:
    return (
        isinstance(error, ClientError)
        and error.response.get("Error", {}).get("Code") == "ConcurrentModificationException"
    )
