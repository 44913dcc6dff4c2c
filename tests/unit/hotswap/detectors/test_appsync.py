import io

import pytest

from stackdeploy.exceptions import StackDeployError
from stackdeploy.hotswap.detectors import appsync
from tests.unit.conftest import client_error
from tests.unit.hotswap.detectors.conftest import mock_client

API_ARN = "arn:aws:appsync:us-east-1:123456789012:apis/api1"


def appsync_template(logical_id: str, resource_type: str, **properties) -> dict:
    return {"Resources": {logical_id: {"Type": resource_type, "Properties": properties}}}


@pytest.fixture
def appsync_client(cfn, sdk):
    cfn.resources["stack"] = [
        {
            "LogicalResourceId": "Resolver",
            "PhysicalResourceId": f"{API_ARN}/types/Query/resolvers/getItem",
        },
        {"LogicalResourceId": "Schema", "PhysicalResourceId": "api1GraphQLSchema"},
        {"LogicalResourceId": "ApiKey", "PhysicalResourceId": f"{API_ARN}/apikeys/key1"},
    ]
    client = mock_client("appsync")
    sdk.clients["appsync"] = client
    return client


class TestResolver:
    @staticmethod
    def resolver(**properties) -> dict:
        return appsync_template(
            "Resolver",
            "AWS::AppSync::Resolver",
            ApiId="api1",
            TypeName="Query",
            FieldName="getItem",
            DataSourceName="items",
            ResponseMappingTemplate="$util.toJson($ctx.result)",
            **properties,
        )

    def test_mapping_template_change(self, detect, sdk, appsync_client):
        [change] = detect(
            self.resolver(RequestMappingTemplate="v1"),
            self.resolver(RequestMappingTemplate="v2"),
            "Resolver",
        )

        assert change.resource_names == ["AWS::AppSync::Resolver 'Query.getItem'"]

        change.apply(sdk)

        appsync_client.update_resolver.assert_called_once_with(
            apiId="api1",
            typeName="Query",
            fieldName="getItem",
            dataSourceName="items",
            requestMappingTemplate="v2",
            responseMappingTemplate="$util.toJson($ctx.result)",
        )

    def test_template_from_s3(self, detect, sdk, appsync_client):
        sdk.s3().get_object.return_value = {"Body": io.BytesIO(b"#set($v2 = true)")}
        [change] = detect(
            self.resolver(RequestMappingTemplateS3Location="s3://assets/templates/v1.vtl"),
            self.resolver(RequestMappingTemplateS3Location="s3://assets/templates/v2.vtl"),
            "Resolver",
        )

        change.apply(sdk)

        sdk.s3().get_object.assert_called_once_with(Bucket="assets", Key="templates/v2.vtl")
        kwargs = appsync_client.update_resolver.call_args.kwargs
        assert kwargs["requestMappingTemplate"] == "#set($v2 = true)"
        assert "requestMappingTemplateS3Location" not in kwargs

    def test_other_properties_are_rejected(self, detect, appsync_client):
        [rejected] = detect(
            self.resolver(Kind="UNIT"), self.resolver(Kind="PIPELINE"), "Resolver"
        )

        assert rejected.rejected_changes == ["Kind"]


class TestFunctionConfiguration:
    @staticmethod
    def function(**properties) -> dict:
        return appsync_template(
            "Function",
            "AWS::AppSync::FunctionConfiguration",
            ApiId="api1",
            Name="getItemFn",
            DataSourceName="items",
            FunctionVersion="2018-05-29",
            **properties,
        )

    @pytest.fixture
    def functions(self, appsync_client):
        appsync_client.get_paginator.return_value.paginate.return_value = [
            {"functions": [{"name": "other", "functionId": "f0"}]},
            {"functions": [{"name": "getItemFn", "functionId": "f1"}]},
        ]

    def test_mapping_template_change(self, detect, sdk, appsync_client, functions):
        [change] = detect(
            self.function(RequestMappingTemplate="v1"),
            self.function(RequestMappingTemplate="v2"),
            "Function",
        )

        assert change.resource_names == ["AWS::AppSync::FunctionConfiguration 'getItemFn'"]

        change.apply(sdk)

        appsync_client.get_paginator.assert_called_once_with("list_functions")
        appsync_client.update_function.assert_called_once_with(
            apiId="api1",
            name="getItemFn",
            dataSourceName="items",
            functionVersion="2018-05-29",
            requestMappingTemplate="v2",
            functionId="f1",
        )

    def test_code_change_drops_function_version(self, detect, sdk, appsync_client, functions):
        runtime = {"Name": "APPSYNC_JS", "RuntimeVersion": "1.0.0"}
        [change] = detect(
            self.function(Code="export function request() {}", Runtime=runtime),
            self.function(Code="export function request() { return {}; }", Runtime=runtime),
            "Function",
        )

        change.apply(sdk)

        kwargs = appsync_client.update_function.call_args.kwargs
        assert kwargs["code"] == "export function request() { return {}; }"
        assert kwargs["runtime"] == {"name": "APPSYNC_JS", "runtimeVersion": "1.0.0"}
        assert "functionVersion" not in kwargs

    def test_concurrent_modifications_are_retried(self, detect, sdk, appsync_client, functions):
        appsync_client.update_function.side_effect = [
            client_error("ConcurrentModificationException", "Schema is currently being altered"),
            {},
        ]
        [change] = detect(
            self.function(RequestMappingTemplate="v1"),
            self.function(RequestMappingTemplate="v2"),
            "Function",
        )

        change.apply(sdk)

        assert appsync_client.update_function.call_count == 2


class TestSchema:
    @pytest.fixture(autouse=True)
    def no_polling_delay(self, monkeypatch):
        monkeypatch.setattr(appsync, "SCHEMA_CREATION_POLL_INTERVAL", 0)

    @staticmethod
    def schema(definition: str) -> dict:
        return appsync_template(
            "Schema", "AWS::AppSync::GraphQLSchema", ApiId="api1", Definition=definition
        )

    def test_schema_is_created(self, detect, sdk, appsync_client):
        appsync_client.start_schema_creation.return_value = {"status": "PROCESSING"}
        appsync_client.get_schema_creation_status.side_effect = [
            {"status": "PROCESSING"},
            {"status": "SUCCESS"},
        ]
        [change] = detect(
            self.schema("type Query { a: String }"),
            self.schema("type Query { a: String, b: String }"),
            "Schema",
        )

        change.apply(sdk)

        appsync_client.start_schema_creation.assert_called_once_with(
            apiId="api1", definition="type Query { a: String, b: String }"
        )
        assert appsync_client.get_schema_creation_status.call_count == 2

    def test_schema_creation_failure(self, detect, sdk, appsync_client):
        appsync_client.start_schema_creation.return_value = {"status": "PROCESSING"}
        appsync_client.get_schema_creation_status.return_value = {
            "status": "FAILED",
            "details": "Syntax Error on line 1",
        }
        [change] = detect(self.schema("type Query"), self.schema("type Query {"), "Schema")

        with pytest.raises(StackDeployError, match="Syntax Error on line 1"):
            change.apply(sdk)


def test_api_key_expiry(detect, sdk, appsync_client):
    [change] = detect(
        appsync_template("ApiKey", "AWS::AppSync::ApiKey", ApiId="api1", Expires=1700000000),
        appsync_template("ApiKey", "AWS::AppSync::ApiKey", ApiId="api1", Expires=1800000000),
        "ApiKey",
    )

    change.apply(sdk)

    appsync_client.update_api_key.assert_called_once_with(
        apiId="api1", id="key1", expires=1800000000
    )
