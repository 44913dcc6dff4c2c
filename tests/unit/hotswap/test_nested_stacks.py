import json

import pytest

from stackdeploy.deploy.artifact import StackArtifact
from stackdeploy.hotswap.nested_stacks import (
    is_managed_nested_stack,
    load_current_template_with_nested_stacks,
)
from tests.unit.conftest import client_error, stack_arn

NESTED_TEMPLATE = {"Resources": {"Topic": {"Type": "AWS::SNS::Topic"}}}
INNER_TEMPLATE = {"Resources": {"Queue": {"Type": "AWS::SQS::Queue"}}}


def nested_stack_resource(asset_path: str) -> dict:
    return {
        "Type": "AWS::CloudFormation::Stack",
        "Metadata": {"aws:asset:path": asset_path},
        "Properties": {"TemplateURL": "https://bucket/template.json"},
    }


@pytest.fixture
def root_artifact(tmp_path):
    nested = {
        "Resources": {
            **NESTED_TEMPLATE["Resources"],
            "Inner": nested_stack_resource("inner.template.json"),
        }
    }
    (tmp_path / "nested.template.json").write_text(json.dumps(nested))
    (tmp_path / "inner.template.json").write_text(json.dumps(INNER_TEMPLATE))
    template = {
        "Resources": {
            "Nested": nested_stack_resource("nested.template.json"),
            "Unmanaged": {"Type": "AWS::CloudFormation::Stack"},
        }
    }
    return StackArtifact(stack_name="stack", template=template, assembly_directory=str(tmp_path))


def test_is_managed_nested_stack():
    assert is_managed_nested_stack(nested_stack_resource("a.json"))
    assert not is_managed_nested_stack({"Type": "AWS::CloudFormation::Stack"})
    assert not is_managed_nested_stack(
        {"Type": "AWS::SNS::Topic", "Metadata": {"aws:asset:path": "a.json"}}
    )


def test_deployed_nested_stacks(cfn, sdk, root_artifact):
    cfn.add_stack("stack", template={"Resources": {}})
    cfn.resources["stack"] = [
        {"LogicalResourceId": "Nested", "PhysicalResourceId": stack_arn("stack-Nested-ABC")}
    ]
    cfn.add_stack("stack-Nested-ABC", template=NESTED_TEMPLATE)
    cfn.resources["stack-Nested-ABC"] = [
        {"LogicalResourceId": "Inner", "PhysicalResourceId": stack_arn("stack-Inner-DEF")}
    ]
    cfn.add_stack("stack-Inner-DEF", template=INNER_TEMPLATE)

    result = load_current_template_with_nested_stacks(root_artifact, sdk)

    assert result.deployed_root_template == {"Resources": {}}
    assert list(result.nested_stacks) == ["Nested"]
    nested = result.nested_stacks["Nested"]
    assert nested.physical_name == "stack-Nested-ABC"
    assert nested.deployed_template == NESTED_TEMPLATE
    assert "Inner" in nested.generated_template["Resources"]
    inner = nested.nested_stack_templates["Inner"]
    assert inner.physical_name == "stack-Inner-DEF"
    assert inner.deployed_template == INNER_TEMPLATE
    assert inner.generated_template == INNER_TEMPLATE


def test_new_nested_stack(cfn, sdk, root_artifact):
    cfn.add_stack("stack", template={"Resources": {}})

    result = load_current_template_with_nested_stacks(root_artifact, sdk)

    nested = result.nested_stacks["Nested"]
    assert nested.physical_name is None
    assert nested.deployed_template == {}
    assert nested.nested_stack_templates["Inner"].physical_name is None


def test_root_stack_not_deployed(cfn, sdk, root_artifact):
    def _list_stack_resources(**kwargs):
        raise client_error("ValidationError", f"Stack with id {kwargs['StackName']} does not exist")

    cfn.handlers["list_stack_resources"] = _list_stack_resources

    result = load_current_template_with_nested_stacks(root_artifact, sdk)

    assert result.deployed_root_template == {}
    assert result.nested_stacks["Nested"].physical_name is None


def test_other_errors_are_raised(cfn, sdk, root_artifact):
    def _list_stack_resources(**kwargs):
        raise client_error("AccessDenied", "not allowed")

    cfn.handlers["list_stack_resources"] = _list_stack_resources

    with pytest.raises(Exception, match="not allowed"):
        load_current_template_with_nested_stacks(root_artifact, sdk)


def test_deployed_stack_name(cfn, sdk, root_artifact):
    cfn.add_stack("stack-prod", template={"Resources": {"Topic": {"Type": "AWS::SNS::Topic"}}})

    result = load_current_template_with_nested_stacks(
        root_artifact, sdk, retrieve_processed_template=True, deployed_stack_name="stack-prod"
    )

    assert result.deployed_root_template == {"Resources": {"Topic": {"Type": "AWS::SNS::Topic"}}}
    assert cfn.calls_to("get_template")[0] == {
        "StackName": "stack-prod",
        "TemplateStage": "Processed",
    }
    assert cfn.calls_to("list_stack_resources")[0]["StackName"] == "stack-prod"
