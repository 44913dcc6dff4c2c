import pytest

from stackdeploy.hotswap import registry
from stackdeploy.hotswap.registry import HotswapDetector, get_detector, register_detector


@pytest.fixture(autouse=True)
def isolated_registry(monkeypatch):
    registry.load_builtin_detectors()
    monkeypatch.setattr(registry, "RESOURCE_DETECTORS", dict(registry.RESOURCE_DETECTORS))


@pytest.mark.parametrize(
    "resource_type",
    [
        "AWS::Lambda::Function",
        "AWS::Lambda::Version",
        "AWS::Lambda::Alias",
        "AWS::StepFunctions::StateMachine",
        "AWS::ECS::TaskDefinition",
        "AWS::CodeBuild::Project",
        "AWS::AppSync::Resolver",
        "AWS::AppSync::FunctionConfiguration",
        "AWS::AppSync::GraphQLSchema",
        "AWS::AppSync::ApiKey",
        "Custom::CDKBucketDeployment",
        "AWS::IAM::Policy",
        "AWS::CDK::Metadata",
    ],
)
def test_builtin_detectors(resource_type):
    assert isinstance(get_detector(resource_type), HotswapDetector)


def test_unknown_type():
    assert get_detector("AWS::SQS::Queue") is None


def test_register_detector():
    @register_detector
    class QueueDetector(HotswapDetector):
        resource_types = ("AWS::SQS::Queue", "AWS::SQS::QueuePolicy")

        def classify(self, logical_id, change, context):
            return []

    assert isinstance(get_detector("AWS::SQS::Queue"), QueueDetector)
    assert get_detector("AWS::SQS::Queue") is get_detector("AWS::SQS::QueuePolicy")


def test_later_registration_replaces_detector():
    @register_detector
    class OtherFunctionDetector(HotswapDetector):
        resource_types = ("AWS::Lambda::Function",)

        def classify(self, logical_id, change, context):
            return []

    assert isinstance(get_detector("AWS::Lambda::Function"), OtherFunctionDetector)
