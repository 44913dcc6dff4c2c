import pytest

from stackdeploy.hotswap.evaluate import EvaluateCloudFormationTemplate


@pytest.fixture
def evaluate_template(sdk):
    """Creates an evaluator for the stack "stack", backed by the fake CloudFormation."""

    def _create(template: dict, parameters: dict = None, nested_stacks=None):
        return EvaluateCloudFormationTemplate(
            stack_name="stack",
            template=template,
            parameters=parameters or {},
            account="123456789012",
            region="us-east-1",
            partition="aws",
            sdk=sdk,
            nested_stacks=nested_stacks,
        )

    return _create
