from unittest.mock import MagicMock

import pytest
from click.testing import CliRunner

from stackdeploy.cli import main
from stackdeploy.deploy.deploy_stack import ChangeSetDeployment, DirectDeployment
from stackdeploy.deploy.results import (
    NeedRollbackFirstDeployStackResult,
    ReplacementRequiresRollbackStackResult,
    SuccessfulDeployStackResult,
)
from stackdeploy.exceptions import StackOperationError
from stackdeploy.hotswap.common import HotswapMode

TEMPLATE = """
Parameters:
  Env:
    Type: String
Resources:
  Queue:
    Type: AWS::SQS::Queue
"""


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def template_file(tmp_path):
    path = tmp_path / "stack.template.yaml"
    path.write_text(TEMPLATE)
    return str(path)


@pytest.fixture(autouse=True)
def sdk(monkeypatch):
    sdk = MagicMock()
    monkeypatch.setattr(main, "Sdk", MagicMock(return_value=sdk))
    return sdk


@pytest.fixture
def deploy_result(monkeypatch):
    """Makes ``deploy_stack`` return the given result and records the options it was called with."""
    calls = []

    def _set(result):
        def _deploy_stack(options):
            calls.append(options)
            return result

        monkeypatch.setattr(main, "deploy_stack", _deploy_stack)
        return calls

    return _set


class TestDeploy:
    def test_successful_deploy(self, runner, template_file, deploy_result, sdk):
        calls = deploy_result(
            SuccessfulDeployStackResult(
                no_op=False,
                outputs={"QueueUrl": "https://queue"},
                stack_arn="arn:aws:cloudformation:us-east-1:123456789012:stack/my-stack/1",
            )
        )

        result = runner.invoke(
            main.stackdeploy,
            [
                "deploy",
                template_file,
                "--stack-name",
                "my-stack",
                "--parameter",
                "Env=prod",
                "--tag",
                "team=platform",
            ],
        )

        assert result.exit_code == 0, result.output
        assert "✅  my-stack" in result.output
        assert "my-stack.QueueUrl = https://queue" in result.output
        assert "stack/my-stack/1" in result.output

        options = calls[0]
        assert options.sdk is sdk
        assert options.stack.stack_name == "my-stack"
        assert options.parameters == {"Env": "prod"}
        assert options.tags == [{"Key": "team", "Value": "platform"}]
        assert options.stack.tags == {"team": "platform"}
        assert options.rollback
        assert options.hotswap == HotswapMode.FULL_DEPLOYMENT
        assert isinstance(options.deployment_method, ChangeSetDeployment)
        assert options.deployment_method.execute

    def test_no_changes(self, runner, template_file, deploy_result):
        deploy_result(SuccessfulDeployStackResult(no_op=True))

        result = runner.invoke(
            main.stackdeploy, ["deploy", template_file, "--stack-name", "my-stack"]
        )

        assert result.exit_code == 0, result.output
        assert "my-stack (no changes)" in result.output

    def test_options_are_passed_on(self, runner, template_file, deploy_result):
        calls = deploy_result(SuccessfulDeployStackResult(no_op=False))

        result = runner.invoke(
            main.stackdeploy,
            [
                "deploy",
                template_file,
                "--stack-name",
                "my-stack",
                "--change-set-name",
                "my-change-set",
                "--no-execute",
                "--no-rollback",
                "--hotswap-fallback",
                "--hotswap-ecs-minimum-healthy-percent",
                "50",
                "--force",
            ],
        )

        assert result.exit_code == 0, result.output
        options = calls[0]
        assert options.deployment_method.change_set_name == "my-change-set"
        assert not options.deployment_method.execute
        assert not options.rollback
        assert options.force
        assert options.hotswap == HotswapMode.FALL_BACK
        ecs = options.hotswap_property_overrides.ecs_hotswap_properties
        assert ecs.minimum_healthy_percent == 50
        assert ecs.maximum_healthy_percent is None

    def test_direct_deployment(self, runner, template_file, deploy_result):
        calls = deploy_result(SuccessfulDeployStackResult(no_op=False))

        result = runner.invoke(
            main.stackdeploy,
            ["deploy", template_file, "--stack-name", "my-stack", "--method", "direct", "--hotswap"],
        )

        assert result.exit_code == 0, result.output
        assert isinstance(calls[0].deployment_method, DirectDeployment)
        assert calls[0].hotswap == HotswapMode.HOTSWAP_ONLY

    def test_direct_deployment_rejects_change_set_options(
        self, runner, template_file, deploy_result
    ):
        calls = deploy_result(SuccessfulDeployStackResult(no_op=False))

        result = runner.invoke(
            main.stackdeploy,
            ["deploy", template_file, "--stack-name", "s", "--method", "direct", "--no-execute"],
        )

        assert result.exit_code != 0
        assert "❌ Error:" in result.output
        assert "require --method change-set" in result.output
        assert calls == []

    @pytest.mark.parametrize("option", ["--parameter", "--tag"])
    def test_invalid_key_value(self, runner, template_file, deploy_result, option):
        deploy_result(SuccessfulDeployStackResult(no_op=False))

        result = runner.invoke(
            main.stackdeploy, ["deploy", template_file, "--stack-name", "s", option, "novalue"]
        )

        assert result.exit_code == 2
        assert "expected KEY=VALUE" in result.output

    @pytest.mark.parametrize(
        "deploy_result_value,message",
        [
            (
                NeedRollbackFirstDeployStackResult(reason="replacement", status="UPDATE_FAILED"),
                "includes a replacement",
            ),
            (
                NeedRollbackFirstDeployStackResult(reason="not-norollback", status="UPDATE_FAILED"),
                "needs to be rolled back",
            ),
            (ReplacementRequiresRollbackStackResult(), "Deploy without --no-rollback"),
        ],
    )
    def test_rollback_results_fail(
        self, runner, template_file, deploy_result, deploy_result_value, message
    ):
        deploy_result(deploy_result_value)

        result = runner.invoke(main.stackdeploy, ["deploy", template_file, "--stack-name", "s"])

        assert result.exit_code == 1
        assert "❌ Error:" in result.output
        assert message in result.output

    def test_replacement_on_paused_stack_asks_for_rollback_only(
        self, runner, template_file, deploy_result
    ):
        deploy_result(
            NeedRollbackFirstDeployStackResult(reason="replacement", status="UPDATE_FAILED")
        )

        result = runner.invoke(main.stackdeploy, ["deploy", template_file, "--stack-name", "s"])

        assert result.exit_code == 1
        assert "Roll back the stack first." in result.output
        assert "--no-rollback" not in result.output

    def test_stack_operation_errors_name_the_stack(self, runner, template_file, monkeypatch):
        def _deploy_stack(options):
            raise StackOperationError("Stack deploy failed", stack_name="other-stack")

        monkeypatch.setattr(main, "deploy_stack", _deploy_stack)

        result = runner.invoke(main.stackdeploy, ["deploy", template_file, "--stack-name", "s"])

        assert result.exit_code == 1
        assert "❌ Error (other-stack): Stack deploy failed" in result.output

    def test_unexpected_errors_are_wrapped(self, runner, template_file, monkeypatch):
        def _deploy_stack(options):
            raise ValueError("the stack exploded")

        monkeypatch.setattr(main, "deploy_stack", _deploy_stack)

        result = runner.invoke(main.stackdeploy, ["deploy", template_file, "--stack-name", "s"])

        assert result.exit_code == 1
        assert "❌ Error: the stack exploded" in result.output

    def test_missing_template(self, runner, tmp_path):
        result = runner.invoke(
            main.stackdeploy, ["deploy", str(tmp_path / "missing.yaml"), "--stack-name", "s"]
        )

        assert result.exit_code == 2


class TestDestroy:
    def test_destroy(self, runner, monkeypatch, sdk):
        calls = []
        monkeypatch.setattr(main, "destroy_stack", calls.append)

        result = runner.invoke(
            main.stackdeploy, ["destroy", "--stack-name", "my-stack", "--role-arn", "arn:role"]
        )

        assert result.exit_code == 0, result.output
        assert "my-stack: destroyed" in result.output
        options = calls[0]
        assert options.stack.stack_name == "my-stack"
        assert options.stack.template == {}
        assert options.role_arn == "arn:role"
        assert options.sdk is sdk

    def test_destroy_failure(self, runner, monkeypatch):
        def _destroy_stack(options):
            raise RuntimeError("stack is protected")

        monkeypatch.setattr(main, "destroy_stack", _destroy_stack)

        result = runner.invoke(main.stackdeploy, ["destroy", "--stack-name", "my-stack"])

        assert result.exit_code == 1
        assert "❌ Error: stack is protected" in result.output


def test_version(runner):
    result = runner.invoke(main.stackdeploy, ["--version"])

    assert result.exit_code == 0
    assert result.output.startswith("stackdeploy ")
