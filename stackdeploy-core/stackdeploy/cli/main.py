import logging
import traceback
from typing import Dict, List, Optional, Tuple

import click

from stackdeploy import config
from stackdeploy.activity.monitor import StackActivityProgress
from stackdeploy.aws.sdk import Sdk
from stackdeploy.constants import VERSION
from stackdeploy.deploy.artifact import StackArtifact
from stackdeploy.deploy.deploy_stack import (
    ChangeSetDeployment,
    DeployStackOptions,
    DestroyStackOptions,
    DirectDeployment,
    deploy_stack,
    destroy_stack,
)
from stackdeploy.deploy.results import (
    NeedRollbackFirstDeployStackResult,
    ReplacementRequiresRollbackStackResult,
)
from stackdeploy.hotswap.common import (
    EcsHotswapProperties,
    HotswapMode,
    HotswapPropertyOverrides,
)
from stackdeploy.io import CliIoHost, IoAction, IoMessageLevel
from stackdeploy.logging.setup import setup_logging_for_cli, setup_logging_from_config

from .exceptions import CLIError


class StackDeployCliGroup(click.Group):
    """
    The top-level ``stackdeploy`` command group. It implements global exception handling by:

    - Ignoring click exceptions (already handled)
    - Wrapping all unexpected exceptions in a ClickException (for a unified error message)
    """

    def invoke(self, ctx: click.Context):
        try:
            return super(StackDeployCliGroup, self).invoke(ctx)
        except click.exceptions.Exit:
            # raise Exit exceptions unmodified (e.g., raised on --help)
            raise
        except click.ClickException:
            if config.DEBUG:
                click.echo(traceback.format_exc())
            raise
        except Exception as e:
            if config.DEBUG:
                click.echo(traceback.format_exc())
            raise CLIError.from_exception(e) from e


def _setup_cli_debug() -> None:
    config.DEBUG = True
    setup_logging_for_cli(logging.DEBUG)


def _parse_key_values(values: Tuple[str, ...], option: str) -> Dict[str, str]:
    result = {}
    for value in values:
        key, sep, val = value.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got '{value}'", param_hint=option)
        result[key] = val
    return result


def _io_host(ci: bool) -> CliIoHost:
    level = IoMessageLevel.DEBUG if config.DEBUG else IoMessageLevel.INFO
    return CliIoHost(level=level, ci=ci)


@click.group(
    name="stackdeploy",
    help="Deploy, hotswap and destroy CloudFormation stacks",
    cls=StackDeployCliGroup,
    context_settings={
        "help_option_names": ["-h", "--help"],
        "show_default": True,
    },
)
@click.version_option(
    VERSION,
    "--version",
    "-v",
    message="stackdeploy %(version)s",
    help="Show the version of stackdeploy and exit",
)
@click.option("-d", "--debug", is_flag=True, help="Enable debug output")
@click.option("--region", type=str, help="The AWS region to deploy to")
@click.option("--ci", is_flag=True, default=config.CI, help="Write output suitable for CI logs")
@click.pass_context
def stackdeploy(ctx: click.Context, debug: bool, region: Optional[str], ci: bool) -> None:
    if debug:
        _setup_cli_debug()
    elif config.SD_LOG:
        setup_logging_from_config()
    ctx.obj = {"sdk": Sdk(region_name=region), "ci": ci}


@stackdeploy.command(name="deploy", short_help="Deploy a stack")
@click.argument("template", type=click.Path(exists=True, dir_okay=False, readable=True))
@click.option("--stack-name", required=True, help="The name of the stack")
@click.option("--parameter", "parameters", multiple=True, help="A stack parameter, as KEY=VALUE")
@click.option("--tag", "tags", multiple=True, help="A stack tag, as KEY=VALUE")
@click.option("--notification-arn", "notification_arns", multiple=True, help="SNS topic ARN")
@click.option("--role-arn", help="The role CloudFormation assumes to deploy the stack")
@click.option(
    "--method",
    type=click.Choice(["change-set", "direct"]),
    default="change-set",
    help="Deploy through a change set, or with CreateStack/UpdateStack",
)
@click.option("--change-set-name", help="The name of the change set to create")
@click.option("--no-execute", is_flag=True, help="Only create the change set, don't execute it")
@click.option(
    "--import-existing-resources",
    is_flag=True,
    help="Let the change set import existing resources that are not managed by any stack",
)
@click.option("--force", is_flag=True, help="Deploy even if the stack is up-to-date")
@click.option("--no-rollback", is_flag=True, help="Do not roll back the stack on failures")
@click.option(
    "--previous-parameters",
    is_flag=True,
    help="Keep the deployed value of parameters that are not given",
)
@click.option(
    "--hotswap",
    "hotswap",
    flag_value=HotswapMode.HOTSWAP_ONLY.value,
    help="Hotswap what can be hotswapped, ignoring all other changes",
)
@click.option(
    "--hotswap-fallback",
    "hotswap",
    flag_value=HotswapMode.FALL_BACK.value,
    help="Hotswap, falling back to a full deployment if some changes cannot be hotswapped",
)
@click.option("--hotswap-ecs-minimum-healthy-percent", type=click.IntRange(min=0))
@click.option("--hotswap-ecs-maximum-healthy-percent", type=click.IntRange(min=0))
@click.option("--termination-protection", is_flag=True, help="Enable termination protection")
@click.option(
    "--metadata",
    type=click.Path(exists=True, dir_okay=False, readable=True),
    help="A YAML file mapping construct paths to metadata entries",
)
@click.option(
    "--progress",
    type=click.Choice([p.value for p in StackActivityProgress]),
    default=StackActivityProgress.BAR.value,
    help="How stack activity is displayed",
)
@click.option("--quiet", is_flag=True, help="Do not display stack activity")
@click.pass_obj
def cmd_deploy(
    obj: dict,
    template: str,
    stack_name: str,
    parameters: Tuple[str, ...],
    tags: Tuple[str, ...],
    notification_arns: Tuple[str, ...],
    role_arn: Optional[str],
    method: str,
    change_set_name: Optional[str],
    no_execute: bool,
    import_existing_resources: bool,
    force: bool,
    no_rollback: bool,
    previous_parameters: bool,
    hotswap: Optional[str],
    hotswap_ecs_minimum_healthy_percent: Optional[int],
    hotswap_ecs_maximum_healthy_percent: Optional[int],
    termination_protection: bool,
    metadata: Optional[str],
    progress: str,
    quiet: bool,
) -> None:
    """
    Deploy the stack in TEMPLATE.

    \b
    Exits with a non-zero code if the deployment fails, or if the stack first needs to be
    rolled back (or deployed with rollback enabled) before it can be deployed.
    """
    if method == "direct" and (no_execute or change_set_name or import_existing_resources):
        raise CLIError(
            "--change-set-name, --no-execute and --import-existing-resources require "
            "--method change-set"
        )

    ci = obj["ci"]
    io_host = _io_host(ci)
    tag_values = _parse_key_values(tags, "--tag")
    artifact = StackArtifact.from_template_file(
        template,
        stack_name,
        metadata_file=metadata,
        termination_protection=termination_protection,
        tags=tag_values,
    )

    if method == "direct":
        deployment_method = DirectDeployment()
    else:
        deployment_method = ChangeSetDeployment(
            execute=not no_execute, import_existing_resources=import_existing_resources
        )
        if change_set_name:
            deployment_method.change_set_name = change_set_name

    options = DeployStackOptions(
        stack=artifact,
        sdk=obj["sdk"],
        io_host=io_host,
        role_arn=role_arn,
        notification_arns=list(notification_arns),
        tags=_to_api_tags(tag_values),
        parameters=_parse_key_values(parameters, "--parameter"),
        use_previous_parameters=previous_parameters,
        force=force,
        rollback=not no_rollback,
        hotswap=HotswapMode(hotswap) if hotswap else HotswapMode.FULL_DEPLOYMENT,
        hotswap_property_overrides=HotswapPropertyOverrides(
            ecs_hotswap_properties=EcsHotswapProperties(
                minimum_healthy_percent=hotswap_ecs_minimum_healthy_percent,
                maximum_healthy_percent=hotswap_ecs_maximum_healthy_percent,
            )
        ),
        deployment_method=deployment_method,
        quiet=quiet,
        ci=ci,
        progress=StackActivityProgress(progress),
    )

    result = deploy_stack(options)

    if isinstance(result, NeedRollbackFirstDeployStackResult):
        if result.reason == "replacement":
            raise CLIError(
                f"Stack {stack_name} is in a paused fail state ({result.status}) and the change "
                f"includes a replacement, which cannot be deployed until the failed update is "
                f"rolled back. Roll back the stack first."
            )
        raise CLIError(
            f"Stack {stack_name} is in a paused fail state ({result.status}) and needs to be "
            f"rolled back before it can be deployed with rollback enabled. Roll back the stack "
            f"first, or deploy with --no-rollback."
        )
    if isinstance(result, ReplacementRequiresRollbackStackResult):
        raise CLIError(
            f"The change to stack {stack_name} includes a replacement which cannot be deployed "
            f"with --no-rollback. Deploy without --no-rollback."
        )

    if result.no_op:
        io_host.info(f" ✅  {stack_name} (no changes)", force_stdout=True)
    else:
        io_host.info(f" ✅  {stack_name}", force_stdout=True)
    if result.outputs:
        io_host.info("\nOutputs:", force_stdout=True)
        for key, value in sorted(result.outputs.items()):
            io_host.info(f"{stack_name}.{key} = {value}", force_stdout=True)
    if result.stack_arn:
        io_host.info(f"\nStack ARN:\n{result.stack_arn}", force_stdout=True)


@stackdeploy.command(name="destroy", short_help="Destroy a stack")
@click.option("--stack-name", required=True, help="The name of the stack")
@click.option("--role-arn", help="The role CloudFormation assumes to delete the stack")
@click.option("--quiet", is_flag=True, help="Do not display stack activity")
@click.pass_obj
def cmd_destroy(obj: dict, stack_name: str, role_arn: Optional[str], quiet: bool) -> None:
    """Delete a stack and wait for the deletion to finish."""
    ci = obj["ci"]
    io_host = _io_host(ci)
    io_host.info(f"{stack_name}: destroying...", action=IoAction.DESTROY)
    destroy_stack(
        DestroyStackOptions(
            # deleting a stack does not need its template
            stack=StackArtifact(stack_name=stack_name, template={}),
            sdk=obj["sdk"],
            io_host=io_host,
            role_arn=role_arn,
            quiet=quiet,
            ci=ci,
        )
    )
    io_host.info(f" ✅  {stack_name}: destroyed", action=IoAction.DESTROY, force_stdout=True)


def _to_api_tags(tags: Dict[str, str]) -> List[Dict[str, str]]:
    return [{"Key": key, "Value": value} for key, value in tags.items()]


def main():
    stackdeploy()


if __name__ == "__main__":
    main()
