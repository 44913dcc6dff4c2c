"""
Deploying and destroying a single stack.

``deploy_stack`` decides between doing nothing, hotswapping, or a full CloudFormation deployment through a
change set or a direct create/update call. Conflicts with the state of the deployed stack are returned as
result variants, failures of the stack operation itself are raised.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

from botocore.exceptions import ClientError

from stackdeploy import config
from stackdeploy.activity.monitor import StackActivityMonitor, StackActivityProgress
from stackdeploy.aws.sdk import Sdk
from stackdeploy.constants import (
    DEFAULT_CHANGE_SET_NAME,
    HOTSWAP_USER_AGENT_FALLBACK,
    STACK_CAPABILITIES,
    TOOL_NAME,
)
from stackdeploy.exceptions import ConfigurationError, StackDeployError, StackOperationError
from stackdeploy.hotswap.common import (
    ICON,
    CfnEvaluationException,
    HotswapMode,
    HotswapPropertyOverrides,
)
from stackdeploy.hotswap.deployments import try_hotswap_deployment
from stackdeploy.io import IoAction, IoHost, RecordingIoHost
from stackdeploy.utils.collections import array_equals_as_sets, tags_equal
from stackdeploy.utils.json import canonical_json

from .artifact import StackArtifact
from .assets import AssetPublisher, NoAssetPublisher
from .change_set import (
    change_set_has_no_changes,
    cleanup_old_change_set,
    has_replacement,
    wait_for_change_set,
)
from .parameters import ParameterChanges, ParameterValues, TemplateParameters
from .results import (
    DeployStackResult,
    NeedRollbackFirstDeployStackResult,
    ReplacementRequiresRollbackStackResult,
    SuccessfulDeployStackResult,
)
from .stack import CloudFormationStack, wait_for_stack_delete, wait_for_stack_deploy

LOG = logging.getLogger(__name__)

NO_UPDATES_MESSAGE = "No updates are to be performed."

FORCE_WITHOUT_CHANGES_WARNING = "\n".join(
    [
        "You used the --force flag, but CloudFormation reported that the deployment would not make "
        "any changes.",
        "According to CloudFormation, all resources are already up-to-date with the state in your "
        "template.",
        "",
        "You cannot use the --force flag to get rid of changes you made in the console. Try using",
        "CloudFormation drift detection instead: "
        "https://docs.aws.amazon.com/AWSCloudFormation/latest/UserGuide/using-cfn-stack-drift.html",
    ]
)


@dataclass
class ChangeSetDeployment:
    """Deploy by creating a change set, and executing it unless ``execute`` is off."""

    change_set_name: str = DEFAULT_CHANGE_SET_NAME
    # if off, the change set is left in review for manual execution
    execute: bool = True
    # let the change set adopt existing resources that are not managed by any stack
    import_existing_resources: bool = False
    method: str = field(default="change-set", init=False)


@dataclass
class DirectDeployment:
    """Deploy by calling CreateStack or UpdateStack directly."""

    method: str = field(default="direct", init=False)


DeploymentMethod = Union[ChangeSetDeployment, DirectDeployment]


@dataclass
class DeployStackOptions:
    stack: StackArtifact
    sdk: Sdk
    io_host: IoHost = field(default_factory=RecordingIoHost)
    # the name of the deployed stack, defaults to the name of the artifact
    deploy_name: Optional[str] = None
    role_arn: Optional[str] = None
    notification_arns: List[str] = field(default_factory=list)
    tags: List[Dict[str, str]] = field(default_factory=list)
    parameters: Dict[str, Optional[str]] = field(default_factory=dict)
    # keep the deployed value of parameters that are not given
    use_previous_parameters: bool = False
    force: bool = False
    # roll back the stack if the deployment fails
    rollback: bool = True
    hotswap: HotswapMode = HotswapMode.FULL_DEPLOYMENT
    hotswap_property_overrides: HotswapPropertyOverrides = field(
        default_factory=HotswapPropertyOverrides
    )
    deployment_method: DeploymentMethod = field(default_factory=ChangeSetDeployment)
    # resources to import, the ``ResourcesToImport`` of CreateChangeSet
    resources_to_import: Optional[List[dict]] = None
    # don't follow the stack events
    quiet: bool = False
    ci: bool = False
    progress: StackActivityProgress = StackActivityProgress.BAR
    asset_publisher: AssetPublisher = field(default_factory=NoAssetPublisher)
    extra_user_agent: Optional[str] = None

    @property
    def stack_name(self) -> str:
        return self.deploy_name or self.stack.stack_name


@dataclass
class DestroyStackOptions:
    stack: StackArtifact
    sdk: Sdk
    io_host: IoHost = field(default_factory=RecordingIoHost)
    deploy_name: Optional[str] = None
    role_arn: Optional[str] = None
    quiet: bool = False
    ci: bool = False

    @property
    def stack_name(self) -> str:
        return self.deploy_name or self.stack.stack_name


def deploy_stack(options: DeployStackOptions) -> DeployStackResult:
    stack_artifact = options.stack
    io_host = options.io_host
    if options.extra_user_agent:
        options.sdk.append_custom_user_agent(options.extra_user_agent)
    cfn = options.sdk.cloudformation()
    deploy_name = options.stack_name

    cloudformation_stack = CloudFormationStack.lookup(cfn, deploy_name)
    if cloudformation_stack.stack_status.is_creation_failure:
        io_host.debug(
            f"Found existing stack {deploy_name} that had previously failed creation. "
            f"Deleting it before attempting to re-create it."
        )
        cfn.delete_stack(StackName=deploy_name)
        deleted_stack = wait_for_stack_delete(cfn, deploy_name)
        if deleted_stack and deleted_stack.stack_status.name != "DELETE_COMPLETE":
            raise StackOperationError(
                f"Failed deleting stack {deploy_name} that had previously failed creation "
                f"(current state: {deleted_stack.stack_status})",
                stack_name=deploy_name,
                status=deleted_stack.stack_status.name,
            )
        # we just deleted it, there is no point in looking it up again
        cloudformation_stack = CloudFormationStack.does_not_exist(cfn, deploy_name)

    asset_params = options.asset_publisher.asset_parameters(stack_artifact)
    final_parameter_values = {**options.parameters, **asset_params}
    template_params = TemplateParameters.from_template(stack_artifact.template)
    if options.use_previous_parameters:
        stack_params = template_params.update_existing(
            final_parameter_values, cloudformation_stack.parameters
        )
    else:
        stack_params = template_params.supply_all(final_parameter_values)

    hotswap_mode = options.hotswap or HotswapMode.FULL_DEPLOYMENT

    parameter_changes = stack_params.has_changes(cloudformation_stack.parameters)
    if can_skip_deploy(options, cloudformation_stack, parameter_changes):
        io_host.debug(f"{deploy_name}: skipping deployment (use --force to override)")
        # a hotswap was asked for, let the user know none happened
        if hotswap_mode != HotswapMode.FULL_DEPLOYMENT:
            io_host.info(
                f"\n {ICON} hotswap deployment skipped - no changes were detected "
                f"(use --force to override)\n",
                code="SD_DEPLOY_SKIPPED",
            )
        return SuccessfulDeployStackResult(
            no_op=True,
            outputs=cloudformation_stack.outputs,
            stack_arn=cloudformation_stack.stack_id,
        )
    io_host.debug(f"{deploy_name}: deploying...")

    options.asset_publisher.publish(stack_artifact, stack_artifact.environment)

    if hotswap_mode != HotswapMode.FULL_DEPLOYMENT:
        # short-circuit the deployment if possible
        try:
            hotswap_result = try_hotswap_deployment(
                options.sdk,
                stack_params.values,
                cloudformation_stack,
                stack_artifact,
                hotswap_mode,
                options.hotswap_property_overrides,
                io_host,
            )
            if hotswap_result:
                return hotswap_result
            io_host.info(
                f"Could not perform a hotswap deployment, as the stack "
                f"{stack_artifact.display_name} contains non-Asset changes"
            )
        except CfnEvaluationException as e:
            io_host.info(
                f"Could not perform a hotswap deployment, because the CloudFormation template "
                f"could not be resolved: {e}"
            )

        if hotswap_mode == HotswapMode.FALL_BACK:
            io_host.info("Falling back to doing a full deployment", code="SD_HOTSWAP_FALLBACK")
            options.sdk.append_custom_user_agent(HOTSWAP_USER_AGENT_FALLBACK)
        else:
            return SuccessfulDeployStackResult(
                no_op=True,
                outputs=cloudformation_stack.outputs,
                stack_arn=cloudformation_stack.stack_id,
            )

    full_deployment = FullCloudFormationDeployment(
        options, cloudformation_stack, stack_artifact, stack_params
    )
    return full_deployment.perform_deployment()


class FullCloudFormationDeployment:
    """The state shared by the change set and the direct deployment of a stack."""

    def __init__(
        self,
        options: DeployStackOptions,
        cloudformation_stack: CloudFormationStack,
        stack_artifact: StackArtifact,
        stack_params: ParameterValues,
    ):
        self.options = options
        self.io_host = options.io_host
        self.cloudformation_stack = cloudformation_stack
        self.stack_artifact = stack_artifact
        self.stack_params = stack_params
        self.cfn = options.sdk.cloudformation()
        self.stack_name = options.stack_name
        self.update = (
            cloudformation_stack.exists
            and not cloudformation_stack.stack_status.is_review_in_progress
        )
        self.verb = "update" if self.update else "create"
        self.uuid = str(uuid.uuid4())

    def perform_deployment(self) -> DeployStackResult:
        deployment_method = self.options.deployment_method or ChangeSetDeployment()
        if isinstance(deployment_method, DirectDeployment):
            if self.options.resources_to_import:
                raise ConfigurationError("Importing resources requires a changeset deployment")
            return self.direct_deployment()
        return self.change_set_deployment(deployment_method)

    def change_set_deployment(self, deployment_method: ChangeSetDeployment) -> DeployStackResult:
        change_set_name = deployment_method.change_set_name or DEFAULT_CHANGE_SET_NAME
        execute = deployment_method.execute
        change_set = self.create_change_set(
            change_set_name, execute, deployment_method.import_existing_resources
        )
        self.update_termination_protection()

        if change_set_has_no_changes(change_set):
            self.io_host.debug(f"No changes are to be performed on {self.stack_name}.")
            if execute:
                self.io_host.debug(f"Deleting empty change set {change_set.get('ChangeSetId')}")
                self.cfn.delete_change_set(StackName=self.stack_name, ChangeSetName=change_set_name)
            if self.options.force:
                self.io_host.warn(FORCE_WITHOUT_CHANGES_WARNING, code="SD_DEPLOY_FORCE_NO_CHANGES")
            return SuccessfulDeployStackResult(
                no_op=True,
                outputs=self.cloudformation_stack.outputs,
                stack_arn=change_set.get("StackId"),
            )

        if not execute:
            self.io_host.info(
                f"Changeset {change_set.get('ChangeSetId')} created and waiting in review for "
                f"manual execution (--no-execute)",
                code="SD_CHANGE_SET_IN_REVIEW",
            )
            return SuccessfulDeployStackResult(
                no_op=False,
                outputs=self.cloudformation_stack.outputs,
                stack_arn=change_set.get("StackId"),
            )

        # replacements cannot happen while the stack waits for a rollback, or without rollback
        replacement = has_replacement(change_set)
        status = self.cloudformation_stack.stack_status
        is_paused_fail_state = status.is_rollbackable
        rollback = self.options.rollback
        if is_paused_fail_state and replacement:
            return NeedRollbackFirstDeployStackResult(reason="replacement", status=status.name)
        if is_paused_fail_state and rollback:
            return NeedRollbackFirstDeployStackResult(reason="not-norollback", status=status.name)
        if not rollback and replacement:
            return ReplacementRequiresRollbackStackResult()

        return self.execute_change_set(change_set)

    def create_change_set(
        self, change_set_name: str, will_execute: bool, import_existing_resources: bool
    ) -> dict:
        self.cleanup_old_change_set(change_set_name)

        self.io_host.debug(
            f"Attempting to create ChangeSet with name {change_set_name} to {self.verb} stack "
            f"{self.stack_name}"
        )
        self.io_host.info(f"{self.stack_name}: creating CloudFormation changeset...")
        if self.options.resources_to_import:
            change_set_type = "IMPORT"
        else:
            change_set_type = "UPDATE" if self.update else "CREATE"

        request = {
            "StackName": self.stack_name,
            "ChangeSetName": change_set_name,
            "ChangeSetType": change_set_type,
            "Description": f"{TOOL_NAME} Changeset for execution {self.uuid}",
            "ClientToken": f"create{self.uuid}",
            "ImportExistingResources": import_existing_resources,
            **self.common_prepare_options(),
        }
        if self.options.resources_to_import:
            request["ResourcesToImport"] = self.options.resources_to_import
        change_set = self.cfn.create_change_set(**request)
        self.io_host.debug(
            f"Initiated creation of changeset: {change_set.get('Id')}; "
            f"waiting for it to finish creating..."
        )
        # all pages are needed when executing, for the number of changes to monitor
        return wait_for_change_set(self.cfn, self.stack_name, change_set_name, fetch_all=will_execute)

    def execute_change_set(self, change_set: dict) -> SuccessfulDeployStackResult:
        self.io_host.debug(
            f"Initiating execution of changeset {change_set.get('ChangeSetId')} on stack "
            f"{self.stack_name}"
        )
        self.cfn.execute_change_set(
            ChangeSetName=change_set["ChangeSetName"],
            ClientRequestToken=f"exec{self.uuid}",
            **self.common_execute_options(),
        )
        self.io_host.debug(
            f"Execution of changeset {change_set.get('ChangeSetId')} on stack {self.stack_name} "
            f"has started; waiting for the update to complete..."
        )
        # an update emits one more event for the stack itself
        change_set_length = len(change_set.get("Changes") or []) + (1 if self.update else 0)
        return self.monitor_deployment(change_set.get("CreationTime"), change_set_length)

    def cleanup_old_change_set(self, change_set_name: str) -> None:
        if self.cloudformation_stack.exists:
            cleanup_old_change_set(self.cfn, self.stack_name, change_set_name)

    def update_termination_protection(self) -> None:
        termination_protection = bool(self.stack_artifact.termination_protection)
        if bool(self.cloudformation_stack.termination_protection) == termination_protection:
            return
        self.io_host.debug(
            f"Updating termination protection from "
            f"{self.cloudformation_stack.termination_protection} to {termination_protection} "
            f"for stack {self.stack_name}"
        )
        self.cfn.update_termination_protection(
            StackName=self.stack_name, EnableTerminationProtection=termination_protection
        )
        self.io_host.debug(
            f"Termination protection updated to {termination_protection} for stack {self.stack_name}"
        )

    def direct_deployment(self) -> SuccessfulDeployStackResult:
        self.io_host.info(
            f"{self.stack_name}: {'updating' if self.update else 'creating'} stack..."
        )
        start_time = datetime.now(tz=timezone.utc)

        if self.update:
            self.update_termination_protection()
            try:
                self.cfn.update_stack(
                    ClientRequestToken=f"update{self.uuid}",
                    **self.common_prepare_options(),
                    **self.common_execute_options(),
                )
            except ClientError as e:
                if e.response.get("Error", {}).get("Message") == NO_UPDATES_MESSAGE:
                    self.io_host.debug(f"No updates are to be performed for stack {self.stack_name}")
                    return SuccessfulDeployStackResult(
                        no_op=True,
                        outputs=self.cloudformation_stack.outputs,
                        stack_arn=self.cloudformation_stack.stack_id,
                    )
                raise
            return self.monitor_deployment(start_time, None)

        # termination protection can be set right away on create
        request = {}
        if self.stack_artifact.termination_protection:
            request["EnableTerminationProtection"] = True
        self.cfn.create_stack(
            ClientRequestToken=f"create{self.uuid}",
            **request,
            **self.common_prepare_options(),
            **self.common_execute_options(),
        )
        return self.monitor_deployment(start_time, None)

    def monitor_deployment(
        self, start_time: Optional[datetime], expected_changes: Optional[int]
    ) -> SuccessfulDeployStackResult:
        monitor = None
        if not self.options.quiet:
            monitor = StackActivityMonitor.with_default_printer(
                self.cfn,
                self.stack_name,
                self.stack_artifact,
                resources_total=expected_changes,
                progress=self.options.progress,
                change_set_creation_time=start_time,
                ci=self.options.ci,
                verbose=is_verbose_activity_output(),
                console=getattr(self.io_host, "console", None),
                io_host=self.io_host,
            ).start()

        final_state = self.cloudformation_stack
        try:
            success_stack = wait_for_stack_deploy(self.cfn, self.stack_name)
            if not success_stack:
                raise StackOperationError(
                    "Stack deploy failed (the stack disappeared while we were deploying it)",
                    stack_name=self.stack_name,
                )
            final_state = success_stack
        except Exception as e:
            # the final poll reads the events carrying the failure reasons
            if monitor:
                monitor.stop()
            raise _with_monitor_errors(e, monitor, self.stack_name) from e
        finally:
            if monitor:
                monitor.stop()

        self.io_host.debug(f"Stack {self.stack_name} has completed updating")
        return SuccessfulDeployStackResult(
            no_op=False, outputs=final_state.outputs, stack_arn=final_state.stack_id
        )

    def common_prepare_options(self) -> dict:
        """The options shared between CreateStack, UpdateStack and CreateChangeSet."""
        options = {
            "Capabilities": list(STACK_CAPABILITIES),
            "NotificationARNs": list(self.options.notification_arns or []),
            "Parameters": self.stack_params.api_parameters,
            "TemplateBody": self.stack_artifact.template_json(),
            "Tags": list(self.options.tags or []),
        }
        if self.options.role_arn:
            options["RoleARN"] = self.options.role_arn
        return options

    def common_execute_options(self) -> dict:
        """The options shared between UpdateStack, CreateStack and ExecuteChangeSet."""
        options = {"StackName": self.stack_name}
        if self.options.rollback is False:
            options["DisableRollback"] = True
        return options


def destroy_stack(options: DestroyStackOptions) -> None:
    deploy_name = options.stack_name
    cfn = options.sdk.cloudformation()
    current_stack = CloudFormationStack.lookup(cfn, deploy_name)
    if not current_stack.exists:
        options.io_host.debug(
            f"Stack {deploy_name} does not exist, nothing to destroy", action=IoAction.DESTROY
        )
        return

    monitor = None
    if not options.quiet:
        monitor = StackActivityMonitor.with_default_printer(
            cfn,
            deploy_name,
            options.stack,
            ci=options.ci,
            verbose=is_verbose_activity_output(),
            console=getattr(options.io_host, "console", None),
            io_host=options.io_host,
        ).start()

    try:
        request = {"StackName": deploy_name}
        if options.role_arn:
            request["RoleARN"] = options.role_arn
        cfn.delete_stack(**request)
        destroyed_stack = wait_for_stack_delete(cfn, deploy_name)
        if destroyed_stack and destroyed_stack.stack_status.name != "DELETE_COMPLETE":
            raise StackOperationError(
                f"Failed to destroy {deploy_name}: {destroyed_stack.stack_status}",
                stack_name=deploy_name,
                status=destroyed_stack.stack_status.name,
            )
    except Exception as e:
        if monitor:
            monitor.stop()
        raise _with_monitor_errors(e, monitor, deploy_name) from e
    finally:
        if monitor:
            monitor.stop()


def can_skip_deploy(
    options: DeployStackOptions,
    cloudformation_stack: CloudFormationStack,
    parameter_changes: ParameterChanges,
) -> bool:
    """
    Whether the stack is known to be up-to-date, so that no deployment is needed.

    The inputs are compared with the deployed stack rather than looking at a change set: a change set of a
    stack with nested stacks always reports changes to the nested stacks.
    """
    deploy_name = options.stack_name
    LOG.debug("%s: checking if we can skip deploy", deploy_name)

    if options.force:
        LOG.debug("%s: forced deployment", deploy_name)
        return False

    method = options.deployment_method
    if isinstance(method, ChangeSetDeployment) and method.execute is False:
        LOG.debug("%s: --no-execute, always creating change set", deploy_name)
        return False

    if not cloudformation_stack.exists:
        LOG.debug("%s: no existing stack", deploy_name)
        return False

    # asset locations are part of the template parameters, they are compared below
    if canonical_json(options.stack.template) != canonical_json(cloudformation_stack.template()):
        LOG.debug("%s: template has changed", deploy_name)
        return False

    if not tags_equal(cloudformation_stack.tags, options.tags or []):
        LOG.debug("%s: tags have changed", deploy_name)
        return False

    if not array_equals_as_sets(
        cloudformation_stack.notification_arns, options.notification_arns or []
    ):
        LOG.debug("%s: notification arns have changed", deploy_name)
        return False

    if bool(options.stack.termination_protection) != bool(
        cloudformation_stack.termination_protection
    ):
        LOG.debug("%s: termination protection has been updated", deploy_name)
        return False

    if parameter_changes:
        if parameter_changes == ParameterChanges.DYNAMIC:
            LOG.debug(
                "%s: some parameters are resolved at deploy time, "
                "so we have to assume they may have changed",
                deploy_name,
            )
        else:
            LOG.debug("%s: parameters have changed", deploy_name)
        return False

    if cloudformation_stack.stack_status.is_failure:
        LOG.debug("%s: stack is in a failure state", deploy_name)
        return False

    return True


def is_verbose_activity_output() -> bool:
    """Debug output interleaves with a live progress block, so it asks for the event history instead."""
    return config.DEBUG or logging.getLogger("stackdeploy").getEffectiveLevel() <= logging.DEBUG


def suffix_with_errors(message: str, errors: Optional[List[str]]) -> str:
    return f"{message}: {', '.join(errors)}" if errors else message


def _with_monitor_errors(
    error: Exception, monitor: Optional[StackActivityMonitor], stack_name: str
) -> StackDeployError:
    message = suffix_with_errors(_error_message(error), monitor.errors if monitor else None)
    return StackOperationError(
        message, stack_name=stack_name, status=getattr(error, "status", None)
    )


def _error_message(error: Exception) -> str:
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Message") or str(error)
    return str(error)
