import logging
from typing import List, Optional

from stackdeploy.aws.sdk import Sdk, select_operation_input
from stackdeploy.utils.collections import transform_object_keys
from stackdeploy.utils.strings import lower_case_first_character

from ..common import (
    ChangeHotswapResult,
    HotswappableChange,
    HotswappableChangeCandidate,
    classify_changes,
    report_non_hotswappable_change,
)
from ..evaluate import EvaluateCloudFormationTemplate
from ..registry import DetectorContext, HotswapDetector, register_detector

LOG = logging.getLogger(__name__)

# properties of a task definition whose values are maps with arbitrary keys, which must not be renamed
TASK_DEFINITION_USER_MAPS = {
    "ContainerDefinitions": {
        "DockerLabels": True,
        "FirelensConfiguration": {"Options": True},
        "LogConfiguration": {"Options": True},
    },
    "Volumes": {"DockerVolumeConfiguration": {"DriverOpts": True, "Labels": True}},
}


@register_detector
class EcsTaskDefinitionDetector(HotswapDetector):
    """
    Hotswaps changes of the container definitions of a task definition, by registering a new revision and
    pointing all services that use the task definition to it.
    """

    resource_types = ("AWS::ECS::TaskDefinition",)

    def classify(
        self, logical_id: str, change: HotswappableChangeCandidate, context: DetectorContext
    ) -> ChangeHotswapResult:
        evaluate = context.evaluate
        ret = []
        # the container definitions hold the image and the environment, which are safe to swap
        classified = classify_changes(change, ["ContainerDefinitions"])
        classified.report_non_hotswappable_property_changes(ret)

        references = evaluate.find_references_to(logical_id)
        service_resources = [r for r in references if r.get("Type") == "AWS::ECS::Service"]
        service_arns: List[str] = []
        for service in service_resources:
            service_arn = evaluate.find_physical_name_for(service["LogicalId"])
            if service_arn:
                service_arns.append(service_arn)

        if not service_arns:
            report_non_hotswappable_change(
                ret,
                change,
                reason="No ECS services reference the changed task definition",
                hotswap_only_visible=False,
            )
        for reference in references:
            if reference.get("Type") != "AWS::ECS::Service":
                report_non_hotswappable_change(
                    ret,
                    change,
                    reason=(
                        f"A resource '{reference['LogicalId']}' with Type '{reference.get('Type')}' "
                        f"that is not an ECS Service was found referencing the changed "
                        f"TaskDefinition '{logical_id}'"
                    ),
                )

        if not classified.names_of_hotswappable_props:
            return ret

        task_definition = prepare_task_definition_change(evaluate, logical_id, change)
        family = (task_definition or {}).get("Family")
        ecs_properties = context.property_overrides.ecs_hotswap_properties

        def _apply(sdk: Sdk):
            if not task_definition:
                return
            client = sdk.ecs()

            # the evaluated template properties are used as-is, with the casing the SDK expects
            request = transform_object_keys(
                task_definition, lower_case_first_character, TASK_DEFINITION_USER_MAPS
            )
            response = client.register_task_definition(
                **select_operation_input(client, "RegisterTaskDefinition", request)
            )
            task_definition_arn = response["taskDefinition"]["taskDefinitionArn"]

            # new tasks can replace all running tasks at once, unless configured otherwise
            deployment_configuration = {
                "minimumHealthyPercent": ecs_properties.minimum_healthy_percent or 0,
            }
            if ecs_properties.maximum_healthy_percent is not None:
                deployment_configuration["maximumPercent"] = ecs_properties.maximum_healthy_percent

            for service_arn in service_arns:
                # arn:aws:ecs:<region>:<account>:service/<cluster>/<service>
                cluster = service_arn.split("/")[1]
                update = client.update_service(
                    service=service_arn,
                    cluster=cluster,
                    taskDefinition=task_definition_arn,
                    forceNewDeployment=True,
                    deploymentConfiguration=deployment_configuration,
                )
                LOG.debug("Waiting for service %s to become stable", service_arn)
                client.get_waiter("services_stable").wait(
                    cluster=update["service"]["clusterArn"], services=[service_arn]
                )

        ret.append(
            HotswappableChange(
                service="ecs-service",
                resource_names=[f"ECS Task Definition '{family}'"]
                + [f"ECS Service '{arn.split('/')[2]}'" for arn in service_arns],
                props_changed=classified.names_of_hotswappable_props,
                apply=_apply,
                resource_type=change.resource_type,
                logical_id=logical_id,
            )
        )
        return ret


def prepare_task_definition_change(
    evaluate: EvaluateCloudFormationTemplate, logical_id: str, change: HotswappableChangeCandidate
) -> Optional[dict]:
    """
    Returns the evaluated properties of the new task definition revision: the deployed properties with the
    new container definitions, and the plain family name.
    """
    task_definition = {
        **change.old_properties,
        "ContainerDefinitions": change.new_properties.get("ContainerDefinitions"),
    }
    family_name_or_arn = evaluate.establish_resource_physical_name(
        logical_id, task_definition.get("Family")
    )
    if not family_name_or_arn:
        # no family in the template, and none in the deployed stack
        return None

    parts = family_name_or_arn.split(":")
    if len(parts) > 1:
        # arn:aws:ecs:<region>:<account>:task-definition/<family>:<revision>
        family = parts[5].split("/")[1]
    else:
        family = family_name_or_arn

    task_definition.pop("Family", None)
    evaluated = evaluate.evaluate_cfn_expression(task_definition)
    return {**evaluated, "Family": family}
