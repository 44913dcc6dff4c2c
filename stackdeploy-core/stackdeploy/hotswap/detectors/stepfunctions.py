from ..common import ChangeHotswapResult, HotswappableChange, classify_changes
from ..registry import HotswapDetector, register_detector


@register_detector
class StateMachineDetector(HotswapDetector):
    resource_types = ("AWS::StepFunctions::StateMachine",)

    def classify(self, logical_id, change, context) -> ChangeHotswapResult:
        evaluate = context.evaluate
        ret = []
        classified = classify_changes(change, ["DefinitionString"])
        classified.report_non_hotswappable_property_changes(ret)

        if not classified.names_of_hotswappable_props:
            return ret

        name_in_template = change.new_properties.get("StateMachineName")
        if name_in_template:
            state_machine_name = evaluate.evaluate_cfn_expression(name_in_template)
            state_machine_arn = (
                f"arn:{evaluate.partition}:states:{evaluate.region}:{evaluate.account}"
                f":stateMachine:{state_machine_name}"
            )
        else:
            state_machine_arn = evaluate.find_physical_name_for(logical_id)

        display_name = state_machine_arn.split(":")[6] if state_machine_arn else None

        def _apply(sdk):
            if not state_machine_arn:
                return
            definition = evaluate.evaluate_cfn_expression(
                change.property_updates["DefinitionString"].new_value
            )
            # properties that are not passed are left unchanged
            sdk.stepfunctions().update_state_machine(
                stateMachineArn=state_machine_arn, definition=definition
            )

        ret.append(
            HotswappableChange(
                service="stepfunctions-service",
                resource_names=[f"{change.resource_type} '{display_name}'"],
                props_changed=classified.names_of_hotswappable_props,
                apply=_apply,
                resource_type=change.resource_type,
                logical_id=logical_id,
            )
        )
        return ret
