from stackdeploy.utils.collections import transform_object_keys
from stackdeploy.utils.strings import lower_case_first_character

from ..common import ChangeHotswapResult, HotswappableChange, classify_changes
from ..registry import HotswapDetector, register_detector


def convert_source_key(key: str) -> str:
    # the SDK spells it "buildspec", CloudFormation "BuildSpec"
    if key.lower() == "buildspec":
        return key.lower()
    return lower_case_first_character(key)


@register_detector
class CodeBuildProjectDetector(HotswapDetector):
    resource_types = ("AWS::CodeBuild::Project",)

    def classify(self, logical_id, change, context) -> ChangeHotswapResult:
        evaluate = context.evaluate
        ret = []
        classified = classify_changes(change, ["Source", "Environment", "SourceVersion"])
        classified.report_non_hotswappable_property_changes(ret)

        if not classified.names_of_hotswappable_props:
            return ret

        project_name = evaluate.establish_resource_physical_name(
            logical_id, change.new_properties.get("Name")
        )

        def _apply(sdk):
            if not project_name:
                return
            request = {"name": project_name}
            for name, diff in classified.hotswappable_props.items():
                value = evaluate.evaluate_cfn_expression(diff.new_value)
                if name == "Source":
                    request["source"] = transform_object_keys(value, convert_source_key)
                elif name == "Environment":
                    request["environment"] = transform_object_keys(
                        value, lower_case_first_character
                    )
                elif name == "SourceVersion":
                    request["sourceVersion"] = value
            sdk.codebuild().update_project(**request)

        ret.append(
            HotswappableChange(
                service="codebuild",
                resource_names=[f"CodeBuild Project '{project_name}'"],
                props_changed=classified.names_of_hotswappable_props,
                apply=_apply,
                resource_type=change.resource_type,
                logical_id=logical_id,
            )
        )
        return ret
