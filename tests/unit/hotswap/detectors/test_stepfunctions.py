def state_machine_template(definition, **properties) -> dict:
    return {
        "Resources": {
            "Machine": {
                "Type": "AWS::StepFunctions::StateMachine",
                "Properties": {"DefinitionString": definition, **properties},
            }
        }
    }


def test_named_state_machine(detect, sdk):
    [change] = detect(
        state_machine_template('{"StartAt": "A"}', StateMachineName="my-machine"),
        state_machine_template(
            {"Fn::Join": ["", ['{"StartAt": "', {"Ref": "AWS::Region"}, '"}']]},
            StateMachineName="my-machine",
        ),
        "Machine",
    )

    assert change.service == "stepfunctions-service"
    assert change.resource_names == ["AWS::StepFunctions::StateMachine 'my-machine'"]

    change.apply(sdk)

    sdk.stepfunctions().update_state_machine.assert_called_once_with(
        stateMachineArn="arn:aws:states:us-east-1:123456789012:stateMachine:my-machine",
        definition='{"StartAt": "us-east-1"}',
    )


def test_state_machine_arn_is_looked_up(cfn, detect, sdk):
    arn = "arn:aws:states:us-east-1:123456789012:stateMachine:Machine-abc"
    cfn.resources["stack"] = [{"LogicalResourceId": "Machine", "PhysicalResourceId": arn}]

    [change] = detect(state_machine_template("{}"), state_machine_template("{ }"), "Machine")
    change.apply(sdk)

    assert change.resource_names == ["AWS::StepFunctions::StateMachine 'Machine-abc'"]
    sdk.stepfunctions().update_state_machine.assert_called_once_with(
        stateMachineArn=arn, definition="{ }"
    )


def test_unknown_state_machine_is_skipped(detect, sdk):
    [change] = detect(state_machine_template("{}"), state_machine_template("{ }"), "Machine")

    change.apply(sdk)

    sdk.stepfunctions().update_state_machine.assert_not_called()


def test_other_properties_are_rejected(detect):
    [rejected] = detect(
        state_machine_template("{}", RoleArn="a"),
        state_machine_template("{}", RoleArn="b"),
        "Machine",
    )

    assert rejected.rejected_changes == ["RoleArn"]
