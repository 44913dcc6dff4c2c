from stackdeploy.hotswap.diff import ResourceDifference, deep_equal, full_diff


class TestDeepEqual:
    def test_scalars_are_compared_as_rendered(self):
        assert deep_equal(1, "1")
        assert deep_equal(True, "true")
        assert deep_equal(2.0, "2")
        assert not deep_equal("1", "2")
        assert not deep_equal(None, "")
        assert deep_equal(None, None)

    def test_depends_on_order_is_irrelevant(self):
        assert deep_equal({"DependsOn": ["A", "B"]}, {"DependsOn": ["B", "A"]})
        assert not deep_equal({"Items": ["A", "B"]}, {"Items": ["B", "A"]})

    def test_structures(self):
        assert deep_equal({"a": [1, {"b": "c"}]}, {"a": ["1", {"b": "c"}]})
        assert not deep_equal({"a": 1}, {"a": 1, "b": 2})
        assert not deep_equal([1], {"a": 1})
        assert not deep_equal("a", ["a"])


def test_full_diff():
    current = {
        "Resources": {
            "Function": {
                "Type": "AWS::Lambda::Function",
                "Properties": {"Code": {"S3Key": "old.zip"}, "MemorySize": 128},
            },
            "Removed": {"Type": "AWS::SNS::Topic"},
            "Unchanged": {"Type": "AWS::SQS::Queue", "Properties": {"DelaySeconds": 5}},
        },
        "Outputs": {"Arn": {"Value": "a"}, "Same": {"Value": "s"}},
    }
    new = {
        "Resources": {
            "Function": {
                "Type": "AWS::Lambda::Function",
                "Properties": {"Code": {"S3Key": "new.zip"}, "MemorySize": "128"},
                "DependsOn": ["Unchanged"],
            },
            "Unchanged": {"Type": "AWS::SQS::Queue", "Properties": {"DelaySeconds": "5"}},
            "Added": {"Type": "AWS::SNS::Topic"},
        },
        "Outputs": {"Arn": {"Value": "b"}, "Same": {"Value": "s"}},
    }

    diff = full_diff(current, new)

    assert list(diff.resources) == ["Function", "Removed", "Added"]
    function = diff.resources["Function"]
    assert function.is_update
    assert list(function.property_updates) == ["Code"]
    assert function.property_updates["Code"].new_value == {"S3Key": "new.zip"}
    assert list(function.other_diffs) == ["DependsOn"]
    assert diff.resources["Removed"].is_removal
    assert diff.resources["Removed"].old_resource_type == "AWS::SNS::Topic"
    assert diff.resources["Added"].is_addition
    assert list(diff.outputs) == ["Arn"]
    assert not diff.is_empty


def test_full_diff_of_identical_templates():
    template = {"Resources": {"Topic": {"Type": "AWS::SNS::Topic"}}}

    assert full_diff(template, dict(template)).is_empty
    assert full_diff(None, {}).is_empty


def test_resource_difference_properties():
    diff = ResourceDifference(
        {"Type": "AWS::SNS::Topic", "Properties": {"TopicName": "a"}},
        {"Type": "AWS::SNS::Topic", "Properties": {"TopicName": "b", "DisplayName": "B"}},
    )

    assert diff.old_properties == {"TopicName": "a"}
    assert diff.new_properties == {"TopicName": "b", "DisplayName": "B"}
    assert list(diff.property_updates) == ["TopicName", "DisplayName"]
    assert diff.property_updates["DisplayName"].is_addition
    assert diff.other_diffs == {}
