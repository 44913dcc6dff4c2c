from stackdeploy.utils.collections import (
    array_equals_as_sets,
    tags_equal,
    transform_object_keys,
)
from stackdeploy.utils.strings import lower_case_first_character


class TestTransformObjectKeys:
    def test_nested_keys_are_transformed(self):
        obj = {"ContainerDefinitions": [{"Name": "app", "PortMappings": [{"ContainerPort": 80}]}]}

        result = transform_object_keys(obj, lower_case_first_character)

        assert result == {"containerDefinitions": [{"name": "app", "portMappings": [{"containerPort": 80}]}]}

    def test_kept_values_are_copied_as_is(self):
        obj = {
            "ContainerDefinitions": [
                {"Name": "app", "DockerLabels": {"Label": "x"}, "LogConfiguration": {"Options": {"Key": "v"}}}
            ]
        }
        keep = {"ContainerDefinitions": {"DockerLabels": True, "LogConfiguration": {"Options": True}}}

        result = transform_object_keys(obj, lower_case_first_character, keep)

        assert result == {
            "containerDefinitions": [
                {"name": "app", "dockerLabels": {"Label": "x"}, "logConfiguration": {"options": {"Key": "v"}}}
            ]
        }

    def test_scalars_are_returned(self):
        assert transform_object_keys("Value", str.lower) == "Value"
        assert transform_object_keys(None, str.lower) is None


def test_array_equals_as_sets():
    assert array_equals_as_sets(["a", "b"], ["b", "a"])
    assert array_equals_as_sets(None, [])
    assert not array_equals_as_sets(["a"], ["a", "b"])


def test_tags_equal():
    assert tags_equal([{"Key": "a", "Value": "1"}, {"Key": "b", "Value": "2"}], [{"Key": "b", "Value": "2"}, {"Key": "a", "Value": "1"}])
    assert tags_equal(None, [])
    assert not tags_equal([{"Key": "a", "Value": "1"}], [{"Key": "a", "Value": "2"}])
    assert not tags_equal([{"Key": "a", "Value": "1"}], [{"Key": "b", "Value": "1"}])
    assert not tags_equal([{"Key": "a", "Value": "1"}], [])
