from typing import Any, Callable, Dict, Iterable, List, Optional, Union

# nested map of keys whose values are user defined maps, e.g. {"ContainerDefinitions": {"DockerLabels": True}}
KeepKeys = Dict[str, Union[bool, "KeepKeys"]]


def transform_object_keys(obj: Any, key_fn: Callable[[str], str], keep: KeepKeys = None):
    """
    Recursively renames the keys of all dicts in the given object with ``key_fn``.

    :param obj: a dict, list or scalar value
    :param key_fn: the function applied to every dict key
    :param keep: (original) key names whose values are user supplied maps. A value of ``True`` copies the
        value as-is, a nested dict describes the keys to keep inside of that value.
    :return: a transformed copy of the object
    """
    keep = keep or {}
    if isinstance(obj, list):
        return [transform_object_keys(item, key_fn, keep) for item in obj]
    if isinstance(obj, dict):
        result = {}
        for key, value in obj.items():
            keep_value = keep.get(key)
            if keep_value is True:
                result[key_fn(key)] = value
            else:
                result[key_fn(key)] = transform_object_keys(value, key_fn, keep_value or None)
        return result
    return obj


def array_equals_as_sets(left: Optional[Iterable], right: Optional[Iterable]) -> bool:
    return set(left or []) == set(right or [])


def tags_equal(left: Optional[List[Dict]], right: Optional[List[Dict]]) -> bool:
    """Compares two lists of ``{"Key": ..., "Value": ...}`` tags, ignoring their order."""
    left = left or []
    right = right or []
    if len(left) != len(right):
        return False
    right_by_key = {tag["Key"]: tag.get("Value") for tag in right}
    return all(
        tag["Key"] in right_by_key and right_by_key[tag["Key"]] == tag.get("Value") for tag in left
    )
