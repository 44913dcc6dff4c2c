"""
Structural differences between two CloudFormation templates.

Only the parts needed to decide on hotswapping are modelled: resources (with their properties) and
outputs. Collections only ever contain entries that actually changed.
"""

from typing import Any, Dict, Optional

# top level attributes of a resource that are not compared as "other" differences
_RESOURCE_ATTRIBUTES_COMPARED_SEPARATELY = ("Type", "Properties")


def deep_equal(left: Any, right: Any) -> bool:
    """
    Compares two template values the way CloudFormation would see them.

    Scalars are compared by their string representation, as ``1`` and ``"1"`` (or ``true`` and ``"true"``)
    render to the same value, and ``DependsOn`` lists are compared ignoring their order.
    """
    if isinstance(left, dict) and isinstance(right, dict):
        if left.keys() != right.keys():
            return False
        for key in left:
            if key == "DependsOn" and isinstance(left[key], list) and isinstance(right[key], list):
                if sorted(map(str, left[key])) != sorted(map(str, right[key])):
                    return False
            elif not deep_equal(left[key], right[key]):
                return False
        return True
    if isinstance(left, list) and isinstance(right, list):
        return len(left) == len(right) and all(deep_equal(a, b) for a, b in zip(left, right))
    if isinstance(left, (dict, list)) or isinstance(right, (dict, list)):
        return False
    if left is None or right is None:
        return left is right
    return _scalar_str(left) == _scalar_str(right)


def _scalar_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class Difference:
    def __init__(self, old_value: Any, new_value: Any):
        self.old_value = old_value
        self.new_value = new_value

    @property
    def is_addition(self) -> bool:
        return self.old_value is None and self.new_value is not None

    @property
    def is_removal(self) -> bool:
        return self.old_value is not None and self.new_value is None

    @property
    def is_update(self) -> bool:
        return self.old_value is not None and self.new_value is not None

    @property
    def is_different(self) -> bool:
        return not deep_equal(self.old_value, self.new_value)

    def __repr__(self):
        return f"{self.__class__.__name__}({self.old_value!r} -> {self.new_value!r})"


class PropertyDifference(Difference):
    pass


def _diff_keyed(old: Optional[dict], new: Optional[dict], factory=Difference) -> Dict[str, Any]:
    old = old or {}
    new = new or {}
    result = {}
    for key in list(old.keys()) + [k for k in new.keys() if k not in old]:
        diff = factory(old.get(key), new.get(key))
        if diff.is_different:
            result[key] = diff
    return result


class ResourceDifference(Difference):
    """The difference of a single resource, either added, removed, or updated."""

    def __init__(
        self,
        old_value: Optional[dict],
        new_value: Optional[dict],
        property_diffs: Dict[str, PropertyDifference] = None,
        other_diffs: Dict[str, Difference] = None,
    ):
        super().__init__(old_value, new_value)
        if property_diffs is None:
            property_diffs = _diff_keyed(
                (old_value or {}).get("Properties"),
                (new_value or {}).get("Properties"),
                PropertyDifference,
            )
        if other_diffs is None:
            other_diffs = _diff_keyed(
                _without_compared_attributes(old_value), _without_compared_attributes(new_value)
            )
        self.property_diffs = property_diffs
        self.other_diffs = other_diffs

    @property
    def old_resource_type(self) -> Optional[str]:
        return (self.old_value or {}).get("Type")

    @property
    def new_resource_type(self) -> Optional[str]:
        return (self.new_value or {}).get("Type")

    @property
    def property_updates(self) -> Dict[str, PropertyDifference]:
        """All properties that were added, removed or changed."""
        return self.property_diffs

    @property
    def old_properties(self) -> dict:
        return (self.old_value or {}).get("Properties") or {}

    @property
    def new_properties(self) -> dict:
        return (self.new_value or {}).get("Properties") or {}


def _without_compared_attributes(resource: Optional[dict]) -> dict:
    return {
        k: v
        for k, v in (resource or {}).items()
        if k not in _RESOURCE_ATTRIBUTES_COMPARED_SEPARATELY
    }


class TemplateDiff:
    def __init__(self, resources: Dict[str, ResourceDifference], outputs: Dict[str, Difference]):
        self.resources = resources
        self.outputs = outputs

    @property
    def is_empty(self) -> bool:
        return not self.resources and not self.outputs


def full_diff(current_template: Optional[dict], new_template: Optional[dict]) -> TemplateDiff:
    """Computes the changed resources and outputs between the deployed and the new template."""
    current_template = current_template or {}
    new_template = new_template or {}
    return TemplateDiff(
        resources=_diff_keyed(
            current_template.get("Resources"), new_template.get("Resources"), ResourceDifference
        ),
        outputs=_diff_keyed(current_template.get("Outputs"), new_template.get("Outputs")),
    )
