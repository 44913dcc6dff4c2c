"""Merging supplied, asset and previous parameter values into the parameters of a stack operation."""

import re
from enum import Enum
from typing import Dict, List, Mapping, Optional

from stackdeploy.constants import SKIP_PARAMETER_CHECK_MARKER, SSM_PARAMETER_TYPE_PREFIX
from stackdeploy.exceptions import MissingParametersError

# {{resolve:ssm:...}}, {{resolve:secretsmanager:...}} are resolved by CloudFormation at execution time
DYNAMIC_REFERENCE_REGEX = re.compile(r"\{\{resolve:[^}]+\}\}")


class ParameterChanges(Enum):
    NONE = "none"
    CHANGED = "changed"
    # a value is resolved by CloudFormation at execution time, we cannot know whether it changed
    DYNAMIC = "dynamic"

    def __bool__(self):
        return self is not ParameterChanges.NONE


class TemplateParameters:
    """The parameters declared in a template, and how to fill them in."""

    def __init__(self, params: Mapping[str, dict]):
        self.params = dict(params)

    @classmethod
    def from_template(cls, template: dict) -> "TemplateParameters":
        return cls((template or {}).get("Parameters") or {})

    def supply_all(self, updates: Mapping[str, Optional[str]]) -> "ParameterValues":
        """
        Calculate stack parameters to pass from the given desired parameter values.

        Raises if a parameter has neither a value nor a default.
        """
        return ParameterValues(self.params, updates)

    def update_existing(
        self, updates: Mapping[str, Optional[str]], previous_values: Mapping[str, str]
    ) -> "ParameterValues":
        """
        From the template, the given desired values and the current values, calculate the changes to the stack
        parameters. Parameters that are not given but have a previous value keep that value.
        """
        return ParameterValues(self.params, updates, previous_values)


class ParameterValues:
    """
    The final parameters of a stack operation.

    ``values`` holds the plain key to value mapping (previous values included), ``api_parameters`` the
    list in the shape the CloudFormation API expects.
    """

    values: Dict[str, str]
    api_parameters: List[dict]

    def __init__(
        self,
        formal_params: Mapping[str, dict],
        updates: Mapping[str, Optional[str]],
        previous_values: Mapping[str, str] = None,
    ):
        self.formal_params = dict(formal_params)
        self.values = {}
        self.api_parameters = []
        previous_values = previous_values or {}

        missing_required = []
        for key, formal_param in self.formal_params.items():
            if updates.get(key) is not None:
                self.values[key] = updates[key]
                self.api_parameters.append({"ParameterKey": key, "ParameterValue": updates[key]})
                continue

            if key in previous_values:
                self.values[key] = previous_values[key]
                self.api_parameters.append({"ParameterKey": key, "UsePreviousValue": True})
                continue

            if formal_param.get("Default") is not None:
                self.values[key] = formal_param["Default"]
                continue

            missing_required.append(key)

        if missing_required:
            raise MissingParametersError(missing_required)

        # unknown parameters are passed through, CloudFormation will complain about them if needed
        for key, value in updates.items():
            if key not in self.formal_params and value is not None:
                self.values[key] = value
                self.api_parameters.append({"ParameterKey": key, "ParameterValue": value})

    def has_changes(self, current_values: Mapping[str, str]) -> ParameterChanges:
        """Whether deploying with these values would change the parameters of a stack with the current values."""
        for key, formal_param in self.formal_params.items():
            if str(formal_param.get("Type", "")).startswith(SSM_PARAMETER_TYPE_PREFIX):
                if SKIP_PARAMETER_CHECK_MARKER not in (formal_param.get("Description") or ""):
                    return ParameterChanges.DYNAMIC

        if any(
            isinstance(value, str) and DYNAMIC_REFERENCE_REGEX.search(value)
            for value in self.values.values()
        ):
            return ParameterChanges.DYNAMIC

        # a parameter was removed or changed
        for key, current_value in current_values.items():
            if key not in self.values or self.values[key] != current_value:
                return ParameterChanges.CHANGED

        # a parameter was added
        if any(key not in current_values for key in self.values):
            return ParameterChanges.CHANGED

        return ParameterChanges.NONE
