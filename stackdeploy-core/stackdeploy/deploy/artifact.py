import json
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import yaml

from stackdeploy.constants import LOGICAL_ID_METADATA_KEY
from stackdeploy.utils.json import parse_json_or_yaml


@dataclass
class Environment:
    """The account and region a stack is deployed to. Unset values are taken from the credentials."""

    account: Optional[str] = None
    region: Optional[str] = None


@dataclass
class StackArtifact:
    """
    A synthesized stack: its template, plus the side-channel metadata needed to deploy and monitor it.

    ``metadata`` maps construct paths to lists of metadata entries (``{"type": ..., "data": ..., "trace": [...]}``).
    Entries of type ``aws:cdk:logicalId`` tie a construct path to the logical id of a resource and are used to
    show construct paths and creation traces in the activity output.
    """

    stack_name: str
    template: dict
    metadata: Dict[str, List[dict]] = field(default_factory=dict)
    termination_protection: bool = False
    display_name: Optional[str] = None
    # directory that relative nested stack template paths are resolved against
    assembly_directory: Optional[str] = None
    environment: Environment = field(default_factory=Environment)
    tags: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not self.display_name:
            self.display_name = self.stack_name

    @classmethod
    def from_template_file(
        cls, template_file: str, stack_name: str, metadata_file: str = None, **kwargs
    ) -> "StackArtifact":
        with open(template_file, "r") as f:
            template = parse_json_or_yaml(f.read())

        metadata = {}
        if metadata_file:
            with open(metadata_file, "r") as f:
                metadata = yaml.safe_load(f) or {}

        kwargs.setdefault("assembly_directory", os.path.dirname(os.path.abspath(template_file)))
        return cls(stack_name=stack_name, template=template, metadata=metadata, **kwargs)

    def logical_id_entries(self) -> Dict[str, dict]:
        """Maps every construct path with a logical id entry to that entry."""
        result = {}
        for path, entries in self.metadata.items():
            for entry in entries or []:
                if entry.get("type") == LOGICAL_ID_METADATA_KEY:
                    result[path] = entry
        return result

    def read_nested_template(self, asset_path: str) -> dict:
        """Reads the template of a nested stack, referenced relative to the assembly directory."""
        path = os.path.join(self.assembly_directory or os.getcwd(), asset_path)
        with open(path, "r") as f:
            return parse_json_or_yaml(f.read())

    def template_json(self) -> str:
        return json.dumps(self.template)
