import json
import logging
from typing import Any

import yaml

LOG = logging.getLogger(__name__)


class CfnYamlLoader(yaml.SafeLoader):
    """Safe YAML loader that keeps timestamps as strings and understands the short intrinsic function tags."""


# parse date strings as string, not date objects
CfnYamlLoader.yaml_implicit_resolvers = {
    key: [resolver for resolver in resolvers if resolver[0] != "tag:yaml.org,2002:timestamp"]
    for key, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def _intrinsic_tag_constructor(loader: yaml.Loader, tag_suffix: str, node: yaml.Node) -> dict:
    """Turns ``!Ref x`` into ``{"Ref": "x"}`` and ``!GetAtt a.b`` into ``{"Fn::GetAtt": ["a", "b"]}``."""
    tag = tag_suffix.lstrip("!")
    key = "Ref" if tag == "Ref" else f"Fn::{tag}"

    if isinstance(node, yaml.ScalarNode):
        value = loader.construct_scalar(node)
        if tag == "GetAtt" and isinstance(value, str):
            value = value.split(".", 1)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)
    return {key: value}


CfnYamlLoader.add_multi_constructor("!", _intrinsic_tag_constructor)


def canonical_json(obj) -> str:
    return json.dumps(obj, sort_keys=True)


def parse_json_or_yaml(markup: str) -> Any:
    """Parses a template body, which can either be JSON or YAML with short-form intrinsic functions."""
    try:
        return json.loads(markup)
    except ValueError:
        return yaml.load(markup, Loader=CfnYamlLoader)
