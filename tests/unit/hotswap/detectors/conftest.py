from unittest.mock import MagicMock

import botocore.session
import pytest

from stackdeploy.hotswap.classifier import is_candidate_for_hotswapping
from stackdeploy.hotswap.common import EcsHotswapProperties, HotswapPropertyOverrides
from stackdeploy.hotswap.diff import full_diff
from stackdeploy.hotswap.registry import DetectorContext, get_detector


def mock_client(service_name: str) -> MagicMock:
    """A mocked client that knows the real service model, so operation inputs can be filtered."""
    client = MagicMock(name=f"{service_name}-client")
    client.meta.service_model = botocore.session.get_session().get_service_model(service_name)
    return client


@pytest.fixture
def detect(evaluate_template):
    """Runs the detector of the changed resource ``logical_id`` between two templates."""

    def _detect(
        current: dict, new: dict, logical_id: str, ecs_properties: EcsHotswapProperties = None
    ):
        change = full_diff(current, new).resources[logical_id]
        candidate = is_candidate_for_hotswapping(change, logical_id)
        overrides = HotswapPropertyOverrides(
            ecs_hotswap_properties=ecs_properties or EcsHotswapProperties()
        )
        context = DetectorContext(evaluate=evaluate_template(new), property_overrides=overrides)
        return get_detector(candidate.resource_type).classify(logical_id, candidate, context)

    return _detect
