"""
Registry of the hotswap detectors, keyed by the CloudFormation resource type they handle.

A detector looks at the changed properties of one resource and returns the changes it found, hotswappable
or not. Detectors are registered with the ``register_detector`` class decorator. The built-in detectors
live in ``stackdeploy.hotswap.detectors`` and are loaded on first lookup.
"""

import importlib
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import ClassVar, Dict, Optional, Tuple, Type

from .common import ChangeHotswapResult, HotswappableChangeCandidate, HotswapPropertyOverrides
from .evaluate import EvaluateCloudFormationTemplate

LOG = logging.getLogger(__name__)

BUILTIN_DETECTOR_MODULES = (
    "stackdeploy.hotswap.detectors.lambda_functions",
    "stackdeploy.hotswap.detectors.stepfunctions",
    "stackdeploy.hotswap.detectors.ecs_services",
    "stackdeploy.hotswap.detectors.codebuild_projects",
    "stackdeploy.hotswap.detectors.appsync",
    "stackdeploy.hotswap.detectors.s3_bucket_deployments",
)


@dataclass
class DetectorContext:
    evaluate: EvaluateCloudFormationTemplate
    property_overrides: HotswapPropertyOverrides = field(default_factory=HotswapPropertyOverrides)


class HotswapDetector(ABC):
    """Decides whether the changes to resources of its types can be hotswapped, and how."""

    resource_types: ClassVar[Tuple[str, ...]] = ()

    @abstractmethod
    def classify(
        self, logical_id: str, change: HotswappableChangeCandidate, context: DetectorContext
    ) -> ChangeHotswapResult:
        raise NotImplementedError


RESOURCE_DETECTORS: Dict[str, HotswapDetector] = {}

_load_lock = threading.Lock()
_builtins_loaded = False


def register_detector(cls: Type[HotswapDetector]) -> Type[HotswapDetector]:
    detector = cls()
    for resource_type in cls.resource_types:
        if resource_type in RESOURCE_DETECTORS:
            LOG.debug(
                "Replacing hotswap detector for %s with %s", resource_type, cls.__name__
            )
        RESOURCE_DETECTORS[resource_type] = detector
    return cls


def load_builtin_detectors() -> None:
    global _builtins_loaded
    with _load_lock:
        if _builtins_loaded:
            return
        for module in BUILTIN_DETECTOR_MODULES:
            importlib.import_module(module)
        _builtins_loaded = True


def get_detector(resource_type: str) -> Optional[HotswapDetector]:
    load_builtin_detectors()
    return RESOURCE_DETECTORS.get(resource_type)


@register_detector
class MetadataDetector(HotswapDetector):
    # the metadata resource carries no runtime state, changes to it are irrelevant
    resource_types = ("AWS::CDK::Metadata",)

    def classify(self, logical_id, change, context) -> ChangeHotswapResult:
        return []
