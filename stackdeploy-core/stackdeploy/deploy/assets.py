"""The boundary to the asset publishing machinery, which lives outside of this package."""

from typing import Dict, Protocol

from .artifact import Environment, StackArtifact


class AssetPublisher(Protocol):
    """
    Uploads the files and images a stack references, and tells the deployment where they ended up.
    """

    def asset_parameters(self, stack: StackArtifact) -> Dict[str, str]:
        """Returns the template parameters pointing at the (future) locations of the stack's assets."""
        ...

    def publish(self, stack: StackArtifact, environment: Environment) -> None:
        """Uploads the assets of the stack. Called once before any change is made to the stack."""
        ...


class NoAssetPublisher:
    """Publisher for stacks without assets."""

    def asset_parameters(self, stack: StackArtifact) -> Dict[str, str]:
        return {}

    def publish(self, stack: StackArtifact, environment: Environment) -> None:
        pass
