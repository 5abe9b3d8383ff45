"""Pipeline modules for orchestrating complex workflows."""

from .discovery_pipeline import (
    Classification,
    ClusterModel,
    DiscoveryPipeline,
    DiscoveryPipelineConfig,
    DiscoveryResult,
)

__all__ = [
    "Classification",
    "ClusterModel",
    "DiscoveryPipeline",
    "DiscoveryPipelineConfig",
    "DiscoveryResult",
]
