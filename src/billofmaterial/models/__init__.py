"""Data models and schemas."""

from billofmaterial.models.schemas import (
    DependencyDeclaration,
    DependencyRecord,
    KnownUnknown,
    PackageAnalysis,
    RiskAssessment,
    SBOMAggregate,
    SBOMConfig,
    VulnerabilityRecord,
)

__all__ = [
    "DependencyDeclaration",
    "DependencyRecord",
    "KnownUnknown",
    "PackageAnalysis",
    "RiskAssessment",
    "SBOMAggregate",
    "SBOMConfig",
    "VulnerabilityRecord",
]
