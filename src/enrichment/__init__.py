"""
Gene set enrichment analysis module.
"""

from .gsea import (
    DEFAULT_FAMILY_PARAMS,
    EnrichmentParams,
    EnrichmentResult,
    FamilyOutcome,
    GSEAEngine,
    ResultsBundle
)

__all__ = [
    'DEFAULT_FAMILY_PARAMS',
    'EnrichmentParams',
    'EnrichmentResult',
    'FamilyOutcome',
    'GSEAEngine',
    'ResultsBundle'
]
