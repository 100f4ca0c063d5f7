"""
Comparison registry for the cytokine RNA-seq study.
"""

from .comparisons import (
    ComparisonSpec,
    parse_contrast,
    load_comparisons
)

__all__ = ['ComparisonSpec', 'parse_contrast', 'load_comparisons']
