"""
Reporting of enrichment results: tables, running-score plots, summaries.
"""

from .gsea_report import (
    relabel_core_enrichment,
    plot_filename,
    write_family_report,
    report,
    write_comparison_summary
)

__all__ = [
    'relabel_core_enrichment',
    'plot_filename',
    'write_family_report',
    'report',
    'write_comparison_summary'
]
