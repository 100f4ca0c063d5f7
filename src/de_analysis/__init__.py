"""
Differential Expression Analysis module.
"""

from .differential_expression import (
    DEAnalysis,
    annotate_gene_ids,
    prepare_ranked_list,
    filter_significant,
    stable_gene_id
)

__all__ = [
    'DEAnalysis',
    'annotate_gene_ids',
    'prepare_ranked_list',
    'filter_significant',
    'stable_gene_id'
]
