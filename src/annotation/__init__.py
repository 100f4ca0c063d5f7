"""
Gene identifier annotation.
"""

from .gene_ids import GeneIdMapper

__all__ = ['GeneIdMapper']
