"""
Gene set collections for enrichment analysis.
"""

from .gmt import read_gmt, read_gmt_dir
from .provider import (
    FAMILIES,
    GeneSetCollection,
    GeneSetProvider
)

__all__ = [
    'FAMILIES',
    'GeneSetCollection',
    'GeneSetProvider',
    'read_gmt',
    'read_gmt_dir'
]
