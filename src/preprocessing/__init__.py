"""
Preprocessing module: Salmon import and count filtering.
"""

from .data_loader import InputResolver, SalmonQuantLoader, filter_low_counts, metadata_path

__all__ = ['InputResolver', 'SalmonQuantLoader', 'filter_low_counts', 'metadata_path']
