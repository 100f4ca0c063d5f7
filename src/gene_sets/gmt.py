"""
GMT gene set files: one set per line, ``name<TAB>description<TAB>gene...``.
"""

from collections import defaultdict
from pathlib import Path
from typing import Dict, List
import logging

import gseapy as gp

logger = logging.getLogger(__name__)


def read_gmt(path: str) -> Dict[str, List[str]]:
    """Parse a GMT file into term -> member genes (file order, no duplicates)."""
    gene_sets = {}
    for term, genes in gp.read_gmt(str(path)).items():
        genes = [g.strip() for g in genes if g and g.strip()]
        if not term or not genes:
            if term:
                logger.warning(f"{path}: gene set '{term}' has no members, skipped")
            continue
        gene_sets[term] = list(dict.fromkeys(genes))

    return gene_sets


def read_gmt_dir(gmt_dir: str, pattern: str = '*.gmt') -> Dict[str, List[str]]:
    """
    Concatenate every GMT file in a directory.

    A term present in several files gets the union of its members. A
    missing directory yields no gene sets.
    """
    gmt_dir = Path(gmt_dir)
    if not gmt_dir.is_dir():
        logger.warning(f"Gene set directory not found: {gmt_dir}")
        return {}

    merged = defaultdict(list)
    files = sorted(gmt_dir.glob(pattern))
    for path in files:
        for term, genes in read_gmt(str(path)).items():
            merged[term].extend(g for g in genes if g not in merged[term])

    logger.info(f"Read {len(merged)} gene sets from {len(files)} GMT files in {gmt_dir}")
    return dict(merged)
