"""
Salmon Quantification Loader
============================

This module handles:
1. Pre-flight checks of per-comparison input files
2. Loading sample metadata for a comparison
3. Importing Salmon ``quant.sf`` files and aggregating transcripts to genes
4. Group-aware filtering of low-count genes

Directory conventions:
    <input-root>/<sampleID>/quant.sf
    <input-root>/salmon_tx2gene.tsv
    <results-root>/<comparisonName>/<metadataFile>
"""

import pandas as pd
from pathlib import Path
from typing import Dict, Iterable, List, Optional
import logging

from registry.comparisons import ComparisonSpec

logger = logging.getLogger(__name__)

QUANT_FILENAME = 'quant.sf'
SAMPLE_ID_COLUMN = 'X'


def metadata_path(results_root: Path, spec: ComparisonSpec) -> Path:
    """Expected location of a comparison's sample metadata."""
    return Path(results_root) / spec.name / spec.metadata_file


class InputResolver:
    """Report which comparisons have their inputs in place."""

    def __init__(self, input_root: str, results_root: str, tx2gene_file: Optional[str] = None):
        self.input_root = Path(input_root)
        self.results_root = Path(results_root)
        self.tx2gene_file = Path(tx2gene_file) if tx2gene_file else self.input_root / 'salmon_tx2gene.tsv'

    def check(self, specs: Iterable[ComparisonSpec]) -> Dict[str, bool]:
        """
        Check that each comparison's metadata file exists.

        Never raises on a missing file; prints one line per comparison.

        Returns
        -------
        Dict[str, bool]
            Comparison name -> metadata file exists
        """
        status = {}
        for spec in specs:
            path = metadata_path(self.results_root, spec)
            status[spec.name] = path.is_file()
            print(f"{spec.name}: {path} exists = {status[spec.name]}")

        print(f"tx2gene: {self.tx2gene_file} exists = {self.tx2gene_file.is_file()}")
        return status


class SalmonQuantLoader:
    """Load Salmon quantifications and sample metadata."""

    def __init__(
        self,
        input_root: str,
        results_root: str,
        tx2gene_file: Optional[str] = None,
        condition_col: str = 'condition'
    ):
        """
        Parameters
        ----------
        input_root : str
            Directory with one Salmon output directory per sample
        results_root : str
            Directory holding per-comparison metadata and all outputs
        tx2gene_file : str, optional
            Transcript-to-gene table (two columns, no header)
        condition_col : str
            Metadata column with the condition label
        """
        self.input_root = Path(input_root)
        self.results_root = Path(results_root)
        self.tx2gene_file = Path(tx2gene_file) if tx2gene_file else self.input_root / 'salmon_tx2gene.tsv'
        self.condition_col = condition_col
        self._tx2gene: Optional[pd.Series] = None

    def load_tx2gene(self) -> pd.Series:
        """Load the transcript -> gene map once and reuse it."""
        if self._tx2gene is None:
            if not self.tx2gene_file.is_file():
                raise FileNotFoundError(f"tx2gene table not found: {self.tx2gene_file}")

            tx2gene = pd.read_csv(
                self.tx2gene_file,
                sep='\t',
                header=None,
                usecols=[0, 1],
                names=['transcript', 'gene'],
                dtype=str
            )
            self._tx2gene = tx2gene.drop_duplicates('transcript').set_index('transcript')['gene']
            logger.info(f"Loaded tx2gene map: {len(self._tx2gene)} transcripts")

        return self._tx2gene

    def load_metadata(self, spec: ComparisonSpec) -> pd.DataFrame:
        """Load sample metadata indexed by sample id."""
        path = metadata_path(self.results_root, spec)
        if not path.is_file():
            raise FileNotFoundError(f"Metadata file not found for {spec.name}: {path}")

        metadata = pd.read_csv(path, sep='\t', dtype=str)
        for col in (SAMPLE_ID_COLUMN, self.condition_col):
            if col not in metadata.columns:
                raise ValueError(f"Metadata {path} is missing required column '{col}'")

        metadata = metadata.set_index(SAMPLE_ID_COLUMN)
        metadata.index.name = 'sample'

        conditions = set(metadata[self.condition_col])
        for group in (spec.numerator, spec.baseline):
            if group not in conditions:
                raise ValueError(
                    f"Contrast group '{group}' of {spec.contrast_label} not in conditions {sorted(conditions)}"
                )

        logger.info(f"Loaded metadata for {len(metadata)} samples from {path}")
        return metadata

    def quant_path(self, sample_id: str) -> Path:
        return self.input_root / sample_id / QUANT_FILENAME

    def import_counts(self, sample_ids: List[str]) -> pd.DataFrame:
        """
        Import Salmon estimated counts and sum them per gene.

        Parameters
        ----------
        sample_ids : List[str]
            Samples to import, in column order

        Returns
        -------
        pd.DataFrame
            Integer count matrix (genes x samples)
        """
        paths = {sample: self.quant_path(sample) for sample in sample_ids}
        missing = [str(p) for p in paths.values() if not p.is_file()]
        if missing:
            raise FileNotFoundError(f"Quantification files not found: {missing}")

        tx2gene = self.load_tx2gene()

        columns = {}
        for sample, path in paths.items():
            quant = pd.read_csv(path, sep='\t', usecols=['Name', 'NumReads'])
            genes = quant['Name'].map(tx2gene)

            n_unmapped = int(genes.isna().sum())
            if n_unmapped:
                logger.warning(f"{sample}: {n_unmapped} transcripts missing from tx2gene, dropped")

            columns[sample] = quant['NumReads'].groupby(genes).sum()

        counts = pd.DataFrame(columns).fillna(0).round().astype('int64')
        counts.index.name = 'gene'

        logger.info(f"Imported {counts.shape[0]} genes x {counts.shape[1]} samples")
        return counts


def filter_low_counts(
    counts: pd.DataFrame,
    conditions: pd.Series,
    min_count: int = 10
) -> pd.DataFrame:
    """
    Filter genes by summed counts within condition groups.

    A gene is kept only if its total count within every condition group
    reaches ``min_count``. Individual samples may fall below the threshold.

    Parameters
    ----------
    counts : pd.DataFrame
        Count matrix (genes x samples)
    conditions : pd.Series
        Condition label per sample (index: sample ids)
    min_count : int
        Minimum summed count per group

    Returns
    -------
    pd.DataFrame
        Filtered count matrix
    """
    conditions = conditions.reindex(counts.columns)
    if conditions.isna().any():
        missing = conditions[conditions.isna()].index.tolist()
        raise ValueError(f"Samples without a condition label: {missing}")

    group_sums = counts.T.groupby(conditions).sum().T
    keep = (group_sums >= min_count).all(axis=1)
    filtered = counts.loc[keep]

    smallest_group = int(conditions.value_counts().min())
    logger.info(f"Filtered genes (group sum >= {min_count}, smallest group n={smallest_group}): "
                f"{counts.shape[0]} -> {filtered.shape[0]}")

    return filtered
