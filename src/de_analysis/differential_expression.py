"""
Differential Expression Analysis
================================

DESeq2-style analysis of Salmon gene-level counts using PyDESeq2:
1. Negative binomial GLM with design ``~condition``
2. Wald test for the ``numerator vs baseline`` contrast
3. Log fold change shrinkage of the contrast coefficient

Plus the helpers that turn a result table into GSEA input:
- Stable gene id derivation and Entrez annotation
- Ranked gene list (Entrez id -> log2 fold change)
"""

import re
import pandas as pd
import numpy as np
from typing import Optional, Tuple
import logging

from pydeseq2.dds import DeseqDataSet
from pydeseq2.default_inference import DefaultInference
from pydeseq2.ds import DeseqStats

logger = logging.getLogger(__name__)

RESULT_COLUMNS = ['baseMean', 'log2FoldChange', 'lfcSE', 'stat', 'pvalue', 'padj']


class DEAnalysis:
    """Differential Expression Analysis."""

    def __init__(
        self,
        counts: pd.DataFrame,
        metadata: pd.DataFrame,
        condition_col: str = 'condition'
    ):
        """
        Initialize DE analysis.

        Parameters
        ----------
        counts : pd.DataFrame
            Count matrix (genes x samples), already filtered
        metadata : pd.DataFrame
            Sample metadata with condition column
        condition_col : str
            Column name for condition/group
        """
        self.condition_col = condition_col

        # Keep the metadata's sample order
        common_samples = [s for s in metadata.index if s in counts.columns]
        self.counts = counts[common_samples]
        self.metadata = metadata.loc[common_samples]

        logger.info(f"Initialized DE analysis with {len(common_samples)} samples, "
                    f"{self.counts.shape[0]} genes")

    def _design_metadata(self, baseline: str) -> pd.DataFrame:
        """Relevel the condition factor so ``baseline`` is the reference."""
        metadata = self.metadata[[self.condition_col]].copy()
        levels = [baseline] + sorted(set(metadata[self.condition_col]) - {baseline})
        metadata[self.condition_col] = pd.Categorical(
            metadata[self.condition_col], categories=levels
        )
        return metadata

    def _find_coefficient(self, dds: DeseqDataSet, numerator: str, baseline: str) -> Optional[str]:
        """Name of the design-matrix column for ``numerator`` vs the reference."""
        candidates = [
            f"{self.condition_col}[T.{numerator}]",
            f"{self.condition_col}_{numerator}_vs_{baseline}",
        ]
        columns = list(dds.obsm['design_matrix'].columns)

        for name in candidates:
            if name in columns:
                return name

        logger.warning(f"No coefficient for {numerator} vs {baseline} among {columns}")
        return None

    def run_deseq2(
        self,
        contrast: Tuple[str, str],
        alpha: float = 0.05,
        shrink: bool = True,
        n_cpus: Optional[int] = None
    ) -> pd.DataFrame:
        """
        Run DESeq2 via PyDESeq2.

        Parameters
        ----------
        contrast : Tuple[str, str]
            (numerator, baseline) condition labels
        alpha : float
            Significance threshold for independent filtering
        shrink : bool
            Apply LFC shrinkage to the contrast coefficient
        n_cpus : int, optional
            Worker count for PyDESeq2 inference

        Returns
        -------
        pd.DataFrame
            DE results indexed by gene, sorted by adjusted p-value (NA last)
        """
        numerator, baseline = contrast
        logger.info(f"Running DESeq2: {numerator} vs {baseline}")

        inference = DefaultInference(n_cpus=n_cpus)
        dds = DeseqDataSet(
            counts=self.counts.T,
            metadata=self._design_metadata(baseline),
            design=f"~{self.condition_col}",
            refit_cooks=True,
            inference=inference
        )
        dds.deseq2()

        stat_res = DeseqStats(
            dds,
            contrast=[self.condition_col, numerator, baseline],
            alpha=alpha,
            inference=inference
        )
        stat_res.summary()

        if shrink:
            coeff = self._find_coefficient(dds, numerator, baseline)
            if coeff is not None:
                logger.info(f"Shrinking log fold changes for coefficient {coeff}")
                stat_res.lfc_shrink(coeff=coeff)
            else:
                logger.warning("Using unshrunk log fold changes")

        results_df = stat_res.results_df[RESULT_COLUMNS].copy()
        results_df = results_df.sort_values('padj', na_position='last', kind='mergesort')
        results_df.index.name = 'gene'

        logger.info(f"Found {(results_df['padj'] < alpha).sum()} significant genes (padj < {alpha})")

        return results_df


def stable_gene_id(gene_id: str) -> str:
    """Drop everything after the first '+' of a composite row id."""
    return re.sub(r'\+.*$', '', str(gene_id))


def annotate_gene_ids(de_results: pd.DataFrame, mapper) -> pd.DataFrame:
    """
    Append ENSEMBL, ENTREZID and SYMBOL columns.

    Parameters
    ----------
    de_results : pd.DataFrame
        DE results indexed by row id
    mapper : GeneIdMapper
        Organism-specific id lookup

    Returns
    -------
    pd.DataFrame
        Copy of the results with identifier columns; unmapped genes keep
        null ENTREZID and are not dropped
    """
    annotated = de_results.copy()
    annotated['ENSEMBL'] = [stable_gene_id(g) for g in annotated.index]

    mapping = mapper.ensembl_to_entrez(annotated['ENSEMBL'].tolist())
    annotated['ENTREZID'] = mapping['ENTREZID'].to_numpy()
    annotated['SYMBOL'] = mapping['SYMBOL'].to_numpy()

    return annotated


def prepare_ranked_list(
    de_results: pd.DataFrame,
    id_col: str = 'ENTREZID',
    score_col: str = 'log2FoldChange'
) -> pd.Series:
    """
    Build the GSEA ranked list from a DE result table.

    Rows without an identifier or score are dropped; duplicated identifiers
    keep their maximum score.

    Returns
    -------
    pd.Series
        Score per identifier (str), sorted descending
    """
    ranked = de_results[[id_col, score_col]].dropna()
    ranked = ranked.assign(**{id_col: ranked[id_col].astype(str)})

    ranked = ranked.groupby(id_col)[score_col].max().astype(float)
    ranked = ranked.sort_values(ascending=False, kind='mergesort')
    ranked.name = score_col

    logger.info(f"Ranked list: {len(ranked)} genes "
                f"(from {len(de_results)} rows, {de_results[id_col].isna().sum()} unmapped)")
    return ranked


def filter_significant(
    de_results: pd.DataFrame,
    padj_threshold: float = 0.05,
    log2fc_threshold: float = 1.0
) -> pd.DataFrame:
    """Filter for significant genes based on padj and log2FC."""
    mask = (
        (de_results['padj'] < padj_threshold) &
        (np.abs(de_results['log2FoldChange']) > log2fc_threshold)
    )

    return de_results[mask]
