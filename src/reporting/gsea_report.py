#!/usr/bin/env python3
"""
GSEA Report Writer
==================

Writes, for each gene set family of a comparison:
1. ``GSEA_Table.txt`` with core-enrichment genes as symbols
2. One running-score plot per enriched term (``<index>_<description>.jpeg``),
   with NES, p-value and adjusted p-value in a side table

and, per comparison, a JSON summary plus a top-NES overview chart.

Families are reported in parallel (joblib); each writes only inside its
own directory.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Tuple
import logging

import pandas as pd
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import seaborn as sns
import gseapy as gp
from joblib import Parallel, delayed

logger = logging.getLogger(__name__)

TABLE_FILENAME = 'GSEA_Table.txt'
SUMMARY_JSON = 'gsea_summary.json'
SUMMARY_PLOT = 'GSEA_Summary.jpeg'
MAX_DESCRIPTION_LENGTH = 200


def relabel_core_enrichment(table: pd.DataFrame, symbol_map: Dict[str, str]) -> pd.DataFrame:
    """Replace Entrez ids in ``core_enrichment`` with symbols where known."""
    relabelled = table.copy()
    relabelled['core_enrichment'] = [
        '/'.join(symbol_map.get(gene, gene) for gene in str(genes).split('/') if gene)
        for genes in relabelled['core_enrichment']
    ]
    return relabelled


def plot_filename(index: int, description: str) -> str:
    """``<index>_<description>.jpeg`` with path separators made safe."""
    safe = str(description).replace('/', '_')[:MAX_DESCRIPTION_LENGTH]
    return f"{index}_{safe}.jpeg"


def _plot_term(result, row: pd.Series, path: Path, figsize: Tuple[float, float], dpi: int):
    scores = result.running_scores[row['ID']]

    axes = gp.gseaplot(
        term=row['Description'],
        hits=scores['hits'],
        nes=row['NES'],
        pval=row['pvalue'],
        fdr=row['p.adjust'],
        RES=scores['RES'],
        rank_metric=result.ranking,
        figsize=figsize,
        ofname=None
    )
    stats = axes[0].table(
        cellText=[[f"{row['NES']:.3f}"], [f"{row['pvalue']:.3g}"], [f"{row['p.adjust']:.3g}"]],
        rowLabels=['NES', 'pvalue', 'p.adjust'],
        colWidths=[0.15],
        loc='upper right'
    )
    stats.auto_set_font_size(False)
    stats.set_fontsize(7)

    # Output is exactly figsize x dpi pixels
    fig = axes[0].figure
    fig.set_size_inches(figsize)
    fig.tight_layout()
    fig.savefig(path, dpi=dpi, format='jpeg')
    plt.close(fig)


def write_family_report(
    result,
    out_dir: Path,
    symbol_map: Dict[str, str],
    figsize: Tuple[float, float] = (6, 4),
    dpi: int = 300
) -> List[Path]:
    """
    Write the table and plots of one family.

    Parameters
    ----------
    result : EnrichmentResult
        Enrichment result of the family
    out_dir : Path
        ``<results-root>/<contrast>/<family>``
    symbol_map : Dict[str, str]
        Entrez id -> gene symbol
    figsize : Tuple[float, float]
        Plot size in inches
    dpi : int
        Plot resolution

    Returns
    -------
    List[Path]
        Files written; empty when the family has no enriched term
    """
    if result.empty:
        print(f"{result.family}: no enriched terms (index out of bounds), nothing written")
        return []

    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    table = relabel_core_enrichment(result.table, symbol_map)
    table_path = out_dir / TABLE_FILENAME
    table.to_csv(table_path, sep='\t', index=False)
    written = [table_path]

    for index, (_, row) in enumerate(result.table.iterrows(), start=1):
        path = out_dir / plot_filename(index, row['Description'])
        _plot_term(result, row, path, tuple(figsize), dpi)
        written.append(path)

    logger.info(f"{result.family}: wrote table and {len(written) - 1} plots to {out_dir}")
    return written


def report(
    bundle,
    comparison_dir: Path,
    symbol_map: Dict[str, str],
    n_jobs: int = -1,
    figsize: Tuple[float, float] = (6, 4),
    dpi: int = 300
) -> Dict[str, List[Path]]:
    """Report every successful family of a bundle in parallel."""
    results = bundle.results()
    if not results:
        logger.warning(f"No successful enrichment families for {comparison_dir}")
        return {}

    outputs = Parallel(n_jobs=n_jobs)(
        delayed(write_family_report)(
            result, Path(comparison_dir) / family, symbol_map, figsize, dpi
        )
        for family, result in results.items()
    )
    return dict(zip(results, outputs))


def _top_terms(bundle, top_n: int) -> pd.DataFrame:
    frames = []
    for family, result in bundle.results().items():
        if result.empty:
            continue
        top = result.table.reindex(
            result.table['NES'].abs().sort_values(ascending=False).index
        ).head(top_n)
        frames.append(pd.DataFrame({
            'Family': family,
            'Description': top['Description'].astype(str).str[:60],
            'NES': top['NES'].to_numpy()
        }))

    if not frames:
        return pd.DataFrame(columns=['Family', 'Description', 'NES'])
    return pd.concat(frames, ignore_index=True)


def write_comparison_summary(
    bundle,
    comparison_dir: Path,
    comparison: str,
    contrast_label: str,
    top_n: int = 10,
    dpi: int = 300
) -> Dict:
    """
    Write ``gsea_summary.json`` and, when anything is enriched, the
    ``GSEA_Summary.jpeg`` overview of the top NES terms per family.
    """
    comparison_dir = Path(comparison_dir)
    comparison_dir.mkdir(parents=True, exist_ok=True)

    families = {}
    for family, outcome in bundle.outcomes.items():
        if outcome.ok:
            families[family] = {'status': 'ok', 'enriched_terms': len(outcome.result)}
        else:
            families[family] = {'status': 'failed', 'error': outcome.error}

    summary = {
        'comparison': comparison,
        'contrast': contrast_label,
        'date': datetime.now().isoformat(),
        'families': families
    }

    with open(comparison_dir / SUMMARY_JSON, 'w') as f:
        json.dump(summary, f, indent=2)

    top = _top_terms(bundle, top_n)
    if not top.empty:
        height = max(4, 0.3 * len(top))
        fig, ax = plt.subplots(figsize=(10, height))
        sns.barplot(data=top, x='NES', y='Description', hue='Family', dodge=False, ax=ax)
        ax.axvline(0, color='black', linewidth=0.8)
        ax.set_title(f"Top enriched terms: {contrast_label}")
        ax.set_ylabel('')
        plt.tight_layout()
        fig.savefig(comparison_dir / SUMMARY_PLOT, dpi=dpi, format='jpeg')
        plt.close(fig)

    return summary
