"""
Gene Set Enrichment Analysis
============================

Preranked GSEA (gseapy) of a ranked gene list against each gene set family.

Every family runs independently: a failure in one family (no gene set
passing the size filter, a download error, ...) is recorded on that
family's outcome and never stops the others.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional
import logging

import pandas as pd
import gseapy as gp
from statsmodels.stats.multitest import multipletests

from gene_sets.provider import FAMILIES, GeneSetCollection

logger = logging.getLogger(__name__)

TABLE_COLUMNS = [
    'ID', 'Description', 'setSize', 'enrichmentScore', 'NES',
    'pvalue', 'p.adjust', 'qvalue', 'core_enrichment'
]


@dataclass(frozen=True)
class EnrichmentParams:
    """Gene set size limits and adjusted p-value cutoff for one family."""

    min_size: int = 10
    max_size: int = 500
    pvalue_cutoff: float = 0.05


DEFAULT_FAMILY_PARAMS = {
    'MSIGDB': EnrichmentParams(),
    'KEGG': EnrichmentParams(min_size=5, pvalue_cutoff=0.1),
    'GO_CC': EnrichmentParams(min_size=100, max_size=500),
    'GO_BP': EnrichmentParams(min_size=100, max_size=500),
    'GO_MF': EnrichmentParams(min_size=100, max_size=500),
    'custom': EnrichmentParams(),
}


@dataclass
class EnrichmentResult:
    """Enriched terms of one family plus what is needed to plot them."""

    family: str
    table: pd.DataFrame
    running_scores: Dict[str, Dict[str, List[float]]] = field(default_factory=dict)
    ranking: Optional[pd.Series] = None

    @property
    def empty(self) -> bool:
        return self.table.empty

    def __len__(self) -> int:
        return len(self.table)


@dataclass
class FamilyOutcome:
    """Either a populated result or the reason the family failed."""

    family: str
    result: Optional[EnrichmentResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None and self.error is None


class ResultsBundle:
    """
    Per-comparison enrichment outcomes keyed by family.

    Membership, indexing and iteration only see successful families;
    failures are available through ``failures()``.
    """

    def __init__(self, outcomes: Optional[Iterable[FamilyOutcome]] = None):
        self.outcomes: Dict[str, FamilyOutcome] = {}
        for outcome in outcomes or []:
            self.add(outcome)

    def add(self, outcome: FamilyOutcome):
        self.outcomes[outcome.family] = outcome

    def __contains__(self, family: str) -> bool:
        outcome = self.outcomes.get(family)
        return outcome is not None and outcome.ok

    def __getitem__(self, family: str) -> EnrichmentResult:
        if family not in self:
            raise KeyError(family)
        return self.outcomes[family].result

    def __iter__(self) -> Iterator[str]:
        return iter(self.results())

    def __len__(self) -> int:
        return len(self.results())

    def results(self) -> Dict[str, EnrichmentResult]:
        return {f: o.result for f, o in self.outcomes.items() if o.ok}

    def failures(self) -> Dict[str, str]:
        return {f: o.error for f, o in self.outcomes.items() if not o.ok}

    def summary(self) -> Dict[str, Any]:
        return {
            'enriched_terms': {f: len(r) for f, r in self.results().items()},
            'failed': self.failures()
        }


class GSEAEngine:
    """Run preranked GSEA for every gene set family."""

    def __init__(
        self,
        provider,
        family_params: Optional[Dict[str, EnrichmentParams]] = None,
        permutation_num: int = 1000,
        seed: int = 123,
        threads: int = 4
    ):
        """
        Parameters
        ----------
        provider : GeneSetProvider
            Shared, read-only gene set collections
        family_params : Dict[str, EnrichmentParams], optional
            Overrides of the per-family defaults
        permutation_num : int
            Gene set permutations per family
        seed : int
            Permutation seed
        threads : int
            gseapy worker threads
        """
        self.provider = provider
        self.family_params = {**DEFAULT_FAMILY_PARAMS, **(family_params or {})}
        self.permutation_num = permutation_num
        self.seed = seed
        self.threads = threads

    def params_for(self, family: str) -> EnrichmentParams:
        return self.family_params.get(family, EnrichmentParams())

    def enrich(
        self,
        ranked: pd.Series,
        collection: GeneSetCollection,
        params: EnrichmentParams
    ) -> EnrichmentResult:
        """
        Preranked GSEA of ``ranked`` against one collection.

        Parameters
        ----------
        ranked : pd.Series
            Entrez id -> log2 fold change, sorted descending
        collection : GeneSetCollection
            Gene sets with Entrez members
        params : EnrichmentParams
            Size limits and cutoff

        Returns
        -------
        EnrichmentResult
            Terms with ``p.adjust < pvalue_cutoff``; may be empty
        """
        if not len(collection):
            raise LookupError(f"No gene sets available for {collection.name}")

        pre_res = gp.prerank(
            rnk=ranked,
            gene_sets=collection.gene_sets,
            min_size=params.min_size,
            max_size=params.max_size,
            permutation_num=self.permutation_num,
            seed=self.seed,
            threads=self.threads,
            outdir=None,
            no_plot=True,
            verbose=False
        )

        res2d = pre_res.res2d
        ranked_genes = set(ranked.index)

        table = pd.DataFrame({
            'ID': res2d['Term'].astype(str),
            'Description': [collection.describe(str(t)) for t in res2d['Term']],
            'setSize': [
                len(ranked_genes.intersection(collection.gene_sets.get(str(t), [])))
                for t in res2d['Term']
            ],
            'enrichmentScore': res2d['ES'].astype(float),
            'NES': res2d['NES'].astype(float),
            'pvalue': res2d['NOM p-val'].astype(float),
            'qvalue': res2d['FDR q-val'].astype(float),
            'core_enrichment': res2d['Lead_genes'].fillna('').astype(str).str.replace(';', '/'),
        })
        table = table.dropna(subset=['pvalue'])

        if len(table):
            _, p_adjust, _, _ = multipletests(table['pvalue'], method='fdr_bh')
            table['p.adjust'] = p_adjust
        else:
            table['p.adjust'] = pd.Series(dtype=float)

        table = table[table['p.adjust'] < params.pvalue_cutoff]
        table = table.sort_values(['pvalue', 'NES'], ascending=[True, False], kind='mergesort')
        table = table[TABLE_COLUMNS].reset_index(drop=True)

        running_scores = {
            term: {
                'hits': [int(i) for i in pre_res.results[term]['hits']],
                'RES': [float(x) for x in pre_res.results[term]['RES']],
            }
            for term in table['ID']
        }

        ranking = getattr(pre_res, 'ranking', None)
        if ranking is None:
            ranking = ranked

        return EnrichmentResult(
            family=collection.name,
            table=table,
            running_scores=running_scores,
            ranking=ranking
        )

    def run_all(self, ranked: pd.Series, families: Iterable[str] = FAMILIES) -> ResultsBundle:
        """Enrich every family, isolating failures per family."""
        bundle = ResultsBundle()

        for family in families:
            try:
                collection = self.provider.get(family)
                result = self.enrich(ranked, collection, self.params_for(family))
            except Exception as e:
                logger.error(f"GSEA failed for {family}: {e}")
                bundle.add(FamilyOutcome(family, error=str(e)))
                continue

            result.family = family
            bundle.add(FamilyOutcome(family, result=result))
            logger.info(f"{family}: {len(result)} enriched terms")

        return bundle
