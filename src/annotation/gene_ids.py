"""
Gene Identifier Mapping
=======================

Organism-specific lookups between Ensembl gene ids, gene symbols and
Entrez (NCBI) gene ids, backed by MyGene.info.

Results are memoised per process so repeated lookups across comparisons
and gene-set families hit the service once.
"""

import pandas as pd
from typing import Dict, Iterable, List, Optional
import logging

import mygene

logger = logging.getLogger(__name__)


class GeneIdMapper:
    """Map gene identifiers for one organism."""

    def __init__(self, species: str = 'human', batch_size: int = 1000):
        """
        Parameters
        ----------
        species : str
            MyGene.info species name or taxonomy id
        batch_size : int
            Identifiers per request
        """
        self.species = species
        self.batch_size = batch_size
        self._client = mygene.MyGeneInfo()
        self._cache: Dict[str, Dict[str, Dict[str, Optional[str]]]] = {}

    def _query(self, ids: Iterable[str], scope: str) -> Dict[str, Dict[str, Optional[str]]]:
        """Query ids once per scope; the first hit of each query wins."""
        cache = self._cache.setdefault(scope, {})
        pending = sorted({str(i) for i in ids if pd.notna(i)} - set(cache))

        for start in range(0, len(pending), self.batch_size):
            batch = pending[start:start + self.batch_size]
            hits = self._client.querymany(
                batch,
                scopes=scope,
                fields='entrezgene,symbol',
                species=self.species,
                returnall=False,
                verbose=False
            )
            for hit in hits:
                query = str(hit.get('query'))
                if query in cache and cache[query]['entrezgene'] is not None:
                    continue
                if hit.get('notfound'):
                    cache[query] = {'entrezgene': None, 'symbol': None}
                    continue
                entrez = hit.get('entrezgene')
                cache[query] = {
                    'entrezgene': str(entrez) if entrez is not None else None,
                    'symbol': hit.get('symbol')
                }

            # Queries the service did not echo back are unmapped
            for query in batch:
                cache.setdefault(query, {'entrezgene': None, 'symbol': None})

        if pending:
            logger.info(f"Queried {len(pending)} ids ({scope}, {self.species})")

        return cache

    def ensembl_to_entrez(self, ensembl_ids: List[str]) -> pd.DataFrame:
        """
        Map Ensembl gene ids to Entrez ids and symbols.

        Returns
        -------
        pd.DataFrame
            Columns ENSEMBL, ENTREZID, SYMBOL in input order; unmapped ids
            have null ENTREZID
        """
        cache = self._query(ensembl_ids, 'ensembl.gene')
        rows = [
            {
                'ENSEMBL': gene_id,
                'ENTREZID': cache.get(str(gene_id), {}).get('entrezgene'),
                'SYMBOL': cache.get(str(gene_id), {}).get('symbol')
            }
            for gene_id in ensembl_ids
        ]
        mapped = pd.DataFrame(rows, columns=['ENSEMBL', 'ENTREZID', 'SYMBOL'])

        logger.info(f"Mapped {mapped['ENTREZID'].notna().sum()}/{len(mapped)} Ensembl ids to Entrez")
        return mapped

    def symbols_to_entrez(self, symbols: Iterable[str]) -> Dict[str, str]:
        """Map gene symbols to Entrez ids; unmapped symbols are omitted."""
        symbols = [str(s) for s in symbols if pd.notna(s)]
        cache = self._query(symbols, 'symbol')
        return {
            symbol: cache[symbol]['entrezgene']
            for symbol in symbols
            if cache[symbol]['entrezgene'] is not None
        }

    def entrez_to_symbols(self, entrez_ids: Iterable[str]) -> Dict[str, str]:
        """Map Entrez ids back to gene symbols; unmapped ids are omitted."""
        entrez_ids = [str(i) for i in entrez_ids if pd.notna(i)]
        cache = self._query(entrez_ids, 'entrezgene')
        return {
            entrez: cache[entrez]['symbol']
            for entrez in entrez_ids
            if cache[entrez]['symbol'] is not None
        }
