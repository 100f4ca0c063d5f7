"""
Gene Set Provider
=================

Loads the annotated gene set families used for GSEA and normalises every
member list to Entrez gene ids so they match the ranked gene list.

Families:
- MSIGDB: MSigDB collections (gseapy.Msigdb)
- KEGG: KEGG pathways via the KEGG REST API
- GO_CC / GO_BP / GO_MF: Gene Ontology branches (Enrichr GO libraries)
- custom: user GMT files

Each family is built at most once per process and cached in memory.
Downloaded families are also cached as JSON under ``cache_dir``.
"""

import json
import re
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional
import logging

import requests
import gseapy as gp
from gseapy import Msigdb

from .gmt import read_gmt_dir

logger = logging.getLogger(__name__)

FAMILIES = ('MSIGDB', 'KEGG', 'GO_CC', 'GO_MF', 'GO_BP', 'custom')

GO_BRANCHES = ('GO_CC', 'GO_BP', 'GO_MF')

DEFAULT_GO_LIBRARIES = {
    'GO_CC': 'GO_Cellular_Component_2023',
    'GO_BP': 'GO_Biological_Process_2023',
    'GO_MF': 'GO_Molecular_Function_2023',
}

KEGG_REST_URL = 'https://rest.kegg.jp'

GO_TERM_PATTERN = re.compile(r'^(?P<name>.*)\s+\((?P<id>GO:\d+)\)$')

CACHE_KEY_UNSAFE = re.compile(r'[^A-Za-z0-9._+-]')


@dataclass
class GeneSetCollection:
    """Gene sets of one family, keyed by term id, members as Entrez ids."""

    name: str
    gene_sets: Dict[str, List[str]]
    descriptions: Dict[str, str] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.gene_sets)

    def describe(self, term: str) -> str:
        return self.descriptions.get(term, term)

    def to_dict(self) -> Dict:
        return {
            'name': self.name,
            'gene_sets': self.gene_sets,
            'descriptions': self.descriptions
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'GeneSetCollection':
        return cls(
            name=data['name'],
            gene_sets={k: list(v) for k, v in data['gene_sets'].items()},
            descriptions=dict(data.get('descriptions', {}))
        )


def split_go_term(term: str):
    """Split an Enrichr GO term ``name (GO:0000001)`` into (id, name)."""
    match = GO_TERM_PATTERN.match(term)
    if match is None:
        return term, term
    return match.group('id'), match.group('name')


class GeneSetProvider:
    """Build and share the gene set collections for one organism."""

    def __init__(
        self,
        mapper,
        kegg_code: str = 'hsa',
        msigdb_dbver: str = '2023.2.Hs',
        msigdb_categories: Optional[List[str]] = None,
        enrichr_organism: str = 'Human',
        go_libraries: Optional[Dict[str, str]] = None,
        gmt_dir: Optional[str] = None,
        cache_dir: Optional[str] = None,
        timeout: int = 120
    ):
        """
        Parameters
        ----------
        mapper : GeneIdMapper
            Symbol -> Entrez lookup shared with the DE annotation
        kegg_code : str
            KEGG organism code
        msigdb_dbver : str
            MSigDB release, e.g. ``2023.2.Hs``
        msigdb_categories : List[str], optional
            MSigDB collections to merge, e.g. ``['h.all', 'c2.all']``
        enrichr_organism : str
            Organism for the Enrichr GO libraries
        go_libraries : Dict[str, str], optional
            GO branch -> Enrichr library name
        gmt_dir : str, optional
            Directory with custom ``*.gmt`` files
        cache_dir : str, optional
            Directory for JSON caches of downloaded families
        timeout : int
            HTTP timeout in seconds
        """
        self.mapper = mapper
        self.kegg_code = kegg_code
        self.msigdb_dbver = msigdb_dbver
        self.msigdb_categories = list(msigdb_categories or ['h.all'])
        self.enrichr_organism = enrichr_organism
        self.go_libraries = {**DEFAULT_GO_LIBRARIES, **(go_libraries or {})}
        self.gmt_dir = Path(gmt_dir) if gmt_dir else None
        self.cache_dir = Path(cache_dir) if cache_dir else None
        self.timeout = timeout

        self._collections: Dict[str, GeneSetCollection] = {}

    # =========================================================================
    # Public access
    # =========================================================================

    def get(self, family: str) -> GeneSetCollection:
        """Return a family's collection, building it on first use."""
        if family not in FAMILIES:
            raise KeyError(f"Unknown gene set family: {family}")

        if family not in self._collections:
            self._collections[family] = self._build(family)
            logger.info(f"{family}: {len(self._collections[family])} gene sets")

        return self._collections[family]

    def load_all(self) -> Dict[str, GeneSetCollection]:
        """Build every family up front."""
        return {family: self.get(family) for family in FAMILIES}

    def _build(self, family: str) -> GeneSetCollection:
        if family == 'custom':
            return self.load_custom()

        cached = self._read_cache(family)
        if cached is not None:
            return cached

        if family == 'MSIGDB':
            collection = self.load_msigdb()
        elif family == 'KEGG':
            collection = self.load_kegg()
        else:
            collection = self.load_go(family)

        self._write_cache(family, collection)
        return collection

    # =========================================================================
    # Cache
    # =========================================================================

    def cache_key(self, family: str) -> str:
        """Cache name built from every setting that selects the family's source."""
        if family == 'MSIGDB':
            key = f"msigdb_{self.msigdb_dbver}_{'+'.join(self.msigdb_categories)}"
        elif family == 'KEGG':
            key = f"kegg_{self.kegg_code}"
        else:
            key = f"{family.lower()}_{self.go_libraries[family]}_{self.enrichr_organism}"
        return CACHE_KEY_UNSAFE.sub('_', key)

    def _cache_file(self, family: str) -> Optional[Path]:
        if self.cache_dir is None:
            return None
        return self.cache_dir / f"{self.cache_key(family)}.json"

    def _read_cache(self, family: str) -> Optional[GeneSetCollection]:
        cache_file = self._cache_file(family)
        if cache_file is None or not cache_file.exists():
            return None

        logger.info(f"Loading {family} gene sets from cache: {cache_file}")
        with open(cache_file) as f:
            return GeneSetCollection.from_dict(json.load(f))

    def _write_cache(self, family: str, collection: GeneSetCollection):
        cache_file = self._cache_file(family)
        if cache_file is None or not len(collection):
            return

        cache_file.parent.mkdir(parents=True, exist_ok=True)
        with open(cache_file, 'w') as f:
            json.dump(collection.to_dict(), f)
        logger.info(f"Saved {family} gene sets to cache: {cache_file}")

    # =========================================================================
    # Sources
    # =========================================================================

    def _symbols_to_entrez(self, gene_sets: Dict[str, Iterable[str]]) -> Dict[str, List[str]]:
        """Translate symbol members to Entrez ids, dropping unmapped genes."""
        symbols = sorted({s for members in gene_sets.values() for s in members})
        symbol_map = self.mapper.symbols_to_entrez(symbols)

        translated = {}
        for term, members in gene_sets.items():
            entrez = list(dict.fromkeys(symbol_map[s] for s in members if s in symbol_map))
            if entrez:
                translated[term] = entrez

        dropped = len(gene_sets) - len(translated)
        if dropped:
            logger.warning(f"{dropped} gene sets had no members with an Entrez id")

        return translated

    def load_msigdb(self) -> GeneSetCollection:
        """MSigDB collections for the organism, merged."""
        msig = Msigdb()
        raw = {}
        for category in self.msigdb_categories:
            gmt = msig.get_gmt(category=category, dbver=self.msigdb_dbver)
            if not gmt:
                logger.warning(f"MSigDB category {category} ({self.msigdb_dbver}) returned no gene sets")
                continue
            raw.update(gmt)

        gene_sets = self._symbols_to_entrez(raw)
        return GeneSetCollection('MSIGDB', gene_sets, {term: term for term in gene_sets})

    def _kegg_get(self, operation: str) -> List[List[str]]:
        url = f"{KEGG_REST_URL}/{operation}"
        response = requests.get(url, timeout=self.timeout)
        response.raise_for_status()
        return [line.split('\t') for line in response.text.splitlines() if line.strip()]

    def load_kegg(self) -> GeneSetCollection:
        """KEGG pathways for ``kegg_code``; KEGG gene ids are Entrez ids."""
        descriptions = {}
        for pathway_id, name in self._kegg_get(f"list/pathway/{self.kegg_code}"):
            pathway_id = pathway_id.replace('path:', '')
            descriptions[pathway_id] = name.rsplit(' - ', 1)[0]

        members = defaultdict(list)
        for pathway_id, gene in self._kegg_get(f"link/{self.kegg_code}/pathway"):
            pathway_id = pathway_id.replace('path:', '')
            gene_id = gene.split(':', 1)[-1]
            if gene_id not in members[pathway_id]:
                members[pathway_id].append(gene_id)

        gene_sets = dict(members)
        return GeneSetCollection(
            'KEGG',
            gene_sets,
            {pid: descriptions.get(pid, pid) for pid in gene_sets}
        )

    def load_go(self, branch: str) -> GeneSetCollection:
        """One Gene Ontology branch, keyed by GO id."""
        if branch not in GO_BRANCHES:
            raise KeyError(f"Unknown GO branch: {branch}")

        library = gp.get_library(name=self.go_libraries[branch], organism=self.enrichr_organism)

        raw = {}
        descriptions = {}
        for term, genes in library.items():
            go_id, name = split_go_term(term)
            raw[go_id] = genes
            descriptions[go_id] = name

        gene_sets = self._symbols_to_entrez(raw)
        return GeneSetCollection(
            branch,
            gene_sets,
            {go_id: descriptions[go_id] for go_id in gene_sets}
        )

    def load_custom(self) -> GeneSetCollection:
        """Custom GMT sets; an absent directory gives an empty collection."""
        if self.gmt_dir is None:
            return GeneSetCollection('custom', {})

        raw = read_gmt_dir(str(self.gmt_dir))
        if not raw:
            return GeneSetCollection('custom', {})

        gene_sets = self._symbols_to_entrez(raw)
        return GeneSetCollection('custom', gene_sets, {term: term for term in gene_sets})
