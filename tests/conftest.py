"""
RNA-seq GSEA pipeline - Test Configuration and Fixtures
"""
import sys
from pathlib import Path
from types import SimpleNamespace

import numpy as np
import pandas as pd
import pytest
import yaml

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


SAMPLES = {
    'S1': 'PBS24h',
    'S2': 'PBS24h',
    'S3': 'IL1a24h',
    'S4': 'IL1a24h',
}

TX2GENE = [
    ('T1', 'ENSG0001'),
    ('T2', 'ENSG0001'),
    ('T3', 'ENSG0002'),
    ('T4', 'ENSG0003+ENSG0004'),
    ('T5', 'ENSG0005'),
]

# NumReads per transcript for S1..S4; T9 is absent from the tx2gene map
NUM_READS = {
    'T1': [10.4, 20.0, 30.0, 40.0],
    'T2': [5.0, 5.2, 6.0, 7.0],
    'T3': [100.0, 120.0, 80.0, 90.0],
    'T4': [50.0, 60.0, 70.0, 80.0],
    'T5': [12.0, 15.0, 3.0, 5.0],
    'T9': [1.0, 1.0, 1.0, 1.0],
}

ENSEMBL_MAP = {
    'ENSG0001': ('1017', 'CDK2'),
    'ENSG0002': ('7157', 'TP53'),
    'ENSG0003': ('7124', 'TNF'),
}

SYMBOL_MAP = {
    'CDK2': '1017',
    'TP53': '7157',
    'TNF': '7124',
    'IL1A': '3552',
    'GAPDH': '2597',
}


class FakeMapper:
    """In-memory stand-in for GeneIdMapper."""

    def __init__(self, ensembl=None, symbols=None):
        self.ensembl = ENSEMBL_MAP if ensembl is None else ensembl
        self.symbols = SYMBOL_MAP if symbols is None else symbols
        self.symbol_queries = []

    def ensembl_to_entrez(self, ensembl_ids):
        rows = []
        for gene_id in ensembl_ids:
            entrez, symbol = self.ensembl.get(gene_id, (None, None))
            rows.append({'ENSEMBL': gene_id, 'ENTREZID': entrez, 'SYMBOL': symbol})
        return pd.DataFrame(rows, columns=['ENSEMBL', 'ENTREZID', 'SYMBOL'])

    def symbols_to_entrez(self, symbols):
        symbols = list(symbols)
        self.symbol_queries.append(symbols)
        return {s: self.symbols[s] for s in symbols if s in self.symbols}

    def entrez_to_symbols(self, entrez_ids):
        reverse = {v: k for k, v in self.symbols.items()}
        return {i: reverse[i] for i in entrez_ids if i in reverse}


class FakeProvider:
    """GeneSetProvider stand-in serving prebuilt collections."""

    def __init__(self, collections):
        self.collections = collections

    def get(self, family):
        if family not in self.collections:
            raise LookupError(f"No gene sets available for {family}")
        return self.collections[family]


class FakeDeseqDataSet:
    instances = []

    def __init__(self, counts, metadata, design, refit_cooks=True, inference=None):
        self.counts = counts
        self.metadata = metadata
        self.design = design
        self.fitted = False
        self.obsm = {
            'design_matrix': pd.DataFrame(
                columns=['Intercept', f"condition[T.{metadata['condition'].cat.categories[-1]}]"]
            )
        }
        FakeDeseqDataSet.instances.append(self)

    def deseq2(self):
        self.fitted = True


class FakeDeseqStats:
    instances = []

    def __init__(self, dds, contrast, alpha=0.05, inference=None):
        self.dds = dds
        self.contrast = contrast
        self.alpha = alpha
        self.shrunk_coeff = None
        self.results_df = None
        FakeDeseqStats.instances.append(self)

    def summary(self):
        genes = list(self.dds.counts.columns)
        n = len(genes)
        pvalue = np.linspace(0.001, 0.5, n)[::-1]
        padj = np.minimum(pvalue * 2, 1.0)
        padj[0] = np.nan
        self.results_df = pd.DataFrame({
            'baseMean': self.dds.counts.mean(axis=0).to_numpy(),
            'log2FoldChange': np.linspace(2.0, -2.0, n),
            'lfcSE': 0.1,
            'stat': np.linspace(20.0, -20.0, n),
            'pvalue': pvalue,
            'padj': padj,
        }, index=genes)

    def lfc_shrink(self, coeff):
        self.shrunk_coeff = coeff
        self.results_df['log2FoldChange'] = self.results_df['log2FoldChange'] / 2


@pytest.fixture
def fake_pydeseq2(monkeypatch):
    """Replace PyDESeq2 with deterministic fakes."""
    from de_analysis import differential_expression

    FakeDeseqDataSet.instances = []
    FakeDeseqStats.instances = []
    monkeypatch.setattr(differential_expression, 'DeseqDataSet', FakeDeseqDataSet)
    monkeypatch.setattr(differential_expression, 'DeseqStats', FakeDeseqStats)
    monkeypatch.setattr(differential_expression, 'DefaultInference', lambda n_cpus=None: None)
    return SimpleNamespace(datasets=FakeDeseqDataSet.instances, stats=FakeDeseqStats.instances)


@pytest.fixture
def fake_mapper():
    return FakeMapper()


def _write_quant(path: Path, sample_index: int):
    rows = [
        {
            'Name': tx,
            'Length': 1000,
            'EffectiveLength': 850.0,
            'TPM': 1.0,
            'NumReads': reads[sample_index],
        }
        for tx, reads in NUM_READS.items()
    ]
    path.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame(rows).to_csv(path, sep='\t', index=False)


@pytest.fixture
def salmon_project(tmp_path):
    """
    Project tree with four Salmon samples, a tx2gene table, metadata for
    the IL1a_24h comparison (TNFa_24h has none) and a YAML config.
    """
    root = tmp_path / "project"
    input_root = root / "data" / "salmon"
    results_root = root / "results"

    for i, sample in enumerate(SAMPLES):
        _write_quant(input_root / sample / "quant.sf", i)

    pd.DataFrame(TX2GENE).to_csv(input_root / "salmon_tx2gene.tsv", sep='\t', header=False, index=False)

    metadata_dir = results_root / "IL1a_24h"
    metadata_dir.mkdir(parents=True)
    pd.DataFrame({
        'X': list(SAMPLES),
        'condition': list(SAMPLES.values()),
        'batch': ['b1', 'b2', 'b1', 'b2'],
    }).to_csv(metadata_dir / "metadata.txt", sep='\t', index=False)

    config = {
        'project': {'name': 'test project'},
        'paths': {
            'input_root': 'data/salmon',
            'results_root': 'results',
            'tx2gene': 'data/salmon/salmon_tx2gene.tsv',
            'gmt_dir': 'data/salmon/GMT',
            'cache_dir': 'data/gene_sets',
        },
        'organism': {'species': 'human', 'kegg_code': 'hsa'},
        'deseq2': {'condition_column': 'condition', 'min_count': 10, 'alpha': 0.05, 'shrink': True},
        'gsea': {
            'permutation_num': 100,
            'seed': 7,
            'threads': 1,
            'families': {'KEGG': {'min_size': 5, 'max_size': 500, 'pvalue_cutoff': 0.1}},
        },
        'reporting': {'n_jobs': 1, 'figsize': [6, 4], 'dpi': 50},
        'pipeline': {'continue_on_error': False},
        'comparisons': [
            {'name': 'IL1a_24h', 'metadata_file': 'metadata.txt', 'contrast': 'IL1a24h_vs_PBS24h'},
            {'name': 'TNFa_24h', 'metadata_file': 'metadata.txt', 'contrast': 'TNFa24h_vs_PBS24h'},
        ],
    }
    config_path = root / "configs" / "config.yaml"
    config_path.parent.mkdir(parents=True)
    with open(config_path, 'w') as f:
        yaml.safe_dump(config, f)

    return SimpleNamespace(
        root=root,
        input_root=input_root,
        results_root=results_root,
        tx2gene=input_root / "salmon_tx2gene.tsv",
        config_path=config_path,
    )


@pytest.fixture
def il1a_spec():
    from registry.comparisons import ComparisonSpec
    return ComparisonSpec('IL1a_24h', 'metadata.txt', 'IL1a24h_vs_PBS24h')


@pytest.fixture
def ranked_list():
    return pd.Series(
        {'1017': 2.3, '7157': 1.1, '7124': -0.4, '3552': -1.2},
        name='log2FoldChange'
    )
