"""
RNA-seq GSEA Pipeline
=====================

Main pipeline script that orchestrates, for every registered comparison:
1. Salmon import, low-count filtering and differential expression (DESeq2)
2. Ranked gene list preparation
3. Gene set enrichment analysis for each gene set family
4. Reports: tables, running-score plots, summary

Usage:
    python pipeline.py --config configs/config.yaml
    python pipeline.py --comparison IL1a_24h --comparison TNFa_24h
    python pipeline.py --check-inputs
"""

import argparse
import yaml
import pandas as pd
from pathlib import Path
from typing import Dict, List, Optional
import logging
from datetime import datetime

# Import modules
from registry.comparisons import ComparisonSpec, load_comparisons
from preprocessing.data_loader import InputResolver, SalmonQuantLoader, filter_low_counts
from annotation.gene_ids import GeneIdMapper
from de_analysis.differential_expression import (
    DEAnalysis,
    annotate_gene_ids,
    prepare_ranked_list,
    filter_significant
)
from gene_sets.provider import FAMILIES, GeneSetProvider
from enrichment.gsea import EnrichmentParams, GSEAEngine, ResultsBundle
from reporting.gsea_report import report, write_comparison_summary

logger = logging.getLogger(__name__)

DEG_FILENAME = 'DEG_Results.txt'
RANKED_FILENAME = 'ranked_genes.rnk'


class GSEAPipeline:
    """Differential expression and GSEA over a registry of comparisons."""

    def __init__(
        self,
        config_path: str,
        mapper: Optional[GeneIdMapper] = None,
        gene_sets: Optional[GeneSetProvider] = None,
        engine: Optional[GSEAEngine] = None
    ):
        """
        Initialize pipeline with configuration.

        Parameters
        ----------
        config_path : str
            Path to YAML configuration file
        mapper : GeneIdMapper, optional
            Gene id lookup; built from the ``organism`` section if omitted
        gene_sets : GeneSetProvider, optional
            Shared gene set collections
        engine : GSEAEngine, optional
            Enrichment engine
        """
        with open(config_path, 'r') as f:
            self.config = yaml.safe_load(f)

        self.project_root = Path(config_path).parent.parent

        paths = self.config['paths']
        self.input_root = self._resolve(paths['input_root'])
        self.results_root = self._resolve(paths['results_root'])
        self.tx2gene_file = self._resolve(paths.get('tx2gene') or self.input_root / 'salmon_tx2gene.tsv')
        self.gmt_dir = self._resolve(paths.get('gmt_dir') or self.input_root / 'GMT')
        self.cache_dir = self._resolve(paths.get('cache_dir') or 'data/gene_sets')

        self.comparisons = load_comparisons(self.config)

        organism = self.config.get('organism', {})
        self.mapper = mapper or GeneIdMapper(species=organism.get('species', 'human'))
        self.gene_sets = gene_sets or GeneSetProvider(
            self.mapper,
            kegg_code=organism.get('kegg_code', 'hsa'),
            msigdb_dbver=organism.get('msigdb_dbver', '2023.2.Hs'),
            msigdb_categories=organism.get('msigdb_categories'),
            enrichr_organism=organism.get('enrichr_organism', 'Human'),
            go_libraries=organism.get('go_libraries'),
            gmt_dir=str(self.gmt_dir),
            cache_dir=str(self.cache_dir)
        )
        self.engine = engine or self._build_engine()

        self.loader = SalmonQuantLoader(
            str(self.input_root),
            str(self.results_root),
            tx2gene_file=str(self.tx2gene_file),
            condition_col=self.config['deseq2'].get('condition_column', 'condition')
        )

        # Per-comparison outcomes of the last run
        self.results: Dict[str, Dict] = {}

        logger.info(f"Initialized pipeline for: {self.config['project']['name']}")

    def _resolve(self, path) -> Path:
        path = Path(path)
        return path if path.is_absolute() else self.project_root / path

    def _build_engine(self) -> GSEAEngine:
        gsea_cfg = self.config.get('gsea', {})
        overrides = {
            family: EnrichmentParams(**params)
            for family, params in (gsea_cfg.get('families') or {}).items()
        }
        return GSEAEngine(
            self.gene_sets,
            family_params=overrides,
            permutation_num=gsea_cfg.get('permutation_num', 1000),
            seed=gsea_cfg.get('seed', 123),
            threads=gsea_cfg.get('threads', 4)
        )

    def comparison_dir(self, spec: ComparisonSpec) -> Path:
        return self.results_root / spec.contrast_label

    def check_inputs(self) -> Dict[str, bool]:
        """Pre-flight: report metadata availability for every comparison."""
        logger.info("=== Checking inputs ===")
        resolver = InputResolver(str(self.input_root), str(self.results_root), str(self.tx2gene_file))
        return resolver.check(self.comparisons)

    def prepare_output_dirs(self, spec: ComparisonSpec) -> Path:
        """Create the comparison directory and one directory per family."""
        out_dir = self.comparison_dir(spec)
        for family in FAMILIES:
            (out_dir / family).mkdir(parents=True, exist_ok=True)
        return out_dir

    def step1_differential_expression(self, spec: ComparisonSpec) -> pd.DataFrame:
        """Import counts, filter and run DESeq2 for one comparison."""
        logger.info(f"=== Step 1: Differential Expression ({spec.contrast_label}) ===")
        deseq_cfg = self.config['deseq2']

        metadata = self.loader.load_metadata(spec)
        counts = self.loader.import_counts(list(metadata.index))

        counts_filtered = filter_low_counts(
            counts,
            metadata[self.loader.condition_col],
            min_count=deseq_cfg.get('min_count', 10)
        )

        de = DEAnalysis(counts_filtered, metadata, condition_col=self.loader.condition_col)
        de_results = de.run_deseq2(
            (spec.numerator, spec.baseline),
            alpha=deseq_cfg.get('alpha', 0.05),
            shrink=deseq_cfg.get('shrink', True),
            n_cpus=deseq_cfg.get('n_cpus')
        )
        de_results = annotate_gene_ids(de_results, self.mapper)

        output_path = self.comparison_dir(spec) / DEG_FILENAME
        de_results.to_csv(output_path, sep='\t')
        logger.info(f"Saved DE results to {output_path}")

        return de_results

    def step2_rank_genes(self, spec: ComparisonSpec, de_results: pd.DataFrame) -> pd.Series:
        """Ranked Entrez list for GSEA."""
        logger.info("=== Step 2: Ranked Gene List ===")

        ranked = prepare_ranked_list(de_results)
        ranked.to_csv(self.comparison_dir(spec) / RANKED_FILENAME, sep='\t', header=False)

        return ranked

    def step3_gsea(self, ranked: pd.Series) -> ResultsBundle:
        """Run GSEA for every gene set family."""
        logger.info("=== Step 3: Gene Set Enrichment Analysis ===")

        bundle = self.engine.run_all(ranked)
        for family, error in bundle.failures().items():
            logger.warning(f"{family} skipped in reports: {error}")

        return bundle

    def step4_report(
        self,
        spec: ComparisonSpec,
        bundle: ResultsBundle,
        de_results: pd.DataFrame
    ) -> Dict:
        """Write per-family tables and plots plus the comparison summary."""
        logger.info("=== Step 4: Reports ===")
        report_cfg = self.config.get('reporting', {})

        annotated = de_results.dropna(subset=['ENTREZID', 'SYMBOL'])
        symbol_map = dict(zip(annotated['ENTREZID'].astype(str), annotated['SYMBOL'].astype(str)))

        figsize = tuple(report_cfg.get('figsize', (6, 4)))
        dpi = report_cfg.get('dpi', 300)

        report(
            bundle,
            self.comparison_dir(spec),
            symbol_map,
            n_jobs=report_cfg.get('n_jobs', -1),
            figsize=figsize,
            dpi=dpi
        )
        return write_comparison_summary(
            bundle,
            self.comparison_dir(spec),
            comparison=spec.name,
            contrast_label=spec.contrast_label,
            top_n=report_cfg.get('top_n', 10),
            dpi=dpi
        )

    def run_comparison(self, spec: ComparisonSpec) -> Dict:
        """Run all steps for one comparison."""
        self.prepare_output_dirs(spec)

        de_results = self.step1_differential_expression(spec)
        ranked = self.step2_rank_genes(spec, de_results)
        bundle = self.step3_gsea(ranked)
        summary = self.step4_report(spec, bundle, de_results)

        padj = self.config['deseq2'].get('alpha', 0.05)
        summary['de_analysis'] = {
            'tested_genes': len(de_results),
            'ranked_genes': len(ranked),
            'significant_genes': len(filter_significant(de_results, padj_threshold=padj))
        }
        return summary

    def run(self, names: Optional[List[str]] = None) -> Dict[str, Dict]:
        """
        Run the registered comparisons in order.

        Parameters
        ----------
        names : List[str], optional
            Comparison names to run; all when omitted
        """
        specs = self.comparisons
        if names:
            known = {spec.name for spec in specs}
            unknown = [n for n in names if n not in known]
            if unknown:
                raise ValueError(f"Unknown comparisons: {unknown}")
            specs = [spec for spec in specs if spec.name in names]

        continue_on_error = self.config.get('pipeline', {}).get('continue_on_error', False)

        logger.info("=" * 60)
        logger.info(f"Starting GSEA pipeline: {len(specs)} comparisons")
        logger.info("=" * 60)

        start_time = datetime.now()
        self.check_inputs()

        for spec in specs:
            logger.info("=" * 60)
            logger.info(f"Comparison {spec.name}: {spec.numerator} vs {spec.baseline}")
            logger.info("=" * 60)
            try:
                self.results[spec.name] = self.run_comparison(spec)
            except (FileNotFoundError, ValueError) as e:
                if not continue_on_error:
                    raise
                logger.error(f"Comparison {spec.name} failed: {e}")
                self.results[spec.name] = {'comparison': spec.name, 'error': str(e)}

        duration = datetime.now() - start_time
        logger.info("=" * 60)
        logger.info(f"Pipeline completed in {duration}")
        logger.info(f"Results saved to: {self.results_root}")
        logger.info("=" * 60)

        self._print_summary()
        return self.results

    def _print_summary(self):
        print("\n" + "=" * 60)
        print("GSEA PIPELINE SUMMARY")
        print("=" * 60)
        for name, summary in self.results.items():
            if 'error' in summary:
                print(f"{name}: FAILED ({summary['error']})")
                continue
            families = summary.get('families', {})
            enriched = {f: s['enriched_terms'] for f, s in families.items() if s['status'] == 'ok'}
            failed = [f for f, s in families.items() if s['status'] == 'failed']
            print(f"{name}: {enriched}" + (f", failed: {failed}" if failed else ""))


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='RNA-seq DEG and GSEA Pipeline')
    parser.add_argument(
        '--config',
        type=str,
        default='configs/config.yaml',
        help='Path to configuration file'
    )
    parser.add_argument(
        '--comparison',
        action='append',
        default=None,
        help='Comparison name to run (repeatable; default: all)'
    )
    parser.add_argument(
        '--check-inputs',
        action='store_true',
        help='Only report whether input files exist'
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Resolve config path
    config_path = Path(args.config)
    if not config_path.is_absolute():
        config_path = Path(__file__).parent.parent / config_path

    pipeline = GSEAPipeline(str(config_path))

    if args.check_inputs:
        pipeline.check_inputs()
    else:
        pipeline.run(args.comparison)


if __name__ == "__main__":
    main()
