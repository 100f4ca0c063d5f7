"""
Comparison Registry
===================

Static definitions of the sample comparisons analysed in the study.

Each comparison names:
1. the directory holding its sample metadata (``<results-root>/<name>/``)
2. the metadata file inside that directory
3. the contrast label, written ``<numerator>_vs_<baseline>``

The registry is read from the ``comparisons`` section of the YAML config
and is immutable once loaded.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple
import logging

logger = logging.getLogger(__name__)

CONTRAST_SEPARATOR = '_vs_'


def parse_contrast(contrast_label: str) -> Tuple[str, str]:
    """
    Split a contrast label into its two condition groups.

    The baseline is everything after the first ``_vs_`` token and the
    numerator everything before it. Labels are fixed constants, so exactly
    one separator is assumed.

    Parameters
    ----------
    contrast_label : str
        Label such as ``IL1a24h_vs_PBS24h``

    Returns
    -------
    Tuple[str, str]
        (numerator, baseline)
    """
    match = re.search(r'(?<=_vs_).*', contrast_label)
    if match is None:
        raise ValueError(
            f"Contrast label '{contrast_label}' has no '{CONTRAST_SEPARATOR}' separator"
        )

    baseline = match.group(0)
    numerator = contrast_label[:match.start() - len(CONTRAST_SEPARATOR)]

    if not numerator or not baseline:
        raise ValueError(f"Contrast label '{contrast_label}' is missing a group name")

    return numerator, baseline


@dataclass(frozen=True)
class ComparisonSpec:
    """One sample comparison."""

    name: str
    metadata_file: str
    contrast_label: str

    def __post_init__(self):
        # Fail at load time rather than halfway through a run
        parse_contrast(self.contrast_label)

    @property
    def numerator(self) -> str:
        return parse_contrast(self.contrast_label)[0]

    @property
    def baseline(self) -> str:
        return parse_contrast(self.contrast_label)[1]


def load_comparisons(config: Dict[str, Any]) -> List[ComparisonSpec]:
    """
    Build the comparison registry from a parsed config.

    Parameters
    ----------
    config : Dict[str, Any]
        Parsed YAML configuration with a ``comparisons`` list

    Returns
    -------
    List[ComparisonSpec]
        Comparisons in registry order
    """
    entries = config.get('comparisons') or []
    if not entries:
        raise ValueError("No comparisons defined in configuration")

    specs = [
        ComparisonSpec(
            name=str(entry['name']),
            metadata_file=str(entry['metadata_file']),
            contrast_label=str(entry['contrast'])
        )
        for entry in entries
    ]

    # Output directories are keyed by contrast label
    seen = set()
    for spec in specs:
        if spec.contrast_label in seen:
            raise ValueError(f"Duplicate contrast label in registry: {spec.contrast_label}")
        seen.add(spec.contrast_label)

    logger.info(f"Loaded {len(specs)} comparisons")
    return specs
