"""Registry loading, marker extraction and compliance analysis for Tracemark."""

from .compliance import ComplianceMatrix, build, build_matrix
from .extractor import extract, extract_all, scan_paths
from .gaps import classify, classify_all
from .heuristic import SourceIndex, apply_heuristics, heuristic_match
from .registry_loader import load
from .validator import validate, validate_all

__all__ = [
    "ComplianceMatrix",
    "SourceIndex",
    "apply_heuristics",
    "build",
    "build_matrix",
    "classify",
    "classify_all",
    "extract",
    "extract_all",
    "heuristic_match",
    "load",
    "scan_paths",
    "validate",
    "validate_all",
]
