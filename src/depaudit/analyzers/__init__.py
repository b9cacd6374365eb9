"""Scan strategies and the analysis pipeline."""

from depaudit.analyzers.base import BaseScanner
from depaudit.analyzers.cache import AnalysisCache
from depaudit.analyzers.deny_list import DenyListRegistry
from depaudit.analyzers.metadata_graph import MetadataGraphScanner
from depaudit.analyzers.pipeline import AnalysisPipeline, create_scanner
from depaudit.analyzers.sandbox import SandboxInstallScanner

__all__ = [
    "AnalysisCache",
    "AnalysisPipeline",
    "BaseScanner",
    "DenyListRegistry",
    "MetadataGraphScanner",
    "SandboxInstallScanner",
    "create_scanner",
]
