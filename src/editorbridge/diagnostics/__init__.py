"""Compiler diagnostics harvested from the host's artifacts."""

from .aggregator import DiagnosticsAggregator
from .models import CompilationStatus, DiagnosticRecord, Severity
from .sources import (
    BuildPipelineSource,
    CompilerOutputSource,
    DiagnosticSource,
    SessionLogSource,
    StructuredResultSource,
    default_sources,
)

__all__ = [
    "BuildPipelineSource",
    "CompilationStatus",
    "CompilerOutputSource",
    "DiagnosticRecord",
    "DiagnosticSource",
    "DiagnosticsAggregator",
    "SessionLogSource",
    "Severity",
    "StructuredResultSource",
    "default_sources",
]
