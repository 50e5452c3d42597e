"""
Normalization of nested API payloads.

Flattens observations into independent per-kind tables linked by id.
"""

from inatsync.core.normalize.normalizer import Normalizer
from inatsync.core.normalize.pipeline import (
    PIPELINE,
    Extraction,
    PassGroup,
    PipelineError,
    validate_pipeline,
)
from inatsync.core.normalize.tables import EntityTables, extract_array, extract_object

__all__ = [
    "PIPELINE",
    "EntityTables",
    "Extraction",
    "Normalizer",
    "PassGroup",
    "PipelineError",
    "extract_array",
    "extract_object",
    "validate_pipeline",
]
