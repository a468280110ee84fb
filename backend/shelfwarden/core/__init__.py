"""Core business logic package."""

from shelfwarden.core.criteria import ensure_valid, parse_criteria, validate_criteria
from shelfwarden.core.evaluator import evaluate
from shelfwarden.core.field_registry import FIELD_REGISTRY, describe, list_fields
from shelfwarden.core.scan_state import ScanStateManager, scan_state_manager
from shelfwarden.core.scanner import ScanExecutor

__all__ = [
    "FIELD_REGISTRY",
    "ScanExecutor",
    "ScanStateManager",
    "describe",
    "ensure_valid",
    "evaluate",
    "list_fields",
    "parse_criteria",
    "scan_state_manager",
    "validate_criteria",
]
