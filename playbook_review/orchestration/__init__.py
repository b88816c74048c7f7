"""Review orchestration utilities."""

from .config_loader import load_review_config, load_review_request
from .windows import ProgressCounter, ProgressUpdate, run_in_windows

__all__ = [
    "ProgressCounter",
    "ProgressUpdate",
    "load_review_config",
    "load_review_request",
    "run_in_windows",
]
