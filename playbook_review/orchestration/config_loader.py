from __future__ import annotations

import json
import tomllib
from pathlib import Path
from typing import Any, Dict

import yaml

from playbook_review.models.configs import ReviewConfig, ReviewRequestFile


def load_structured_file(path: Path | str) -> Dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    ext = path.suffix.lower()
    text = path.read_text(encoding="utf-8")

    if ext in {".yaml", ".yml"}:
        data = yaml.safe_load(text)
    elif ext == ".toml":
        data = tomllib.loads(text)
    elif ext == ".json":
        data = json.loads(text)
    else:
        raise ValueError(f"Unsupported config format '{ext}' for {path}")

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level")
    return data


def load_review_config(path: Path | str) -> ReviewConfig:
    raw = load_structured_file(path)
    return ReviewConfig.model_validate(raw.get("review", raw))


def load_review_request(path: Path | str) -> ReviewRequestFile:
    """Load an outline plus rules, optionally carrying its own ``config`` block."""

    raw = load_structured_file(path)
    return ReviewRequestFile.model_validate(raw)


__all__ = ["load_review_config", "load_review_request", "load_structured_file"]
