from __future__ import annotations

import re
from typing import Iterable

from playbook_review.models.rules import Rule


_RULE_PREFIX = re.compile(r"^Rule\s+", re.IGNORECASE)


def normalize_rule_id(raw_id: object, known_rules: Iterable[Rule]) -> str:
    """Reconcile a generated rule id with the known rule ids.

    Exact matches win; otherwise the first known id that contains, or is
    contained in, the cleaned id is returned. Unknown ids come back cleaned
    but otherwise unchanged.
    """

    cleaned = _RULE_PREFIX.sub("", str(raw_id if raw_id is not None else "").strip()).strip()
    known_ids = [rule.id for rule in known_rules if rule.id]

    if cleaned in known_ids:
        return cleaned
    if not cleaned:
        return cleaned

    for known in known_ids:
        if cleaned in known or known in cleaned:
            return known
    return cleaned


__all__ = ["normalize_rule_id"]
