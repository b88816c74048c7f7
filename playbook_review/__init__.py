"""Playbook compliance review package."""

from .models.rules import Rule
from .models.section import SectionNode

__all__ = ["Rule", "SectionNode"]
