"""Shared interfaces for external collaborators."""

from .generator import BaseGenerator, GenerationOutput, ModelOptions

__all__ = ["BaseGenerator", "GenerationOutput", "ModelOptions"]
