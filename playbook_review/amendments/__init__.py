"""Amendment, new-section, instruction-request and rerun generation."""

from .instructions import InstructionRequestGenerator
from .new_sections import NewSectionInserter
from .rerun import RerunCoordinator, RerunSection
from .scheduler import AmendmentScheduler, is_full_deletion

__all__ = [
    "AmendmentScheduler",
    "InstructionRequestGenerator",
    "NewSectionInserter",
    "RerunCoordinator",
    "RerunSection",
    "is_full_deletion",
]
