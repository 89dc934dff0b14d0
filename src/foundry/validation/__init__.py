"""Candidate validation: static checks plus sandboxed execution."""

from foundry.validation.pipeline import ValidationPipeline
from foundry.validation.structure import KNOWN_HOOK_EVENTS, StructureReport, check_structure

__all__ = ["KNOWN_HOOK_EVENTS", "StructureReport", "ValidationPipeline", "check_structure"]
