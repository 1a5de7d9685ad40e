"""Dialogue module."""

from .definition import DialogueDefinition, StateSpec, Step, UnknownStateError
from .storyteller import State, build_storyteller_dialogue, normalize_phone

__all__ = [
    "DialogueDefinition",
    "StateSpec",
    "Step",
    "UnknownStateError",
    "State",
    "build_storyteller_dialogue",
    "normalize_phone",
]
