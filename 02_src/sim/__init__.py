"""Scenario simulator."""

from .sim import DETOUR_SCRIPT, STORYTELLER_SCRIPT, ISim, Sim

__all__ = ["ISim", "Sim", "STORYTELLER_SCRIPT", "DETOUR_SCRIPT"]
