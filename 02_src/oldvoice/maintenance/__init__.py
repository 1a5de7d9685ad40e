"""Maintenance module."""

from .loop import IMaintenanceLoop, MaintenanceLoop

__all__ = ["IMaintenanceLoop", "MaintenanceLoop"]
