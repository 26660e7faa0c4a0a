"""
Exception types shared by the store, provider client and dispatcher.
"""

from __future__ import annotations


class FleetError(Exception):
    """Base class for errors the API maps to JSON error responses."""


class DuplicateNameError(FleetError):
    def __init__(self, name: str):
        super().__init__("Machine with this name already exists")
        self.name = name


class MachineNotFoundError(FleetError):
    def __init__(self, machine_id: str):
        super().__init__("Machine not found")
        self.machine_id = machine_id


class UpstreamUnavailableError(FleetError):
    """The node status provider could not be reached or returned garbage."""


class DispatchFailedError(FleetError):
    """A start/stop call to a machine's control URL failed."""


class StoreError(FleetError):
    """Generic persistence failure."""
