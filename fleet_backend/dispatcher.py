"""
Start/stop command dispatch with a delayed status refresh.

A machine's state change is not observable right after its control URL
answers, so every successful command schedules a one-shot refresh that
re-reads the provider after ``refresh_delay_seconds``.
"""

from __future__ import annotations

import enum
import logging
import threading
from typing import Callable, Optional

import requests

from fleet_backend.db import MachineRecord, MachineStore
from fleet_backend.errors import DispatchFailedError, MachineNotFoundError
from fleet_backend.provider import NodeStatusProvider

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_DELAY_SECONDS = 30.0


class CommandKind(enum.Enum):
    START = "start"
    STOP = "stop"


class CommandDispatcher:
    """Sends control calls and owns the pending refresh timers, one per machine."""

    def __init__(
        self,
        store: MachineStore,
        provider: NodeStatusProvider,
        *,
        refresh_delay_seconds: float = DEFAULT_REFRESH_DELAY_SECONDS,
        timeout: Optional[float] = None,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        self.store = store
        self.provider = provider
        self.refresh_delay_seconds = refresh_delay_seconds
        self.timeout = timeout
        self._timer_factory = timer_factory
        self._pending: dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def send_command(self, machine_id: str, kind: CommandKind) -> str:
        """
        Call the machine's start or stop URL and schedule a status refresh.

        Returns the acknowledgment message; the command is accepted, not complete.

        Raises:
            MachineNotFoundError: no record with ``machine_id``.
            DispatchFailedError: the control URL call failed.
        """
        record = self.store.find_by_id(machine_id)
        if not record:
            raise MachineNotFoundError(machine_id)

        url = record.start_url if kind is CommandKind.START else record.stop_url
        if not url:
            raise DispatchFailedError(
                f"Machine {record.name} has no {kind.value} URL configured"
            )
        try:
            response = requests.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning(
                "%s command for %s failed: %s", kind.value, record.name, exc
            )
            raise DispatchFailedError(str(exc)) from exc

        logger.info("%s command sent to %s", kind.value, record.name)
        self.schedule_refresh(record.machine_id)
        return f"{kind.value.capitalize()} command sent"

    def schedule_refresh(self, machine_id: str) -> None:
        """Schedule a refresh, replacing any refresh still pending for the machine."""
        token = object()
        timer = self._timer_factory(
            self.refresh_delay_seconds, self._run_refresh, args=(machine_id, token)
        )
        timer.daemon = True
        timer.token = token
        with self._lock:
            previous = self._pending.pop(machine_id, None)
            if previous is not None:
                previous.cancel()
            self._pending[machine_id] = timer
        timer.start()

    def cancel_pending(self, machine_id: str) -> bool:
        with self._lock:
            timer = self._pending.pop(machine_id, None)
        if timer is None:
            return False
        timer.cancel()
        logger.debug("Cancelled pending status refresh for %s", machine_id)
        return True

    def pending_machine_ids(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    def shutdown(self) -> None:
        with self._lock:
            timers = list(self._pending.values())
            self._pending.clear()
        for timer in timers:
            timer.cancel()
        if timers:
            logger.info("Cancelled %d pending status refreshes", len(timers))

    def _run_refresh(self, machine_id: str, token: object) -> None:
        with self._lock:
            current = self._pending.get(machine_id)
            # A newer command may already have replaced this timer.
            if current is not None and current.token is token:
                del self._pending[machine_id]
        try:
            self.refresh_machine_status(machine_id)
        except Exception:
            # Nobody is waiting on this result any more.
            logger.exception("Error refreshing status for machine %s", machine_id)

    def refresh_machine_status(self, machine_id: str) -> Optional[MachineRecord]:
        """
        Re-read the provider and overwrite one machine's status fields.

        A record deleted in the meantime makes this a no-op.
        """
        record = self.store.find_by_id(machine_id)
        if not record:
            logger.debug("Machine %s no longer exists; skipping refresh", machine_id)
            return None

        nodes = self.provider.fetch_all_node_statuses()
        node = nodes.get(record.name)
        if node is None:
            logger.info("Provider has no node named %s", record.name)
            return None

        # Write by id: a record re-created under the same name is not ours.
        updated = self.store.update_status_by_id(record.machine_id, node)
        if updated is not None:
            logger.info("Machine %s status updated to: %s", record.name, node.status)
        return updated
