"""
Dependency wiring for the FastAPI app.

The store, provider and dispatcher are built once per application by
``build_services`` and handed to routes from ``app.state``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Request

from fleet_backend.config import Settings
from fleet_backend.db import InMemoryMachineStore, MachineStore, SqlMachineStore
from fleet_backend.dispatcher import CommandDispatcher
from fleet_backend.provider import HttpNodeStatusProvider, NodeStatusProvider

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: MachineStore
    provider: NodeStatusProvider
    dispatcher: CommandDispatcher

    def close(self) -> None:
        self.dispatcher.shutdown()
        self.store.close()


def build_store(settings: Settings) -> MachineStore:
    if settings.use_in_memory_backends or not settings.database_url:
        logger.info("Using in-memory machine store")
        return InMemoryMachineStore()
    return SqlMachineStore(settings.database_url)


def build_services(
    settings: Settings,
    *,
    store: MachineStore | None = None,
    provider: NodeStatusProvider | None = None,
    dispatcher: CommandDispatcher | None = None,
) -> Services:
    store = store or build_store(settings)
    provider = provider or HttpNodeStatusProvider(
        settings.provider_url, timeout=settings.request_timeout_seconds
    )
    dispatcher = dispatcher or CommandDispatcher(
        store,
        provider,
        refresh_delay_seconds=settings.status_refresh_delay_seconds,
        timeout=settings.request_timeout_seconds,
    )
    return Services(store=store, provider=provider, dispatcher=dispatcher)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_store(request: Request) -> MachineStore:
    return get_services(request).store


def get_provider(request: Request) -> NodeStatusProvider:
    return get_services(request).provider


def get_dispatcher(request: Request) -> CommandDispatcher:
    return get_services(request).dispatcher
