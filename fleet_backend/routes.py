"""
HTTP routes for the fleet backend API.

Component errors propagate to the exception handlers registered in
``fleet_backend.app``, which render them as ``{"error": message}``.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from fleet_backend.db import MachineStore
from fleet_backend.dependencies import get_dispatcher, get_provider, get_store
from fleet_backend.dispatcher import CommandDispatcher, CommandKind
from fleet_backend.provider import NodeStatusProvider
from fleet_backend.reconciler import refresh_all
from fleet_backend.schemas import (
    CommandResponse,
    CreateMachineRequest,
    ErrorResponse,
    MachineMutationResponse,
    MachineResponse,
    RefreshMachinesResponse,
    SuccessResponse,
    UpdateMachineRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["machines"])

_ERRORS = {500: {"model": ErrorResponse}}
_NOT_FOUND = {404: {"model": ErrorResponse}, **_ERRORS}


@router.get(
    "/refresh-machines", response_model=RefreshMachinesResponse, responses=_ERRORS
)
def refresh_machines(
    store: MachineStore = Depends(get_store),
    provider: NodeStatusProvider = Depends(get_provider),
):
    """
    Pull the provider snapshot into the registry and return both.
    """
    machines, nodes = refresh_all(store, provider)
    return {
        "success": True,
        "machines": [machine.as_dict() for machine in machines],
        "nodes": nodes,
    }


@router.get("/machines", response_model=list[MachineResponse], responses=_ERRORS)
def list_machines(store: MachineStore = Depends(get_store)):
    return [machine.as_dict() for machine in store.list_machines()]


@router.post(
    "/machines",
    response_model=MachineMutationResponse,
    responses={400: {"model": ErrorResponse}, **_ERRORS},
)
def add_machine(
    payload: CreateMachineRequest, store: MachineStore = Depends(get_store)
):
    machine = store.create_machine(payload.name, payload.startUrl, payload.stopUrl)
    logger.info("Added machine %s (%s)", machine.name, machine.machine_id)
    return {"success": True, "machine": machine.as_dict()}


@router.put(
    "/machines/{machine_id}",
    response_model=MachineMutationResponse,
    responses=_NOT_FOUND,
)
def update_machine(
    machine_id: str,
    payload: UpdateMachineRequest,
    store: MachineStore = Depends(get_store),
):
    machine = store.update_machine(machine_id, payload.startUrl, payload.stopUrl)
    return {"success": True, "machine": machine.as_dict()}


@router.delete(
    "/machines/{machine_id}", response_model=SuccessResponse, responses=_ERRORS
)
def delete_machine(
    machine_id: str,
    store: MachineStore = Depends(get_store),
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
):
    store.delete_machine(machine_id)
    dispatcher.cancel_pending(machine_id)
    return {"success": True}


@router.post(
    "/machines/{machine_id}/start", response_model=CommandResponse, responses=_NOT_FOUND
)
def start_machine(
    machine_id: str, dispatcher: CommandDispatcher = Depends(get_dispatcher)
):
    message = dispatcher.send_command(machine_id, CommandKind.START)
    return {"success": True, "message": message}


@router.post(
    "/machines/{machine_id}/stop", response_model=CommandResponse, responses=_NOT_FOUND
)
def stop_machine(
    machine_id: str, dispatcher: CommandDispatcher = Depends(get_dispatcher)
):
    message = dispatcher.send_command(machine_id, CommandKind.STOP)
    return {"success": True, "message": message}


@router.get("/nodes", response_model=list[str], responses=_ERRORS)
def list_nodes(provider: NodeStatusProvider = Depends(get_provider)):
    """Node names known upstream, for the add-machine dropdown."""
    return provider.list_node_names()
