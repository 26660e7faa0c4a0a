"""
Pydantic schemas for the fleet backend API.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class CreateMachineRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=256)
    startUrl: str = ""
    stopUrl: str = ""


class UpdateMachineRequest(BaseModel):
    # Omitted fields keep their stored value.
    startUrl: Optional[str] = None
    stopUrl: Optional[str] = None


class MachineResponse(BaseModel):
    id: str
    name: str
    nodeId: str
    startUrl: str
    stopUrl: str
    status: str
    os: str
    ip: str
    lastBootUpTime: str
    createdAt: str


class MachineMutationResponse(BaseModel):
    success: Literal[True] = True
    machine: MachineResponse


class RefreshMachinesResponse(BaseModel):
    success: Literal[True] = True
    machines: list[MachineResponse]
    nodes: dict[str, dict]


class CommandResponse(BaseModel):
    success: Literal[True] = True
    message: str


class SuccessResponse(BaseModel):
    success: Literal[True] = True


class ErrorResponse(BaseModel):
    error: str
