"""
Client for the upstream node status feed.

The provider answers a single GET with
``{"nodes": {<name>: {"id", "status", "os", "ip", "lastbootuptime"}}}``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

import requests

from fleet_backend.errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class NodeStatus:
    """Live status of one node as reported by the provider."""

    name: str
    node_id: str = ""
    status: str = ""
    os: str = ""
    ip: str = ""
    last_boot_up_time: str = ""
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_payload(cls, name: str, payload: dict) -> "NodeStatus":
        return cls(
            name=name,
            node_id=_as_text(payload.get("id")),
            status=_as_text(payload.get("status")),
            os=_as_text(payload.get("os")),
            ip=_as_text(payload.get("ip")),
            last_boot_up_time=_as_text(payload.get("lastbootuptime")),
            raw=dict(payload),
        )


def _as_text(value) -> str:
    if value is None:
        return ""
    return str(value)


class NodeStatusProvider(Protocol):
    """What the reconciler and dispatcher need from the status feed."""

    def fetch_all_node_statuses(self) -> dict[str, NodeStatus]:
        ...

    def list_node_names(self) -> list[str]:
        ...


class HttpNodeStatusProvider:
    """Fetches node statuses from the upstream HTTP endpoint."""

    def __init__(self, url: str, timeout: Optional[float] = None):
        if not url:
            raise ValueError("provider url is required")
        self.url = url
        self.timeout = timeout

    def _get_nodes_payload(self) -> dict:
        try:
            response = requests.get(self.url, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as exc:
            logger.warning("Node status provider %s failed: %s", self.url, exc)
            raise UpstreamUnavailableError(str(exc)) from exc
        except ValueError as exc:
            raise UpstreamUnavailableError(
                f"Invalid JSON from node status provider: {exc}"
            ) from exc

        nodes = body.get("nodes") if isinstance(body, dict) else None
        if not isinstance(nodes, dict):
            raise UpstreamUnavailableError(
                "Node status provider response has no 'nodes' mapping"
            )
        return nodes

    def fetch_all_node_statuses(self) -> dict[str, NodeStatus]:
        nodes = self._get_nodes_payload()
        statuses: dict[str, NodeStatus] = {}
        for name, payload in nodes.items():
            statuses[name] = NodeStatus.from_payload(
                name, payload if isinstance(payload, dict) else {}
            )
        return statuses

    def list_node_names(self) -> list[str]:
        return list(self._get_nodes_payload().keys())


class StaticNodeStatusProvider:
    """In-memory provider for development and tests."""

    def __init__(self, nodes: Optional[dict[str, dict]] = None):
        self.nodes: dict[str, dict] = dict(nodes or {})
        self.calls = 0

    def fetch_all_node_statuses(self) -> dict[str, NodeStatus]:
        self.calls += 1
        return {
            name: NodeStatus.from_payload(name, payload)
            for name, payload in self.nodes.items()
        }

    def list_node_names(self) -> list[str]:
        self.calls += 1
        return list(self.nodes.keys())
