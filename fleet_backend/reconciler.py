"""
Bulk reconciliation of registry status fields with the provider snapshot.
"""

from __future__ import annotations

import logging

from fleet_backend.db import MachineRecord, MachineStore
from fleet_backend.provider import NodeStatusProvider

logger = logging.getLogger(__name__)


def refresh_all(
    store: MachineStore, provider: NodeStatusProvider
) -> tuple[list[MachineRecord], dict[str, dict]]:
    """
    Overwrite status fields of every registered machine the provider reports.

    Names without a matching record are skipped; records are never created here.
    Updates written before a store failure stay written.

    Returns:
        tuple: the full machine list after the sweep and the raw provider nodes.
    """
    nodes = provider.fetch_all_node_statuses()
    updated = 0
    for name, node in nodes.items():
        if store.update_status(name, node) is not None:
            updated += 1
    logger.info(
        "Reconciled %d of %d provider nodes with the registry", updated, len(nodes)
    )
    raw_nodes = {name: node.raw for name, node in nodes.items()}
    return store.list_machines(), raw_nodes
