"""
Node Registry

Read-only view of the on-chain storage node registry. Peers whose node id
appears among the active nodes are flagged as registered and preferred for
storage, since only registered nodes take part in replication.
"""

import logging
from typing import Iterable, List, Protocol, Set

from ...core.types import NodeRegistryEntry

logger = logging.getLogger(__name__)


class NodeRegistry(Protocol):
    async def get_active_nodes(self) -> List[NodeRegistryEntry]: ...


class StaticNodeRegistry:
    """Registry backed by a fixed list, for deployments without chain access."""

    def __init__(self, nodes: Iterable[NodeRegistryEntry] = ()):
        self.nodes: List[NodeRegistryEntry] = list(nodes)

    def add_node(self, node: NodeRegistryEntry):
        self.nodes.append(node)

    async def get_active_nodes(self) -> List[NodeRegistryEntry]:
        return [node for node in self.nodes if node.active]


async def active_node_ids(registry: NodeRegistry) -> Set[str]:
    """Node ids of active registry entries; empty if the registry is unreachable."""
    try:
        nodes = await registry.get_active_nodes()
    except Exception as e:
        logger.error(f"Failed to fetch active nodes: {e}")
        return set()

    return {node.node_id for node in nodes if node.active}
