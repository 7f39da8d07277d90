"""Edge/cloud topology with network path finding."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import networkx as nx

from .errors import TopologyError
from .models import Tier

GATEWAY = "gateway"  # Where requests enter the network


@dataclass
class WorkerSpec:
    """Static description of one worker."""

    worker_id: int
    mips: float
    memory_mb: float = 16000.0
    gpu_memory_mb: float = 8000.0


@dataclass
class SiteSpec:
    """A datacenter in one tier, with its workers and prices."""

    tier: Tier
    site_id: int
    workers: List[WorkerSpec] = field(default_factory=list)
    cost_per_byte: float = 0.0
    cost_per_sec: float = 0.0
    cost_per_mb: float = 0.0

    @property
    def node_id(self) -> str:
        return f"{self.tier.value.lower()}-{self.site_id}"


@dataclass
class LinkSpec:
    """A network link between two topology nodes."""

    source: str
    target: str
    bandwidth_mbps: float
    propagation_ms: float = 0.0
    link_type: str = "lan"

    def get_transfer_time(self, data_size_bytes: float) -> float:
        """Time to push data over this link, in milliseconds.

        Args:
            data_size_bytes: Size of data in bytes

        Returns:
            Propagation delay plus serialisation time
        """
        if self.bandwidth_mbps <= 0:
            raise TopologyError(f"Link {self.source}->{self.target} has invalid bandwidth: {self.bandwidth_mbps}")

        # 1 Mbps = 125,000 bytes/sec
        bytes_per_ms = self.bandwidth_mbps * 1e6 / 8 / 1000.0
        return self.propagation_ms + data_size_bytes / bytes_per_ms


class ClusterTopology:
    """Network of the gateway and all sites, with Dijkstra path finding."""

    def __init__(self, sites: List[SiteSpec], links: List[LinkSpec]):
        """Initialize the topology.

        Args:
            sites: Edge and cloud sites
            links: Network links between the gateway and sites
        """
        self.sites = sites
        self.links = links
        self.graph = nx.Graph()
        self._link_map: Dict[Tuple[str, str], LinkSpec] = {}
        self._sites_by_key: Dict[Tuple[Tier, int], SiteSpec] = {}

        self._build_graph()

    def _build_graph(self):
        self.graph.add_node(GATEWAY)
        for site in self.sites:
            key = (site.tier, site.site_id)
            if key in self._sites_by_key:
                raise TopologyError(f"Duplicate site {site.node_id}")
            self._sites_by_key[key] = site
            self.graph.add_node(site.node_id, site=site)

        # Inverse bandwidth as weight, so faster links are preferred
        for link in self.links:
            for endpoint in (link.source, link.target):
                if endpoint not in self.graph:
                    raise TopologyError(f"Link references unknown node: {endpoint}")
            weight = 1.0 / link.bandwidth_mbps if link.bandwidth_mbps > 0 else float("inf")
            self.graph.add_edge(link.source, link.target, weight=weight, link=link)
            self._link_map[(link.source, link.target)] = link
            self._link_map[(link.target, link.source)] = link

        for site in self.sites:
            if not nx.has_path(self.graph, GATEWAY, site.node_id):
                raise TopologyError(f"Site {site.node_id} is not reachable from {GATEWAY}")

    def get_site(self, tier: Tier, site_id: int) -> Optional[SiteSpec]:
        return self._sites_by_key.get((tier, site_id))

    def get_link(self, source: str, target: str) -> Optional[LinkSpec]:
        return self._link_map.get((source, target))

    def get_path(self, source: str, target: str) -> List[str]:
        """Shortest path between two nodes, including both ends."""
        if source == target:
            return [source]

        try:
            return nx.dijkstra_path(self.graph, source, target, weight="weight")
        except nx.NetworkXNoPath:
            raise TopologyError(f"No path exists between {source} and {target}")
        except nx.NodeNotFound as e:
            raise TopologyError(f"Node not found: {e}")

    def get_path_links(self, source: str, target: str) -> List[LinkSpec]:
        path = self.get_path(source, target)
        return [self._link_map[(path[i], path[i + 1])] for i in range(len(path) - 1)]

    def get_transfer_time(self, source: str, target: str, data_size_bytes: float) -> float:
        """Total transfer time along the shortest path, in milliseconds."""
        if source == target:
            return 0.0
        return sum(link.get_transfer_time(data_size_bytes) for link in self.get_path_links(source, target))

    def get_propagation_delay(self, source: str, target: str) -> float:
        if source == target:
            return 0.0
        return sum(link.propagation_ms for link in self.get_path_links(source, target))


def default_topology() -> ClusterTopology:
    """Two edge sites with two workers each and one cloud site with four."""
    edge_sites = [
        SiteSpec(
            tier=Tier.EDGE,
            site_id=site_id,
            workers=[WorkerSpec(worker_id=w, mips=2000.0, memory_mb=16000.0, gpu_memory_mb=8000.0) for w in range(2)],
            cost_per_byte=0.0,
            cost_per_sec=0.0001,
        )
        for site_id in range(2)
    ]
    cloud = SiteSpec(
        tier=Tier.CLOUD,
        site_id=0,
        workers=[WorkerSpec(worker_id=w, mips=4000.0, memory_mb=32000.0, gpu_memory_mb=16000.0) for w in range(4)],
        cost_per_byte=0.00000000009,
        cost_per_sec=0.0002083333,
    )
    links = [LinkSpec(GATEWAY, s.node_id, bandwidth_mbps=100.0, propagation_ms=2.0, link_type="lan") for s in edge_sites]
    links.append(LinkSpec(GATEWAY, cloud.node_id, bandwidth_mbps=20.0, propagation_ms=30.0, link_type="wan"))
    return ClusterTopology(edge_sites + [cloud], links)
