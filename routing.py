import random
from enum import Enum

import networkx as nx

from shared_vars import ForwardDecision, PACKET_ID_MASK, TTL_MASK
from utils import setup_logger

logger = setup_logger("Routing")


class RoutingNotInstalledError(LookupError):
    """A node has no routing protocol installed."""


class Packet:
    def __init__(self, packet_id, src, dst, ttl=64, size=800, created=0.0):
        self.packet_id = packet_id & PACKET_ID_MASK
        self.src = src
        self.dst = dst
        self.ttl = ttl & TTL_MASK
        self.size = size
        self.created = created

    def __repr__(self):
        return f"Packet(id={self.packet_id}, {self.src}->{self.dst}, ttl={self.ttl})"


class ProtocolKind(Enum):
    BASE = "aodv"
    ATTACK_AUGMENTED = "greyattackaodv"


class RoutingSlot:
    """The routing protocol installed on one node."""

    def __init__(self, kind, attack_engine=None):
        if kind is ProtocolKind.ATTACK_AUGMENTED and attack_engine is None:
            raise ValueError("Attack-augmented protocol needs an attack engine")
        self.kind = kind
        self.attack_engine = attack_engine


class AodvRouting:
    def __init__(self, net_sim, context, tracker=None, congestion_drop=0.0, seed=None):
        """
        Stand-in for the routing engine the trust layer instruments.

        Routes are hop-count shortest paths over the current unit-disk graph,
        restricted to nodes with a protocol installed that are not excluded.
        Packets are walked hop by hop so every relay goes through the
        forwarding hook, and the tracker sees each forwarding obligation and
        each overheard forward.
        """
        self.net_sim = net_sim
        self.context = context.require_open()
        self.tracker = tracker
        self.congestion_drop = congestion_drop
        self.rng = random.Random(seed)
        self.slots = {}
        self.excluded = set()
        self.next_packet_id = 0
        self.delivery_callbacks = []
        self.stats = {"sent": 0, "delivered": 0, "dropped": 0, "no_route": 0}
        # {(src, dst): per-flow counters}, the flow monitor view of the run
        self.flows = {}

    @property
    def registry(self):
        return self.context.require_open().registry

    def install(self, node, kind=ProtocolKind.BASE, attack_engine=None):
        self.slots[node] = RoutingSlot(kind, attack_engine)
        logger.debug(f"Installed {kind.value} on node {node}")

    def slot(self, node):
        try:
            return self.slots[node]
        except KeyError:
            raise RoutingNotInstalledError(f"Routing not installed on node {node}") from None

    def on_delivery(self, callback):
        """callback(packet, node) for every packet reaching its destination."""
        self.delivery_callbacks.append(callback)

    def exclude_node(self, node):
        """Stops routing through node for the rest of the run. Idempotent."""
        if node in self.excluded:
            return False
        self.excluded.add(node)
        logger.info(f"Node {node} withdrawn from forwarding duty")
        return True

    def _usable(self, node):
        return node in self.slots and node not in self.excluded

    def find_path(self, source, target):
        view = nx.subgraph_view(
            self.net_sim.graph,
            filter_node=lambda n: n in (source, target) or self._usable(n),
        )
        try:
            return nx.shortest_path(view, source=source, target=target)
        except (nx.NetworkXNoPath, nx.NodeNotFound):
            return None

    def on_forward_attempt(self, packet, holding_node):
        """Forwarding hook: the native decision unless the node misbehaves or is excluded."""
        if holding_node in self.excluded or packet.ttl <= 1:
            return ForwardDecision.DROP
        slot = self.slot(holding_node)
        if slot.kind is ProtocolKind.ATTACK_AUGMENTED:
            return slot.attack_engine.decide(packet, holding_node)
        return ForwardDecision.FORWARD

    def new_packet(self, src, dst, size=800, ttl=64):
        packet = Packet(self.next_packet_id, src, dst, ttl=ttl, size=size, created=self.net_sim.now())
        self.next_packet_id = (self.next_packet_id + 1) & PACKET_ID_MASK
        return packet

    def _flow(self, packet):
        key = (packet.src, packet.dst)
        if key not in self.flows:
            self.flows[key] = {"tx_packets": 0, "tx_bytes": 0, "rx_packets": 0, "rx_bytes": 0,
                               "lost_packets": 0, "first_tx": packet.created, "last_rx": None}
        return self.flows[key]

    def send(self, packet):
        """
        Routes packet from its source to its destination.
        Returns True if it was delivered.
        """
        self.stats["sent"] += 1
        flow = self._flow(packet)
        flow["tx_packets"] += 1
        flow["tx_bytes"] += packet.size
        path = self.find_path(packet.src, packet.dst)
        if not path:
            self.stats["no_route"] += 1
            flow["lost_packets"] += 1
            logger.debug(f"No route for {packet}")
            return False

        for holder in path[1:-1]:
            # The upstream hop hands the packet over and expects it to be relayed
            self.registry.track(holder)
            if self.tracker is not None:
                self.tracker.on_routing_obligation(holder, packet.packet_id, packet.ttl)

            decision = self.on_forward_attempt(packet, holder)
            if decision is ForwardDecision.FORWARD and self.congestion_drop > 0 \
                    and self.rng.random() < self.congestion_drop:
                self.context.dropped_stats.record(holder)
                decision = ForwardDecision.DROP
                logger.debug(f"{packet} dropped by congestion at node {holder}")
            elif decision is ForwardDecision.DROP and packet.ttl <= 1:
                self.context.dropped_stats.record(holder)

            if decision is ForwardDecision.DROP:
                self.stats["dropped"] += 1
                flow["lost_packets"] += 1
                return False

            packet.ttl -= 1
            if self.tracker is not None:
                self.tracker.on_observed(holder, packet.packet_id, packet.ttl)

        self.stats["delivered"] += 1
        flow["rx_packets"] += 1
        flow["rx_bytes"] += packet.size
        flow["last_rx"] = self.net_sim.now()
        for callback in self.delivery_callbacks:
            callback(packet, packet.dst)
        return True
