from collections import OrderedDict

from shared_vars import PacketObservation, PACKET_ID_MASK
from utils import setup_logger

logger = setup_logger("PacketTracker")


class PacketExpectationTracker:
    def __init__(self, context, clock, timeout=2.8, settled_memory=30.0):
        """
        Watchdog bookkeeping: what each node was obliged to forward versus what
        its neighbors actually overheard it forwarding.

        Args:
            context: open RunContext (owns the per-node forward tables)
            clock: callable returning the current simulated time
            timeout: round-trip window after which an expectation is settled
            settled_memory: how long settled ids and unmatched observations are
                remembered (bounds memory and lets 16-bit ids wrap around)
        """
        self.context = context.require_open()
        self.clock = clock
        self.timeout = timeout
        self.settled_memory = max(settled_memory, timeout)

        # {node: OrderedDict{packet_id: PacketObservation}} in arrival order
        self.expected = {}
        # {node: {packet_id: PacketObservation}}
        self.detected = {}
        # {node: {packet_id: settle_time}}
        self.settled = {}
        self.listeners = []

    @property
    def registry(self):
        return self.context.require_open().registry

    def add_listener(self, callback):
        """callback(node, forwarded) is called once per settled expectation."""
        self.listeners.append(callback)

    def on_routing_obligation(self, node, packet_id, ttl):
        """Registers that node is expected to forward packet_id. Returns True if registered."""
        packet_id &= PACKET_ID_MASK
        if node not in self.registry:
            return False
        if ttl <= 1:
            # Packet expires at this hop, nothing to forward
            return False
        pending = self.expected.setdefault(node, OrderedDict())
        if packet_id in pending or packet_id in self.settled.get(node, {}):
            return False
        pending[packet_id] = PacketObservation(packet_id, ttl, node, self.clock())
        return True

    def on_observed(self, node, packet_id, ttl=0):
        packet_id &= PACKET_ID_MASK
        if not self.registry.can_track(node):
            return
        self.detected.setdefault(node, {})[packet_id] = PacketObservation(packet_id, ttl, node, self.clock())

    def pending(self, node):
        return len(self.expected.get(node, ()))

    def reconcile(self, node, now=None):
        """
        Settles every expectation for node older than the timeout.

        Returns:
            (forwarded, not_forwarded) counts for this pass only
        """
        now = self.clock() if now is None else now
        forwarded = not_forwarded = 0
        entry = self.registry.get(node)
        pending = self.expected.get(node)
        if entry is None:
            # Node left the topology or was excluded, nothing left to account
            self.forget(node)
            return forwarded, not_forwarded
        if not pending:
            self._prune(node, now)
            return forwarded, not_forwarded

        seen = self.detected.get(node, {})
        settled = self.settled.setdefault(node, {})
        for packet_id in list(pending):
            expectation = pending[packet_id]
            if now - expectation.time < self.timeout:
                # Arrival order, everything after this is younger
                break
            del pending[packet_id]
            settled[packet_id] = now
            was_forwarded = seen.pop(packet_id, None) is not None
            if was_forwarded:
                entry.forward.forward_count += 1
                forwarded += 1
            else:
                entry.forward.no_forward_count += 1
                not_forwarded += 1
            for callback in self.listeners:
                callback(node, was_forwarded)

        if forwarded or not_forwarded:
            logger.debug(f"Node {node}: reconciled forwarded={forwarded} not_forwarded={not_forwarded}")
        self._prune(node, now)
        return forwarded, not_forwarded

    def reconcile_all(self, now=None):
        """Reconciles every node with pending expectations. Returns {node: (fwd, not_fwd)}."""
        now = self.clock() if now is None else now
        results = {}
        for node in sorted(self.expected):
            if self.expected[node]:
                results[node] = self.reconcile(node, now)
        return results

    def _prune(self, node, now):
        settled = self.settled.get(node)
        if settled:
            for packet_id in [p for p, t in settled.items() if now - t > self.settled_memory]:
                del settled[packet_id]
        seen = self.detected.get(node)
        if seen:
            # Over-forwarded packets that never had a matching expectation
            for packet_id in [p for p, obs in seen.items() if now - obs.time > self.settled_memory]:
                del seen[packet_id]

    def forget(self, node):
        """Drops all bookkeeping for node (used on exclusion and departure)."""
        self.expected.pop(node, None)
        self.detected.pop(node, None)
        self.settled.pop(node, None)
