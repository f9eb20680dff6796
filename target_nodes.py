from utils import setup_logger, clamp
from shared_vars import ForwardTableEntry, TrustValueEntry, MassTableEntry

logger = setup_logger("TargetNodes")


class TargetNode:
    """Per-node record owned by the registry."""

    def __init__(self, node, connection_strength=None):
        self.node = node
        self.connection_strength = connection_strength
        self.d_connection_strength = 0.0
        self.forward = ForwardTableEntry(node)
        self.trust = TrustValueEntry(node)
        self.masses = {}  # {observer: MassTableEntry}

    def mass(self, observer):
        if observer not in self.masses:
            self.masses[observer] = MassTableEntry(observer, self.node)
        return self.masses[observer]


class TargetNodeRegistry:
    def __init__(self):
        """
        Catalog of nodes under active trust tracking.

        A node is tracked from the moment it first shows up as a routing
        neighbor until it is excluded or leaves the topology. Excluded and
        unmonitored nodes can never be tracked again within the run.
        """
        self.entries = {}
        self.excluded = set()
        self.unmonitored = {}  # {node: reason}

    def __contains__(self, node):
        return node in self.entries

    def __len__(self):
        return len(self.entries)

    def nodes(self):
        return sorted(self.entries)

    def get(self, node):
        return self.entries.get(node)

    def can_track(self, node):
        return node not in self.excluded and node not in self.unmonitored

    def track(self, node):
        """Returns the entry for node, creating it on first appearance."""
        if node in self.entries:
            return self.entries[node]
        if not self.can_track(node):
            return None
        entry = TargetNode(node)
        self.entries[node] = entry
        logger.debug(f"Tracking node {node}")
        return entry

    def untrack(self, node):
        """Node left the topology; its records are discarded."""
        return self.entries.pop(node, None)

    def exclude(self, node):
        """
        Stops tracking node for the rest of the run.
        Returns True only the first time, re-excluding is a no-op.
        """
        if node in self.excluded:
            return False
        self.excluded.add(node)
        self.entries.pop(node, None)
        logger.info(f"Node {node} excluded from trust tracking")
        return True

    def is_excluded(self, node):
        return node in self.excluded

    def mark_unmonitored(self, node, reason):
        if node in self.unmonitored:
            return
        self.unmonitored[node] = reason
        self.entries.pop(node, None)
        logger.warning(f"Node {node} removed from trust accounting: {reason}")

    def sync_neighbors(self, neighbors):
        """Tracks every neighbor not seen before. Returns the newly tracked ids."""
        added = []
        for node in neighbors:
            if node not in self.entries and self.track(node) is not None:
                added.append(node)
        return added

    def update_connection_strength(self, node, sample, smoothing=0.3):
        """
        Exponentially smooths a link-quality sample into the node's connection
        strength. The first sample seeds the value directly.
        """
        entry = self.entries.get(node)
        if entry is None:
            return None
        sample = clamp(sample)
        previous = entry.connection_strength
        if previous is None:
            entry.connection_strength = sample
            entry.d_connection_strength = 0.0
        else:
            current = clamp((1.0 - smoothing) * previous + smoothing * sample)
            entry.connection_strength = current
            entry.d_connection_strength = previous - current
        return entry.connection_strength

    def connection_strength(self, node):
        entry = self.entries.get(node)
        if entry is None or entry.connection_strength is None:
            return 0.0
        return entry.connection_strength
