from utils import setup_logger

logger = setup_logger("TrustEngine")

NEUTRAL_TRUST = 0.5
PRIOR_WEIGHT = 2.0


class TrustEngine:
    def __init__(self, context, topology=None, monitoring_node=None, base_rate=0.5):
        """
        Subjective-logic trust over forwarding evidence.

        Each forwarded packet adds one unit of positive evidence (alpha), each
        missing forward one unit of negative evidence (beta). The opinion a
        node's observers hold about it is the Beta-to-evidence mapping

            trust = alpha / (alpha + beta + 2)
            distrust = beta / (alpha + beta + 2)
            uncertainty = 2 / (alpha + beta + 2)

        Args:
            context: open RunContext (the registry owns the trust records)
            topology: object with neighbors(node), used to find the observers
            monitoring_node: node whose opinion is always kept, even when it is
                not currently a neighbor
            base_rate: prior probability used for the projected trust
        """
        self.context = context.require_open()
        self.topology = topology
        self.monitoring_node = monitoring_node
        self.base_rate = base_rate

    @property
    def registry(self):
        return self.context.require_open().registry

    def observers(self, node):
        observers = set()
        if self.topology is not None:
            observers.update(n for n in self.topology.neighbors(node) if n != node)
        if self.monitoring_node is not None and self.monitoring_node != node:
            observers.add(self.monitoring_node)
        return sorted(observers)

    def update(self, node, forwarded, weight=1.0):
        """Adds one observation for node and refreshes every observer's opinion."""
        entry = self.registry.get(node)
        if entry is None:
            logger.debug(f"Ignoring evidence for untracked node {node}")
            return None
        if forwarded:
            entry.trust.alpha += weight
        else:
            entry.trust.beta += weight

        m_trust, m_distrust, m_uncertain = self.masses(entry.trust.alpha, entry.trust.beta)
        for observer in set(self.observers(node)) | set(entry.masses):
            mass = entry.mass(observer)
            mass.m_trust = m_trust
            mass.m_distrust = m_distrust
            mass.m_uncertain = m_uncertain
        return m_trust

    @staticmethod
    def masses(alpha, beta):
        total = alpha + beta + PRIOR_WEIGHT
        m_trust = alpha / total
        m_distrust = beta / total
        # Derived by subtraction so the triple sums to exactly 1
        return m_trust, m_distrust, 1.0 - m_trust - m_distrust

    def trust_score(self, node):
        """m_trust for node; 0.5 when there is no evidence yet (or no record)."""
        entry = self.registry.get(node)
        if entry is None or entry.trust.evidence == 0:
            return NEUTRAL_TRUST
        return self.masses(entry.trust.alpha, entry.trust.beta)[0]

    def projected_trust(self, node):
        entry = self.registry.get(node)
        if entry is None:
            return self.base_rate
        m_trust, _, m_uncertain = self.masses(entry.trust.alpha, entry.trust.beta)
        return m_trust + self.base_rate * m_uncertain

    def evidence(self, node):
        entry = self.registry.get(node)
        return entry.trust.evidence if entry is not None else 0.0

    def opinion(self, observer, subject):
        entry = self.registry.get(subject)
        if entry is None:
            return None
        return entry.masses.get(observer)

    def lowest_trust(self, min_evidence=0, candidates=None):
        """Tracked node with the lowest trust score among those with enough evidence."""
        nodes = self.registry.nodes() if candidates is None else candidates
        eligible = [n for n in nodes if n in self.registry and self.evidence(n) >= min_evidence]
        if not eligible:
            return None
        return min(eligible, key=lambda n: (self.trust_score(n), n))

    def snapshot(self):
        rows = []
        for node in self.registry.nodes():
            entry = self.registry.get(node)
            rows.append({
                "node": node,
                "alpha": entry.trust.alpha,
                "beta": entry.trust.beta,
                "trust_score": self.trust_score(node),
                "connection_strength": self.registry.connection_strength(node),
            })
        return rows
