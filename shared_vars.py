"""
Shared records for the grey-hole attack and trust/defense layer.

Everything here is plain data. Behaviour lives in the engines that own or
update these records (TargetNodeRegistry, PacketExpectationTracker,
TrustEngine, DetectionEvaluator, AdaptiveDefenseController).
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

PACKET_ID_MASK = 0xFFFF
TTL_MASK = 0xFF


class _ParsableEnum(Enum):
    @classmethod
    def parse(cls, value):
        """
        Accepts a member, its name (case-insensitive) or its integer value.
        Raises ValueError for anything else.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().upper()
            if key in cls.__members__:
                return cls.__members__[key]
            if key.isdigit():
                value = int(key)
        if isinstance(value, int) and not isinstance(value, bool):
            for member in cls:
                if member.value == value:
                    return member
        raise ValueError(f"Unknown {cls.__name__} value: {value!r}")


class AttackStrategy(_ParsableEnum):
    NO_OPERATION = 0
    PACKET_DROP_PERC = 1
    PACKET_DROP_CONNECTION = 2
    PACKET_DROP_NEIGHBOURS = 3
    PACKET_DROP_IN_TIME = 4
    PACKET_DROP_SELECT = 5


class DefenseStrategy(_ParsableEnum):
    NO_OPERATION = 0
    MONITOR_ALWAYS = 1
    MONITOR_WHEN_VELOCITY = 2
    TRAINING = 3
    INFERENCE = 4

    @property
    def is_monitor(self):
        return self in (DefenseStrategy.MONITOR_ALWAYS, DefenseStrategy.MONITOR_WHEN_VELOCITY)

    @property
    def rank(self):
        """Position in the stage order; both monitor flavours share a rank."""
        if self.is_monitor:
            return 1
        return {DefenseStrategy.NO_OPERATION: 0,
                DefenseStrategy.TRAINING: 2,
                DefenseStrategy.INFERENCE: 3}[self]


class ForwardDecision(Enum):
    FORWARD = "forward"
    DROP = "drop"


class Verdict(Enum):
    BENIGN = "benign"
    MALICIOUS = "malicious"


@dataclass
class PacketObservation:
    packet_id: int
    ttl: int
    node: int
    time: float = 0.0

    def __post_init__(self):
        self.packet_id &= PACKET_ID_MASK
        self.ttl &= TTL_MASK


@dataclass
class ForwardTableEntry:
    node: int
    forward_count: int = 0
    no_forward_count: int = 0

    @property
    def total(self):
        return self.forward_count + self.no_forward_count


@dataclass
class TrustValueEntry:
    node: int
    alpha: float = 0.0
    beta: float = 0.0

    @property
    def evidence(self):
        return self.alpha + self.beta


@dataclass
class MassTableEntry:
    node_recommended: int
    node_subject: int
    m_trust: float = 0.0
    m_distrust: float = 0.0
    m_uncertain: float = 1.0

    @property
    def total(self):
        return self.m_trust + self.m_distrust + self.m_uncertain


@dataclass
class DetectionResults:
    """Confusion-matrix counters for the whole run."""

    tp: int = 0
    tn: int = 0
    fp: int = 0
    fn: int = 0

    @property
    def total(self):
        return self.tp + self.tn + self.fp + self.fn

    @property
    def accuracy(self):
        return (self.tp + self.tn) / self.total if self.total else 0.0

    @property
    def precision(self):
        flagged = self.tp + self.fp
        return self.tp / flagged if flagged else 0.0

    @property
    def recall(self):
        malicious = self.tp + self.fn
        return self.tp / malicious if malicious else 0.0

    @property
    def f1(self):
        p, r = self.precision, self.recall
        return 2 * p * r / (p + r) if (p + r) else 0.0

    @property
    def false_positive_rate(self):
        benign = self.fp + self.tn
        return self.fp / benign if benign else 0.0

    def as_dict(self):
        return {"tp": self.tp, "tn": self.tn, "fp": self.fp, "fn": self.fn}


@dataclass
class DroppedStats:
    drop_count: Dict[int, int] = field(default_factory=dict)

    def record(self, node):
        self.drop_count[node] = self.drop_count.get(node, 0) + 1

    def count(self, node):
        return self.drop_count.get(node, 0)

    @property
    def total(self):
        return sum(self.drop_count.values())


@dataclass
class GymStateVariables:
    nodes: List[int] = field(default_factory=list)
    context: List[float] = field(default_factory=list)
    current_speed: List[float] = field(default_factory=list)
    distance: List[float] = field(default_factory=list)
    d_distance: List[float] = field(default_factory=list)

    def index(self, node):
        return self.nodes.index(node)


@dataclass
class GymRewardVariables:
    value: float = 0.0
    gameover: bool = False


@dataclass
class GymActionVariables:
    reject_node: float = 0.0


@dataclass
class GymVariables:
    reward_node: Optional[int] = None
    next_node: Optional[int] = None
    state: GymStateVariables = field(default_factory=GymStateVariables)
    reward: GymRewardVariables = field(default_factory=GymRewardVariables)
    action: GymActionVariables = field(default_factory=GymActionVariables)
