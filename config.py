"""
Run configuration.

A RunConfig is built once before the simulation starts and is frozen after
that. Every value is validated on construction, so a run can never start with
an unknown strategy or an out-of-range probability.
"""
from dataclasses import dataclass, fields
from typing import Tuple

from shared_vars import AttackStrategy, DefenseStrategy

SUPPORTED_PROTOCOLS = ("AODV",)


class ConfigurationError(ValueError):
    """Raised for invalid run configuration."""


def _check_unit(name, value):
    if not 0.0 <= float(value) <= 1.0:
        raise ConfigurationError(f"{name} must be within [0, 1], got {value}")


def _check_positive(name, value, allow_zero=False):
    if value < 0 or (value == 0 and not allow_zero):
        raise ConfigurationError(f"{name} must be {'non-negative' if allow_zero else 'positive'}, got {value}")


@dataclass(frozen=True)
class RunConfig:
    # Attack
    percent_drop: float = 1.0
    attack_strategy: AttackStrategy = AttackStrategy.PACKET_DROP_PERC
    attackers: Tuple[int, ...] = (10, 11, 12)
    drop_flows: Tuple[Tuple[int, int], ...] = ()
    drop_neighbours: Tuple[int, ...] = ()
    drop_windows: Tuple[Tuple[float, float], ...] = ()
    select_ttl_below: int = 0

    # Detection
    detection_threshold: float = 0.5
    min_evidence: int = 5
    reconcile_timeout: float = 2.8  # AODV NetTraversalTime
    reconcile_interval: float = 1.0
    settled_memory: float = 30.0

    # Defense
    defense_strategy: DefenseStrategy = DefenseStrategy.INFERENCE
    monitor_mode: DefenseStrategy = DefenseStrategy.MONITOR_ALWAYS
    monitor_start_time: float = 0.0
    velocity_floor: float = 1.0
    train_after_observations: int = 50
    min_training_cycles: int = 20
    max_training_cycles: int = 200
    stability_window: int = 10
    episode_cycles: int = 25
    decision_interval: float = 1.0
    candidate_thresholds: Tuple[float, ...] = (0.1, 0.2, 0.3, 0.4, 0.5, 0.6)
    trust_bins: int = 10
    reward_hit: float = 1.0
    reward_false_alarm: float = 1.0
    reward_evasion: float = 1.0
    learning_rate: float = 0.3
    discount: float = 0.8
    epsilon: float = 0.5
    epsilon_min: float = 0.05
    epsilon_decay: float = 0.97
    connection_smoothing: float = 0.3
    monitoring_node: int = 0

    # Simulation
    num_nodes: int = 20
    n_sinks: int = 5
    total_time: float = 200.0
    app_start: float = 100.0
    packet_size: int = 800
    data_rate_bps: float = 2048.0
    area: float = 100.0
    radio_range: float = 40.0
    node_speed: float = 10.0
    node_pause: float = 0.0
    mobility_step: float = 1.0
    congestion_drop: float = 0.0
    protocol_name: str = "AODV"
    tx_power: float = 10.0
    csv_file_name: str = "manet-routing.output.csv"
    trace_mobility: bool = True
    flow_monitor: bool = True
    seed: int = 1

    def __post_init__(self):
        try:
            object.__setattr__(self, "attack_strategy", AttackStrategy.parse(self.attack_strategy))
            object.__setattr__(self, "defense_strategy", DefenseStrategy.parse(self.defense_strategy))
            object.__setattr__(self, "monitor_mode", DefenseStrategy.parse(self.monitor_mode))
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

        # Normalise sequences so the frozen config never holds mutable lists
        object.__setattr__(self, "attackers", tuple(int(n) for n in self.attackers))
        object.__setattr__(self, "drop_flows", tuple((int(s), int(d)) for s, d in self.drop_flows))
        object.__setattr__(self, "drop_neighbours", tuple(int(n) for n in self.drop_neighbours))
        object.__setattr__(self, "drop_windows", tuple((float(s), float(e)) for s, e in self.drop_windows))
        object.__setattr__(self, "candidate_thresholds", tuple(float(t) for t in self.candidate_thresholds))
        self.validate()

    def validate(self):
        _check_unit("percent_drop", self.percent_drop)
        _check_unit("detection_threshold", self.detection_threshold)
        _check_unit("congestion_drop", self.congestion_drop)
        _check_unit("connection_smoothing", self.connection_smoothing)
        for name in ("learning_rate", "discount", "epsilon", "epsilon_min", "epsilon_decay"):
            _check_unit(name, getattr(self, name))

        if not self.monitor_mode.is_monitor:
            raise ConfigurationError(f"monitor_mode must be a monitor stage, got {self.monitor_mode.name}")
        if self.protocol_name not in SUPPORTED_PROTOCOLS:
            raise ConfigurationError(f"No such protocol: {self.protocol_name}")

        if not self.candidate_thresholds:
            raise ConfigurationError("candidate_thresholds must not be empty")
        for threshold in self.candidate_thresholds:
            _check_unit("candidate_thresholds", threshold)

        for start, end in self.drop_windows:
            if start < 0 or end < start:
                raise ConfigurationError(f"Invalid drop window ({start}, {end})")
        self._check_attack_targets()

        for name in ("reconcile_timeout", "reconcile_interval", "decision_interval",
                     "mobility_step", "total_time", "radio_range", "area", "data_rate_bps"):
            _check_positive(name, getattr(self, name))
        for name in ("min_evidence", "train_after_observations", "min_training_cycles",
                     "stability_window", "select_ttl_below", "monitor_start_time",
                     "velocity_floor", "node_speed", "node_pause", "app_start"):
            _check_positive(name, getattr(self, name), allow_zero=True)
        for name in ("max_training_cycles", "episode_cycles", "trust_bins", "packet_size",
                     "num_nodes", "n_sinks"):
            _check_positive(name, getattr(self, name))

        if self.max_training_cycles < self.min_training_cycles:
            raise ConfigurationError("max_training_cycles must be >= min_training_cycles")
        if self.settled_memory < self.reconcile_timeout:
            raise ConfigurationError("settled_memory must be >= reconcile_timeout")
        if 2 * self.n_sinks > self.num_nodes:
            raise ConfigurationError(
                f"{self.n_sinks} sinks need {2 * self.n_sinks} nodes, only {self.num_nodes} configured")
        for node in self.attackers:
            if not 0 <= node < self.num_nodes:
                raise ConfigurationError(f"Attacker {node} is outside the {self.num_nodes}-node topology")
        if not 0 <= self.monitoring_node < self.num_nodes:
            raise ConfigurationError(f"monitoring_node {self.monitoring_node} is outside the topology")

    def _check_attack_targets(self):
        """Targeted strategies without targets would never drop anything."""
        targets = {
            AttackStrategy.PACKET_DROP_CONNECTION: ("drop_flows", self.drop_flows),
            AttackStrategy.PACKET_DROP_NEIGHBOURS: ("drop_neighbours", self.drop_neighbours),
            AttackStrategy.PACKET_DROP_IN_TIME: ("drop_windows", self.drop_windows),
            AttackStrategy.PACKET_DROP_SELECT: ("select_ttl_below", self.select_ttl_below),
        }
        if self.attack_strategy in targets:
            name, value = targets[self.attack_strategy]
            if not value:
                raise ConfigurationError(f"{self.attack_strategy.name} needs {name} to be set")

    def replace(self, **changes):
        """Returns a new validated config with some fields changed."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        unknown = set(changes) - set(values)
        if unknown:
            raise ConfigurationError(f"Unknown configuration fields: {sorted(unknown)}")
        values.update(changes)
        return RunConfig(**values)
