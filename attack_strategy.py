import random

from shared_vars import AttackStrategy, ForwardDecision
from config import ConfigurationError
from utils import setup_logger

logger = setup_logger("AttackStrategy")


class AttackStrategyEngine:
    def __init__(self, context, clock, seed=None, selector=None):
        """
        Grey-hole misbehavior for attack-augmented nodes.

        Args:
            context: open RunContext; its config selects the strategy and its
                parameters, its DroppedStats receives every drop
            clock: callable returning the current simulated time
            seed: seed for the per-packet drop draws
            selector: optional predicate packet -> bool for PACKET_DROP_SELECT;
                defaults to "ttl below config.select_ttl_below"
        """
        self.context = context.require_open()
        self.config = context.config
        self.clock = clock
        self.rng = random.Random(seed)
        self.selector = selector or self._ttl_selector
        self.strategy = self._validated(self.config.attack_strategy)

        self.handlers = {
            AttackStrategy.NO_OPERATION: self._no_operation,
            AttackStrategy.PACKET_DROP_PERC: self._drop_percentage,
            AttackStrategy.PACKET_DROP_CONNECTION: self._drop_connection,
            AttackStrategy.PACKET_DROP_NEIGHBOURS: self._drop_neighbours,
            AttackStrategy.PACKET_DROP_IN_TIME: self._drop_in_time,
            AttackStrategy.PACKET_DROP_SELECT: self.selector,
        }

    @staticmethod
    def _validated(strategy):
        if not isinstance(strategy, AttackStrategy):
            raise ConfigurationError(f"Unsupported attack strategy: {strategy!r}")
        return strategy

    def decide(self, packet, holding_node, strategy=None):
        strategy = self.strategy if strategy is None else self._validated(strategy)
        if self.handlers[strategy](packet):
            self.context.require_open().dropped_stats.record(holding_node)
            logger.debug(f"Node {holding_node} dropped packet {packet.packet_id} ({strategy.name})")
            return ForwardDecision.DROP
        return ForwardDecision.FORWARD

    def _no_operation(self, packet):
        return False

    def _drop_percentage(self, packet):
        percent = self.config.percent_drop
        if percent >= 1.0:
            return True
        return self.rng.random() < percent

    def _drop_connection(self, packet):
        return (packet.src, packet.dst) in self.config.drop_flows

    def _drop_neighbours(self, packet):
        targets = self.config.drop_neighbours
        return packet.src in targets or packet.dst in targets

    def _drop_in_time(self, packet):
        now = self.clock()
        return any(start <= now < end for start, end in self.config.drop_windows)

    def _ttl_selector(self, packet):
        return packet.ttl < self.config.select_ttl_below
