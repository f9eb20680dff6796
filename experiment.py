"""
Grey-hole AODV experiment.

Runs an ad hoc network under random waypoint mobility with constant-rate
sources feeding a set of sink nodes. Attacker nodes run the attack-augmented
protocol; every other node runs the base protocol. The trust layer watches the
forwarding, and the adaptive defense controller learns when to exclude nodes.

The program outputs:
- a log line per received packet (debug level)
- the reception statistics of every simulated second, appended to a CSV file
- trust, detection and defense statistics next to that CSV at the end
- per-flow tx/rx statistics (--flowMonitor)
- optional figures (--plot)
"""
import argparse
import logging
import os
import random
import sys

import simpy
import pandas as pd

from config import RunConfig, ConfigurationError
from context import RunContext
from network_sim import NetworkSimulation
from routing import AodvRouting, ProtocolKind, RoutingNotInstalledError
from packet_tracker import PacketExpectationTracker
from trust_model import TrustEngine
from detection import DetectionEvaluator, GroundTruthOracle
from attack_strategy import AttackStrategyEngine
from defense_controller import AdaptiveDefenseController
from shared_vars import AttackStrategy, DetectionResults
from stats_sink import StatsSink
from utils import setup_logger, set_log_level

logger = setup_logger("Experiment")


class ExperimentResult:
    """What is left of a run once its context has been closed."""

    def __init__(self, experiment):
        context = experiment.context
        self.config = experiment.config
        self.sink = experiment.sink
        self.detection = DetectionResults(**context.detection_results.as_dict())
        self.excluded = sorted(context.registry.excluded)
        self.unmonitored = dict(context.registry.unmonitored)
        self.drop_count = dict(context.dropped_stats.drop_count)
        self.routing_stats = dict(experiment.routing.stats)
        self.flows = {flow: dict(counters) for flow, counters in experiment.routing.flows.items()}
        self.stage_history = list(experiment.controller.history)
        self.final_stage = experiment.controller.stage
        self.trust = experiment.trust_engine.snapshot()
        self.forward_table = {
            node: (entry.forward.forward_count, entry.forward.no_forward_count)
            for node, entry in context.registry.entries.items()
        }
        self.graph = experiment.net_sim.graph.copy()

    def trust_of(self, node):
        for row in self.trust:
            if row["node"] == node:
                return row["trust_score"]
        return None


class RoutingExperiment:
    def __init__(self, config=None, uninstalled=()):
        """
        Args:
            config: RunConfig for the run (defaults reproduce the reference scenario)
            uninstalled: nodes left without a routing protocol
        """
        self.config = config or RunConfig()
        self.uninstalled = set(uninstalled)
        self.bytes_total = 0
        self.packets_received = 0
        self.context = None

    # ------------------------------------------------------------------- setup

    def setup(self):
        cfg = self.config
        self.env = simpy.Environment()
        self.rng = random.Random(cfg.seed)
        self.context = RunContext(cfg).open()

        self.net_sim = NetworkSimulation(self.env, radio_range=cfg.radio_range, area=cfg.area,
                                         seed=cfg.seed, trace_mobility=cfg.trace_mobility)
        self.net_sim.create_topology(num_nodes=cfg.num_nodes, max_speed=cfg.node_speed, pause=cfg.node_pause)
        self.net_sim.on_departure(self.node_left)

        self.tracker = PacketExpectationTracker(self.context, self.net_sim.now,
                                                timeout=cfg.reconcile_timeout,
                                                settled_memory=cfg.settled_memory)
        self.trust_engine = TrustEngine(self.context, topology=self.net_sim, monitoring_node=cfg.monitoring_node)
        self.tracker.add_listener(self.trust_engine.update)
        self.evaluator = DetectionEvaluator(self.context, cfg.detection_threshold)
        self.attack_engine = AttackStrategyEngine(self.context, self.net_sim.now, seed=cfg.seed)

        self.routing = AodvRouting(self.net_sim, self.context, tracker=self.tracker,
                                   congestion_drop=cfg.congestion_drop, seed=cfg.seed)
        self.routing.on_delivery(self.receive_packet)
        self.install_routing_protocol()

        malicious = cfg.attackers if cfg.attack_strategy is not AttackStrategy.NO_OPERATION else ()
        self.oracle = GroundTruthOracle(malicious)
        self.controller = AdaptiveDefenseController(
            self.context, self.trust_engine, self.evaluator,
            topology=self.net_sim, clock=self.net_sim.now,
            exclude_callback=self.exclude_node, oracle=self.oracle,
        )
        self.sink = StatsSink(cfg.csv_file_name)

    def install_routing_protocol(self):
        attackers = set(self.config.attackers)
        for node in self.net_sim.nodes:
            if node in self.uninstalled:
                continue
            if node in attackers:
                self.routing.install(node, ProtocolKind.ATTACK_AUGMENTED, self.attack_engine)
            else:
                self.routing.install(node, ProtocolKind.BASE)

        for node in self.net_sim.nodes:
            try:
                self.routing.slot(node)
            except RoutingNotInstalledError as exc:
                logger.error(str(exc))
                self.context.registry.mark_unmonitored(node, str(exc))
        logger.info(f"Done routing protocol: {len(self.routing.slots)} nodes, attackers {sorted(attackers)}")

    def exclude_node(self, node):
        self.routing.exclude_node(node)
        self.tracker.forget(node)

    def node_left(self, node):
        """A node left the topology: its trust records go with it."""
        self.context.registry.untrack(node)
        self.tracker.forget(node)

    # --------------------------------------------------------------- processes

    def receive_packet(self, packet, node):
        self.bytes_total += packet.size
        self.packets_received += 1
        logger.debug(f"{self.env.now:.4f} {node} received one packet from {packet.src}")

    def check_throughput(self):
        """Logs the receive rate of the last second and resets the counters"""
        while True:
            kbs = (self.bytes_total * 8.0) / 1000
            self.bytes_total = 0
            self.sink.record_throughput(self.env.now, kbs, self.packets_received, self.config.n_sinks,
                                        self.config.protocol_name, self.config.tx_power)
            self.packets_received = 0
            yield self.env.timeout(1.0)

    def traffic(self, src, dst, start):
        """Constant bit rate source (OnOff application that is always on)"""
        yield self.env.timeout(start)
        interval = self.config.packet_size * 8.0 / self.config.data_rate_bps
        while True:
            self.routing.send(self.routing.new_packet(src, dst, size=self.config.packet_size))
            yield self.env.timeout(interval)

    def reconcile_loop(self):
        while True:
            yield self.env.timeout(self.config.reconcile_interval)
            self.tracker.reconcile_all()

    def defense_loop(self):
        while True:
            yield self.env.timeout(self.config.decision_interval)
            now = self.env.now
            # The monitoring node watches whoever is currently in its radio range
            self.context.registry.sync_neighbors(self.net_sim.neighbors(self.config.monitoring_node))
            gym = self.controller.cycle(now)
            self.sink.record_defense(now, self.controller.stage, gym)
            self.sink.record_detection(now, self.context.detection_results)
            self.sink.record_trust(now, self.trust_engine.snapshot())

    # --------------------------------------------------------------------- run

    def run(self):
        cfg = self.config
        self.setup()
        try:
            self.sink.start()
            for i in range(cfg.n_sinks):
                start = self.rng.uniform(cfg.app_start, cfg.app_start + 1.0)
                self.env.process(self.traffic(i + cfg.n_sinks, i, start))
            self.env.process(self.net_sim.update_mobility(cfg.mobility_step))
            self.env.process(self.check_throughput())
            self.env.process(self.reconcile_loop())
            self.env.process(self.defense_loop())

            logger.info("Run simulation.")
            self.env.run(until=cfg.total_time)
            self.tracker.reconcile_all()
            result = ExperimentResult(self)
        finally:
            self.teardown()
        return result

    def teardown(self):
        try:
            if self.config.flow_monitor:
                self.sink.record_flows(self.routing.flows)
            if self.config.csv_file_name:
                self.sink.dump(self.config.csv_file_name, flows=self.config.flow_monitor)
                if self.config.trace_mobility and self.net_sim.mobility_trace:
                    base, _ = os.path.splitext(self.config.csv_file_name)
                    pd.DataFrame(self.net_sim.mobility_trace).to_csv(f"{base}.mob.csv", index=False)
        finally:
            self.context.close()


def int_list(text):
    return tuple(int(part) for part in text.split(",") if part.strip())


def pair_list(separator, cast):
    """Parses "a:b,c:d" style lists, e.g. flows 5:0 or time windows 10-20"""
    def parse(text):
        pairs = []
        for part in text.split(","):
            if not part.strip():
                continue
            first, second = part.split(separator)
            pairs.append((cast(first), cast(second)))
        return tuple(pairs)
    return parse


def build_parser():
    parser = argparse.ArgumentParser(description="Grey-hole AODV trust and defense experiment")
    parser.add_argument("--CSVfileName", default="manet-routing.output.csv", help="The name of the CSV output file name")
    parser.add_argument("--traceMobility", type=int, default=1, help="Enable mobility tracing")
    parser.add_argument("--flowMonitor", type=int, default=1, help="Enable per-flow statistics")
    parser.add_argument("--protocol", default="AODV", help="Routing protocol (AODV)")
    parser.add_argument("--percentDrop", type=float, default=1.0, help="Drop probability for PACKET_DROP_PERC")
    parser.add_argument("--attackStrategy", default="PACKET_DROP_PERC", help="Attack strategy name or number")
    parser.add_argument("--dropFlows", type=pair_list(":", int), default=(),
                        help="src:dst flows dropped by PACKET_DROP_CONNECTION, e.g. 5:0,6:1")
    parser.add_argument("--dropNeighbours", type=int_list, default=(),
                        help="Nodes whose traffic PACKET_DROP_NEIGHBOURS drops, e.g. 2,7")
    parser.add_argument("--dropWindows", type=pair_list("-", float), default=(),
                        help="start-end windows for PACKET_DROP_IN_TIME, e.g. 100-120,150-160")
    parser.add_argument("--selectTtlBelow", type=int, default=0, help="PACKET_DROP_SELECT drops packets with a lower TTL")
    parser.add_argument("--defenseStrategy", default="INFERENCE", help="Last defense stage to reach")
    parser.add_argument("--detectionThreshold", type=float, default=0.5, help="Trust cutoff for a malicious verdict")
    parser.add_argument("--attackers", type=int_list, default=(10, 11, 12), help="Comma separated attacker ids")
    parser.add_argument("--nodes", type=int, default=20, help="Number of nodes")
    parser.add_argument("--sinks", type=int, default=5, help="Number of sink nodes")
    parser.add_argument("--totalTime", type=float, default=200.0, help="Simulated seconds")
    parser.add_argument("--seed", type=int, default=1)
    parser.add_argument("--plot", action="store_true", help="Save topology, trust and throughput figures")
    parser.add_argument("--verbose", action="store_true")
    return parser


def config_from_args(args):
    return RunConfig(
        csv_file_name=args.CSVfileName,
        trace_mobility=bool(args.traceMobility),
        flow_monitor=bool(args.flowMonitor),
        protocol_name=args.protocol,
        percent_drop=args.percentDrop,
        attack_strategy=args.attackStrategy,
        drop_flows=args.dropFlows,
        drop_neighbours=args.dropNeighbours,
        drop_windows=args.dropWindows,
        select_ttl_below=args.selectTtlBelow,
        defense_strategy=args.defenseStrategy,
        detection_threshold=args.detectionThreshold,
        attackers=args.attackers,
        num_nodes=args.nodes,
        n_sinks=args.sinks,
        total_time=args.totalTime,
        seed=args.seed,
    )


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = config_from_args(args)
    except ConfigurationError as exc:
        parser.error(str(exc))
    if args.verbose:
        set_log_level(logging.DEBUG)

    result = RoutingExperiment(config).run()

    print("=" * 60)
    print("DETECTION SUMMARY")
    print("=" * 60)
    d = result.detection
    print(f"  TP={d.tp} TN={d.tn} FP={d.fp} FN={d.fn}")
    print(f"  Accuracy: {d.accuracy:.2f}  Precision: {d.precision:.2f}  Recall: {d.recall:.2f}")
    print(f"  Final stage: {result.final_stage.name}")
    print(f"  Excluded nodes: {result.excluded}")
    print(f"  Delivered {result.routing_stats['delivered']}/{result.routing_stats['sent']} packets")
    if config.flow_monitor:
        for (src, dst), flow in sorted(result.flows.items()):
            print(f"  Flow {src} -> {dst}: tx={flow['tx_packets']} "
                  f"rx={flow['rx_packets']} lost={flow['lost_packets']}")

    if args.plot:
        from visualization import visualize_network, plot_trust_history, plot_throughput
        visualize_network(result.graph, trust=result.trust, excluded=result.excluded,
                          attackers=config.attackers, filename="network_topology.png")
        plot_trust_history(result.sink.trust_frame(), filename="trust_history.png")
        plot_throughput(result.sink.throughput_frame(), filename="throughput.png")
    return 0


if __name__ == "__main__":
    sys.exit(main())
