"""
End-to-end checks on scripted topologies: routing, forwarding evidence,
trust and detection wired together the way the experiment wires them.
"""
import pytest

from attack_strategy import AttackStrategyEngine
from detection import DetectionEvaluator, GroundTruthOracle
from network_sim import static_simulation
from packet_tracker import PacketExpectationTracker
from routing import AodvRouting, ProtocolKind
from shared_vars import AttackStrategy, Verdict
from trust_model import TrustEngine

# 0 -- 1 -- 2, node 1 is the only relay
LINE = [(0.0, 0.0), (30.0, 0.0), (60.0, 0.0)]


def wire(ctx, attacker=None):
    net_sim = static_simulation(LINE, radio_range=40.0)
    tracker = PacketExpectationTracker(ctx, net_sim.now, timeout=ctx.config.reconcile_timeout)
    trust = TrustEngine(ctx, topology=net_sim, monitoring_node=0)
    tracker.add_listener(trust.update)
    routing = AodvRouting(net_sim, ctx, tracker=tracker)
    for node in net_sim.nodes:
        routing.install(node)
    if attacker is not None:
        engine = AttackStrategyEngine(ctx, net_sim.now, seed=1)
        routing.install(attacker, ProtocolKind.ATTACK_AUGMENTED, engine)
    return net_sim, tracker, trust, routing


def send_traffic(net_sim, tracker, routing, count, interval=1.0):
    for i in range(count):
        net_sim.env.run(until=(i + 1) * interval)
        routing.send(routing.new_packet(0, 2))
        tracker.reconcile_all()
    net_sim.env.run(until=(count + 1) * interval + tracker.timeout)
    tracker.reconcile_all()


def test_black_hole_relay_loses_all_trust(make_context):
    ctx = make_context(attack_strategy="PACKET_DROP_PERC", percent_drop=1.0, attackers=(1,))
    net_sim, tracker, trust, routing = wire(ctx, attacker=1)
    send_traffic(net_sim, tracker, routing, 10)

    forward = ctx.registry.get(1).forward
    assert (forward.forward_count, forward.no_forward_count) == (0, 10)
    assert ctx.dropped_stats.count(1) == 10
    assert trust.trust_score(1) == 0.0
    assert trust.opinion(0, 1).m_distrust == pytest.approx(10 / 12)
    assert routing.stats["delivered"] == 0


def test_grey_hole_relay_sits_between(make_context):
    ctx = make_context(attack_strategy="PACKET_DROP_PERC", percent_drop=0.5, attackers=(1,))
    net_sim, tracker, trust, routing = wire(ctx, attacker=1)
    send_traffic(net_sim, tracker, routing, 200)

    forward = ctx.registry.get(1).forward
    assert forward.total == 200
    assert 60 < forward.no_forward_count < 140
    assert forward.no_forward_count == ctx.dropped_stats.count(1)
    assert 0.2 < trust.trust_score(1) < 0.8


def test_honest_network_yields_only_true_negatives(make_context):
    ctx = make_context(attack_strategy="NO_OPERATION")
    net_sim, tracker, trust, routing = wire(ctx)
    send_traffic(net_sim, tracker, routing, ctx.config.min_evidence + 3)

    evaluator = DetectionEvaluator(ctx, threshold=0.5)
    oracle = GroundTruthOracle(())
    for node in ctx.registry.nodes():
        assert trust.evidence(node) >= ctx.config.min_evidence
        assert evaluator.evaluate(node, trust.trust_score(node), oracle(node)) is Verdict.BENIGN
    results = ctx.detection_results
    assert results.tp == results.fp == results.fn == 0
    assert results.tn == len(ctx.registry)
    assert routing.stats["delivered"] == ctx.config.min_evidence + 3


def test_excluded_relay_is_routed_around(make_context):
    ctx = make_context(attack_strategy=AttackStrategy.NO_OPERATION)
    net_sim = static_simulation([(0.0, 0.0), (30.0, 10.0), (30.0, -10.0), (60.0, 0.0)])
    routing = AodvRouting(net_sim, ctx)
    for node in net_sim.nodes:
        routing.install(node)

    assert routing.find_path(0, 3)[1] in (1, 2)
    routing.exclude_node(1)
    assert routing.find_path(0, 3) == [0, 2, 3]
    routing.exclude_node(1)
    assert routing.find_path(0, 3) == [0, 2, 3]
    assert routing.send(routing.new_packet(0, 3))
