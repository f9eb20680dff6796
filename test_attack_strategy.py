import pytest

from attack_strategy import AttackStrategyEngine
from config import ConfigurationError
from routing import Packet
from shared_vars import AttackStrategy, ForwardDecision


def packet(src=5, dst=0, ttl=64, packet_id=1):
    return Packet(packet_id, src, dst, ttl=ttl)


def test_no_operation_always_forwards(make_context, clock):
    ctx = make_context(attack_strategy="NO_OPERATION")
    engine = AttackStrategyEngine(ctx, clock, seed=1)
    assert all(engine.decide(packet(), 10) is ForwardDecision.FORWARD for _ in range(100))
    assert ctx.dropped_stats.total == 0


def test_black_hole_drops_everything(make_context, clock):
    ctx = make_context(attack_strategy="PACKET_DROP_PERC", percent_drop=1.0)
    engine = AttackStrategyEngine(ctx, clock, seed=1)
    assert all(engine.decide(packet(), 10) is ForwardDecision.DROP for _ in range(100))
    assert ctx.dropped_stats.count(10) == 100


def test_grey_hole_drops_a_fraction(make_context, clock):
    ctx = make_context(attack_strategy="PACKET_DROP_PERC", percent_drop=0.3)
    engine = AttackStrategyEngine(ctx, clock, seed=3)
    drops = sum(engine.decide(packet(packet_id=i), 10) is ForwardDecision.DROP for i in range(2000))
    assert 500 < drops < 700
    assert ctx.dropped_stats.count(10) == drops


def test_zero_percent_never_drops(make_context, clock):
    ctx = make_context(attack_strategy="PACKET_DROP_PERC", percent_drop=0.0)
    engine = AttackStrategyEngine(ctx, clock, seed=1)
    assert all(engine.decide(packet(), 10) is ForwardDecision.FORWARD for _ in range(100))


def test_connection_strategy_targets_one_flow(make_context, clock):
    ctx = make_context(attack_strategy="PACKET_DROP_CONNECTION", drop_flows=((5, 0),))
    engine = AttackStrategyEngine(ctx, clock)
    assert engine.decide(packet(5, 0), 10) is ForwardDecision.DROP
    assert engine.decide(packet(0, 5), 10) is ForwardDecision.FORWARD
    assert engine.decide(packet(6, 1), 10) is ForwardDecision.FORWARD


def test_neighbours_strategy_matches_source_or_destination(make_context, clock):
    ctx = make_context(attack_strategy="PACKET_DROP_NEIGHBOURS", drop_neighbours=(2, 7))
    engine = AttackStrategyEngine(ctx, clock)
    assert engine.decide(packet(7, 0), 10) is ForwardDecision.DROP
    assert engine.decide(packet(5, 2), 10) is ForwardDecision.DROP
    assert engine.decide(packet(5, 0), 10) is ForwardDecision.FORWARD


def test_in_time_strategy_follows_windows(make_context, clock):
    ctx = make_context(attack_strategy="PACKET_DROP_IN_TIME", drop_windows=((10.0, 20.0), (50.0, 60.0)))
    engine = AttackStrategyEngine(ctx, clock)
    decisions = {}
    for t in (5.0, 10.0, 19.9, 20.0, 55.0, 70.0):
        clock.now = t
        decisions[t] = engine.decide(packet(), 10)
    assert decisions == {
        5.0: ForwardDecision.FORWARD,
        10.0: ForwardDecision.DROP,
        19.9: ForwardDecision.DROP,
        20.0: ForwardDecision.FORWARD,
        55.0: ForwardDecision.DROP,
        70.0: ForwardDecision.FORWARD,
    }


def test_select_strategy_uses_ttl_by_default(make_context, clock):
    ctx = make_context(attack_strategy="PACKET_DROP_SELECT", select_ttl_below=60)
    engine = AttackStrategyEngine(ctx, clock)
    assert engine.decide(packet(ttl=59), 10) is ForwardDecision.DROP
    assert engine.decide(packet(ttl=60), 10) is ForwardDecision.FORWARD


def test_select_strategy_with_custom_selector(make_context, clock):
    ctx = make_context(attack_strategy="PACKET_DROP_SELECT", select_ttl_below=1)
    engine = AttackStrategyEngine(ctx, clock, selector=lambda p: p.packet_id % 2 == 0)
    assert engine.decide(packet(packet_id=4), 10) is ForwardDecision.DROP
    assert engine.decide(packet(packet_id=5), 10) is ForwardDecision.FORWARD


def test_strategy_override_and_unknown_strategy(make_context, clock):
    ctx = make_context(attack_strategy="NO_OPERATION", percent_drop=1.0)
    engine = AttackStrategyEngine(ctx, clock)
    assert engine.decide(packet(), 10, AttackStrategy.PACKET_DROP_PERC) is ForwardDecision.DROP
    with pytest.raises(ConfigurationError):
        engine.decide(packet(), 10, "PACKET_DROP_PERC")
