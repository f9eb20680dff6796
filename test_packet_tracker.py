import pytest

from packet_tracker import PacketExpectationTracker


@pytest.fixture
def tracker(context, clock):
    context.registry.sync_neighbors([1, 2])
    return PacketExpectationTracker(context, clock, timeout=2.0, settled_memory=10.0)


def test_observed_packet_counts_as_forwarded(tracker, clock, context):
    assert tracker.on_routing_obligation(1, 100, ttl=64)
    tracker.on_observed(1, 100)
    clock.advance(2.0)
    assert tracker.reconcile(1) == (1, 0)
    entry = context.registry.get(1).forward
    assert (entry.forward_count, entry.no_forward_count) == (1, 0)


def test_missing_observation_counts_as_not_forwarded(tracker, clock, context):
    tracker.on_routing_obligation(1, 100, ttl=64)
    tracker.on_routing_obligation(1, 101, ttl=64)
    tracker.on_observed(1, 101)
    clock.advance(3.0)
    assert tracker.reconcile(1) == (1, 1)
    assert context.registry.get(1).forward.total == 2


def test_young_expectations_stay_pending(tracker, clock):
    tracker.on_routing_obligation(1, 100, ttl=64)
    clock.advance(1.0)
    tracker.on_routing_obligation(1, 101, ttl=64)
    clock.advance(1.5)
    assert tracker.reconcile(1) == (0, 1)
    assert tracker.pending(1) == 1
    clock.advance(1.0)
    assert tracker.reconcile(1) == (0, 1)
    assert tracker.pending(1) == 0


def test_reconciling_twice_does_not_double_count(tracker, clock, context):
    tracker.on_routing_obligation(1, 100, ttl=64)
    clock.advance(5.0)
    assert tracker.reconcile(1) == (0, 1)
    assert tracker.reconcile(1) == (0, 0)
    # A late duplicate of the same id is not a new obligation
    assert not tracker.on_routing_obligation(1, 100, ttl=64)
    clock.advance(5.0)
    assert tracker.reconcile(1) == (0, 0)
    assert context.registry.get(1).forward.no_forward_count == 1


def test_settled_ids_are_forgotten_after_memory_window(tracker, clock):
    tracker.on_routing_obligation(1, 7, ttl=64)
    clock.advance(2.0)
    tracker.reconcile(1)
    clock.advance(11.0)
    tracker.reconcile(1)
    assert tracker.on_routing_obligation(1, 7, ttl=64)


def test_packet_ids_wrap_at_16_bits(tracker, clock):
    tracker.on_routing_obligation(1, 0x10005, ttl=64)
    tracker.on_observed(1, 5)
    clock.advance(2.0)
    assert tracker.reconcile(1) == (1, 0)


def test_expiring_packets_and_untracked_nodes_raise_no_obligation(tracker):
    assert not tracker.on_routing_obligation(1, 1, ttl=1)
    assert not tracker.on_routing_obligation(9, 1, ttl=64)
    assert tracker.pending(1) == 0
    assert tracker.pending(9) == 0


def test_listeners_receive_outcomes_in_arrival_order(tracker, clock):
    outcomes = []
    tracker.add_listener(lambda node, forwarded: outcomes.append((node, forwarded)))
    for packet_id in (10, 11, 12):
        tracker.on_routing_obligation(2, packet_id, ttl=64)
    tracker.on_observed(2, 11)
    clock.advance(2.0)
    tracker.reconcile_all()
    assert outcomes == [(2, False), (2, True), (2, False)]


def test_counters_never_decrease(tracker, clock, context):
    entry = context.registry.get(1).forward
    previous = (0, 0)
    for packet_id in range(50):
        tracker.on_routing_obligation(1, packet_id, ttl=64)
        if packet_id % 3:
            tracker.on_observed(1, packet_id)
        clock.advance(0.7)
        tracker.reconcile(1)
        current = (entry.forward_count, entry.no_forward_count)
        assert current[0] >= previous[0] and current[1] >= previous[1]
        previous = current
    clock.advance(10.0)
    tracker.reconcile(1)
    assert entry.total == 50


def test_excluded_node_is_forgotten(tracker, clock, context):
    tracker.on_routing_obligation(1, 100, ttl=64)
    context.registry.exclude(1)
    clock.advance(3.0)
    assert tracker.reconcile(1) == (0, 0)
    assert tracker.pending(1) == 0
