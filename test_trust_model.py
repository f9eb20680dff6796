import random

import pytest

from conftest import FakeTopology
from detection import DetectionEvaluator
from shared_vars import Verdict
from trust_model import TrustEngine


@pytest.fixture
def engine(context):
    context.registry.sync_neighbors([1, 2, 3])
    topology = FakeTopology(neighbors={1: [2, 3], 2: [1], 3: [1]})
    return TrustEngine(context, topology=topology, monitoring_node=0)


def test_no_evidence_is_neutral(engine):
    assert engine.trust_score(1) == 0.5
    assert engine.projected_trust(1) == 0.5
    assert engine.trust_score(99) == 0.5


def test_alpha_one_beta_nine(engine):
    engine.update(2, True)
    for _ in range(9):
        engine.update(2, False)
    assert engine.trust_score(2) == pytest.approx(1 / 12)
    opinion = engine.opinion(0, 2)
    assert opinion.m_distrust == pytest.approx(9 / 12)
    assert opinion.m_uncertain == pytest.approx(2 / 12)


def test_masses_always_sum_to_one(engine, context):
    rng = random.Random(7)
    for _ in range(500):
        node = rng.choice([1, 2, 3])
        engine.update(node, rng.random() < 0.6)
        for subject in (1, 2, 3):
            for mass in context.registry.get(subject).masses.values():
                assert mass.total == pytest.approx(1.0, abs=1e-6)
                for value in (mass.m_trust, mass.m_distrust, mass.m_uncertain):
                    assert 0.0 <= value <= 1.0


def test_every_observer_holds_the_opinion(engine, context):
    engine.update(1, True)
    assert sorted(context.registry.get(1).masses) == [0, 2, 3]
    assert engine.opinion(3, 1).m_trust == pytest.approx(1 / 3)


def test_uncertainty_decays_with_evidence(engine):
    previous = 1.0
    for _ in range(20):
        engine.update(3, True)
        uncertainty = engine.opinion(0, 3).m_uncertain
        assert uncertainty < previous
        previous = uncertainty
    assert engine.evidence(3) == 20


def test_black_hole_trust_falls_toward_zero(engine):
    scores = []
    for _ in range(30):
        engine.update(1, False)
        scores.append(engine.trust_score(1))
    assert scores[-1] == 0.0
    assert engine.opinion(0, 1).m_distrust == pytest.approx(30 / 32)


def test_projected_trust_uses_base_rate(engine):
    engine.update(1, True)
    engine.update(1, True)
    assert engine.projected_trust(1) == pytest.approx(0.5 + 0.5 * 0.5)


def test_untracked_evidence_is_ignored(engine, context):
    assert engine.update(42, True) is None
    assert 42 not in context.registry


def test_lowest_trust_respects_min_evidence(engine):
    engine.update(1, False)
    for _ in range(6):
        engine.update(2, False)
        engine.update(3, True)
    assert engine.lowest_trust() == 1
    assert engine.lowest_trust(min_evidence=5) == 2
    assert engine.lowest_trust(min_evidence=50) is None


def test_scenario_low_trust_node_is_malicious(engine, context):
    engine.update(1, True)
    for _ in range(9):
        engine.update(1, False)
    evaluator = DetectionEvaluator(context, threshold=0.3)
    assert evaluator.classify(1, engine.trust_score(1)) is Verdict.MALICIOUS
