"""
Adaptive defense policy.

The controller walks through the defense stages

    NO_OPERATION -> MONITOR_ALWAYS | MONITOR_WHEN_VELOCITY -> TRAINING -> INFERENCE

stopping at the stage the run is configured for. Each decision cycle rebuilds
a GymVariables snapshot and calls step(state) -> (action, reward) once:

- monitor stages only refresh the per-node features,
- training lets the Q-learning agent pick a detection threshold for the
  least trusted node and rewards it against the ground-truth oracle
  (rejections are virtual, the node keeps forwarding),
- inference applies the learned threshold and excludes the node from routing
  when it is judged malicious.
"""
import math

from shared_vars import (DefenseStrategy, Verdict, GymVariables, GymStateVariables,
                         GymRewardVariables, GymActionVariables)
from rl_agent import QLearningAgent
from utils import setup_logger

logger = setup_logger("DefenseController")


class AdaptiveDefenseController:
    def __init__(self, context, trust_engine, evaluator, topology=None, clock=None,
                 exclude_callback=None, oracle=None, agent=None):
        self.context = context.require_open()
        self.config = config = context.config
        self.trust_engine = trust_engine
        self.evaluator = evaluator
        self.topology = topology
        self.clock = clock
        self.exclude_callback = exclude_callback
        self.oracle = oracle
        self.agent = agent or QLearningAgent(
            config.candidate_thresholds,
            alpha=config.learning_rate,
            gamma=config.discount,
            epsilon=config.epsilon,
            epsilon_min=config.epsilon_min,
            epsilon_decay=config.epsilon_decay,
            seed=config.seed,
        )

        target = config.defense_strategy
        monitor = target if target.is_monitor else config.monitor_mode
        self.stages = [s for s in (DefenseStrategy.NO_OPERATION, monitor,
                                   DefenseStrategy.TRAINING, DefenseStrategy.INFERENCE)
                       if s.rank <= target.rank]
        self.stage = DefenseStrategy.NO_OPERATION
        self.history = [(0.0, self.stage)]

        if target.rank >= DefenseStrategy.TRAINING.rank and oracle is None:
            logger.warning("Training without a ground-truth oracle: rewards will stay at zero")

        self.cycles = 0
        self.training_cycles = 0
        self.episode_cycle = 0
        self.episodes = 0
        self.stable_cycles = 0
        self._last_policy = None
        self._pending = None  # (state_key, action_idx, reward) waiting for its successor state
        self._episode_rejected = set()
        self._features = {}  # {node: (context, speed, distance, d_distance)}
        self.snapshot = None

    @property
    def registry(self):
        return self.context.require_open().registry

    # ------------------------------------------------------------------ stages

    def _now(self, now):
        if now is not None:
            return now
        return self.clock() if self.clock is not None else 0.0

    def _next_stage(self):
        idx = self.stages.index(self.stage)
        return self.stages[idx + 1] if idx + 1 < len(self.stages) else None

    def _ready_for(self, stage, now):
        cfg = self.config
        if stage.is_monitor:
            return now >= cfg.monitor_start_time and len(self.registry) > 0
        if stage is DefenseStrategy.TRAINING:
            evidence = sum(self.trust_engine.evidence(n) for n in self.registry.nodes())
            return evidence >= cfg.train_after_observations
        if stage is DefenseStrategy.INFERENCE:
            if self.training_cycles < cfg.min_training_cycles:
                return False
            return self.stable_cycles >= cfg.stability_window or self.training_cycles >= cfg.max_training_cycles
        return False

    def advance(self, now=None):
        """Moves at most one stage forward. Returns the new stage or None."""
        now = self._now(now)
        stage = self._next_stage()
        if stage is None or not self._ready_for(stage, now):
            return None
        if stage.rank <= self.stage.rank:
            raise RuntimeError(f"Backward stage transition {self.stage.name} -> {stage.name}")
        if self.stage is DefenseStrategy.TRAINING:
            self._flush_pending()
            self._episode_rejected = set()
        logger.info(f"t={now:.1f}s defense stage {self.stage.name} -> {stage.name}")
        self.stage = stage
        self.history.append((now, stage))
        return stage

    # ---------------------------------------------------------------- features

    def _kinematics(self, node):
        if self.topology is None:
            return 0.0, 0.0
        speed = self.topology.speed(node)
        distance = self.topology.distance(self.config.monitoring_node, node)
        return speed, distance

    def observe(self, now=None):
        """Rebuilds the per-node state vectors for this cycle."""
        for node in list(self._features):
            if node not in self.registry:
                del self._features[node]

        state = GymStateVariables()
        if self.stage is DefenseStrategy.NO_OPERATION:
            return state

        gated = self.stages[1] is DefenseStrategy.MONITOR_WHEN_VELOCITY
        for node in self.registry.nodes():
            speed, distance = self._kinematics(node)
            previous = self._features.get(node)
            if previous is None or not gated or speed > self.config.velocity_floor:
                d_distance = previous[2] - distance if previous is not None else 0.0
                self._features[node] = (self.trust_engine.trust_score(node), speed, distance, d_distance)
                if self.topology is not None:
                    self.registry.update_connection_strength(
                        node, 1.0 - distance / self.config.radio_range, self.config.connection_smoothing)
            context, speed, distance, d_distance = self._features[node]
            state.nodes.append(node)
            state.context.append(context)
            state.current_speed.append(speed)
            state.distance.append(distance)
            state.d_distance.append(d_distance)
        return state

    # ------------------------------------------------------------------ policy

    def _state_key(self, node):
        bins = self.config.trust_bins
        return min(int(math.floor(self.trust_engine.trust_score(node) * bins)), bins - 1)

    def select_candidate(self, state):
        candidates = [n for n in state.nodes if n not in self._episode_rejected]
        return self.trust_engine.lowest_trust(self.config.min_evidence, candidates)

    def step(self, state):
        """One decision for the current stage. Returns (GymActionVariables, GymRewardVariables)."""
        if self.stage is DefenseStrategy.TRAINING:
            return self._train(state)
        if self.stage is DefenseStrategy.INFERENCE:
            return self._infer(state)
        return GymActionVariables(0.0), GymRewardVariables()

    def _label(self, node):
        return self.oracle(node) if self.oracle is not None else None

    def _score(self, verdict, truth):
        if verdict is not Verdict.MALICIOUS or truth is None:
            return 0.0
        if truth is Verdict.MALICIOUS:
            return self.config.reward_hit
        return -self.config.reward_false_alarm

    def _train(self, state):
        node = self.select_candidate(state)
        action = GymActionVariables(0.0)
        reward = GymRewardVariables()
        if node is not None:
            key = self._state_key(node)
            action_idx = self.agent.choose_action(key)
            threshold = self.agent.actions[action_idx]
            truth = self._label(node)
            verdict = self.evaluator.evaluate(node, self.trust_engine.trust_score(node), truth, threshold)
            if verdict is Verdict.MALICIOUS:
                self._episode_rejected.add(node)
            reward.value = self._score(verdict, truth)
            action.reject_node = threshold
            if self._pending is not None:
                prev_key, prev_idx, prev_reward = self._pending
                self.agent.learn(prev_key, prev_idx, prev_reward, key)
            self._pending = (key, action_idx, reward.value)

        self.training_cycles += 1
        self.episode_cycle += 1
        if self.episode_cycle >= self.config.episode_cycles:
            self._end_episode(reward)

        policy = self.agent.policy()
        self.stable_cycles = self.stable_cycles + 1 if policy == self._last_policy else 0
        self._last_policy = policy
        return action, reward

    def _end_episode(self, reward):
        evaders = [n for n in self.registry.nodes()
                   if self._label(n) is Verdict.MALICIOUS and n not in self._episode_rejected]
        if evaders:
            penalty = self.config.reward_evasion * len(evaders)
            reward.value -= penalty
            reward.gameover = True
            if self._pending is not None:
                key, idx, value = self._pending
                self._pending = (key, idx, value - penalty)
            logger.debug(f"Episode {self.episodes}: nodes {evaders} evaded detection")
        self._flush_pending()
        self.episodes += 1
        self.episode_cycle = 0
        self._episode_rejected = set()
        self.agent.decay_epsilon()

    def _flush_pending(self):
        if self._pending is not None:
            key, idx, value = self._pending
            self.agent.learn(key, idx, value, None)
            self._pending = None

    def threshold_for(self, node):
        """Learned threshold for node's trust level, the configured one for unseen levels."""
        key = self._state_key(node)
        if key not in self.agent.q_table:
            return self.config.detection_threshold
        return self.agent.actions[self.agent.best_action(key)]

    def _infer(self, state):
        node = self.select_candidate(state)
        if node is None:
            return GymActionVariables(0.0), GymRewardVariables()
        threshold = self.threshold_for(node)
        truth = self._label(node)
        verdict = self.evaluator.evaluate(node, self.trust_engine.trust_score(node), truth, threshold)
        if verdict is Verdict.MALICIOUS:
            self.exclude(node)
        return GymActionVariables(threshold), GymRewardVariables(self._score(verdict, truth), False)

    def exclude(self, node):
        """Withdraws node from routing. Returns False when it was already excluded."""
        if not self.registry.exclude(node):
            return False
        self._features.pop(node, None)
        if self.exclude_callback is not None:
            self.exclude_callback(node)
        return True

    # ------------------------------------------------------------------- cycle

    def cycle(self, now=None):
        """Runs one decision cycle and returns its GymVariables snapshot."""
        now = self._now(now)
        self.advance(now)
        state = self.observe(now)
        reward_node = self.select_candidate(state) if self.stage.rank >= DefenseStrategy.TRAINING.rank else None
        action, reward = self.step(state)
        next_node = None
        if self.stage.rank >= DefenseStrategy.TRAINING.rank:
            remaining = GymStateVariables(nodes=[n for n in state.nodes if n in self.registry])
            next_node = self.select_candidate(remaining)
        self.snapshot = GymVariables(reward_node=reward_node, next_node=next_node,
                                     state=state, reward=reward, action=action)
        self.cycles += 1
        return self.snapshot
