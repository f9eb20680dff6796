import random
import numpy as np


class QLearningAgent:
    def __init__(self, actions, alpha=0.3, gamma=0.8, epsilon=0.5, epsilon_min=0.05, epsilon_decay=0.97, seed=None):
        """
        Tabular Q-Learning agent for the defense policy.
        actions: list of candidate detection thresholds
        alpha: learning rate
        gamma: discount factor
        epsilon: exploration rate (decays per finished episode)
        """
        self.actions = list(actions)
        self.alpha = alpha
        self.gamma = gamma
        self.epsilon = epsilon
        self.epsilon_min = epsilon_min
        self.epsilon_decay = epsilon_decay
        self.rng = random.Random(seed)

        # Q-Table: Q[state] -> array of values, one per action
        # States are created lazily the first time they are seen
        self.q_table = {}

    def _values(self, state):
        if state not in self.q_table:
            self.q_table[state] = np.zeros(len(self.actions))
        return self.q_table[state]

    def get_q_value(self, state, action_idx):
        return float(self._values(state)[action_idx])

    def best_action(self, state):
        """Greedy action index; ties go to the lowest threshold."""
        return int(np.argmax(self._values(state)))

    def choose_action(self, state):
        """
        Epsilon-greedy selection of a threshold index.
        """
        if self.rng.random() < self.epsilon:
            # Explore
            return self.rng.randrange(len(self.actions))
        # Exploit: choose action with max Q-value, random tie-breaking
        values = self._values(state)
        best = np.flatnonzero(values == values.max())
        return int(best[self.rng.randrange(len(best))])

    def learn(self, state, action_idx, reward, next_state=None):
        """
        Q-Learning Update Rule:
        Q(s,a) <- Q(s,a) + alpha * [reward + gamma * max(Q(s', a')) - Q(s,a)]
        next_state None marks the end of an episode (no bootstrap).
        """
        values = self._values(state)
        max_next_q = 0.0 if next_state is None else float(self._values(next_state).max())
        values[action_idx] += self.alpha * (reward + self.gamma * max_next_q - values[action_idx])

    def decay_epsilon(self):
        self.epsilon = max(self.epsilon_min, self.epsilon * self.epsilon_decay)

    def policy(self):
        """{state: greedy threshold} for every visited state."""
        return {state: self.actions[self.best_action(state)] for state in sorted(self.q_table)}
