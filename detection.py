from shared_vars import Verdict
from config import ConfigurationError
from utils import setup_logger

logger = setup_logger("Detection")


class GroundTruthOracle:
    """Labels nodes from the known attacker set (evaluation and training only)."""

    def __init__(self, malicious_nodes):
        self.malicious_nodes = frozenset(malicious_nodes)

    def __call__(self, node):
        return Verdict.MALICIOUS if node in self.malicious_nodes else Verdict.BENIGN


class DetectionEvaluator:
    def __init__(self, context, threshold=0.5):
        self.context = context.require_open()
        self.threshold = self._validated(threshold)

    @staticmethod
    def _validated(threshold):
        if not 0.0 <= threshold <= 1.0:
            raise ConfigurationError(f"Detection threshold must be within [0, 1], got {threshold}")
        return threshold

    @property
    def results(self):
        return self.context.require_open().detection_results

    def classify(self, node, trust_score, threshold=None):
        threshold = self.threshold if threshold is None else self._validated(threshold)
        verdict = Verdict.MALICIOUS if trust_score < threshold else Verdict.BENIGN
        logger.debug(f"Node {node}: trust={trust_score:.3f} threshold={threshold:.2f} -> {verdict.value}")
        return verdict

    def record(self, node, predicted, ground_truth=None):
        """
        Adds one decision to the confusion matrix.
        Without ground truth (plain inference) nothing is recorded.
        """
        if ground_truth is None:
            return False
        results = self.results
        if predicted is Verdict.MALICIOUS:
            if ground_truth is Verdict.MALICIOUS:
                results.tp += 1
            else:
                results.fp += 1
                logger.info(f"False positive on node {node}")
        else:
            if ground_truth is Verdict.MALICIOUS:
                results.fn += 1
            else:
                results.tn += 1
        return True

    def evaluate(self, node, trust_score, ground_truth=None, threshold=None):
        verdict = self.classify(node, trust_score, threshold)
        self.record(node, verdict, ground_truth)
        return verdict
