from shared_vars import DetectionResults, DroppedStats
from target_nodes import TargetNodeRegistry
from utils import setup_logger

logger = setup_logger("RunContext")


class RunContext:
    """
    Run-wide state shared by every component of one simulation run: the
    tracked-node registry, the confusion matrix and the drop counters.

    Components receive the context at construction time. Nothing in it
    survives close(); a fresh run needs a fresh context.
    """

    def __init__(self, config):
        self.config = config
        self.registry = None
        self.detection_results = None
        self.dropped_stats = None
        self.is_open = False
        self.is_closed = False

    def open(self):
        if self.is_closed:
            raise RuntimeError("RunContext cannot be reopened after close()")
        if not self.is_open:
            self.registry = TargetNodeRegistry()
            self.detection_results = DetectionResults()
            self.dropped_stats = DroppedStats()
            self.is_open = True
            logger.debug("Run context opened")
        return self

    def close(self):
        if self.is_open:
            logger.info(
                f"Run context closed: tracked={len(self.registry)} excluded={sorted(self.registry.excluded)} "
                f"detections={self.detection_results.as_dict()} drops={self.dropped_stats.total}")
        self.is_open = False
        self.is_closed = True

    def require_open(self):
        if not self.is_open:
            raise RuntimeError("RunContext is not open")
        return self

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
