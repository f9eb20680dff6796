import os

import pandas as pd

from utils import setup_logger

logger = setup_logger("StatsSink")

THROUGHPUT_COLUMNS = {
    "timestamp": "SimulationSecond",
    "receive_rate_kbps": "ReceiveRate",
    "packets_received": "PacketsReceived",
    "sink_count": "NumberOfSinks",
    "protocol_name": "RoutingProtocol",
    "tx_power": "TransmissionPower",
}


FLOW_COLUMNS = ["src", "dst", "tx_packets", "tx_bytes", "rx_packets", "rx_bytes",
                "lost_packets", "first_tx", "last_rx", "delivery_ratio"]

class StatsSink:
    def __init__(self, csv_file_name=None):
        """
        Collects the per-interval statistics of a run.

        Throughput rows are also appended to csv_file_name as they arrive
        (the file is truncated and given its header by start()).
        """
        self.csv_file_name = csv_file_name
        self.throughput = []
        self.detection = []
        self.trust = []
        self.defense = []
        self.flows = []

    def start(self):
        if self.csv_file_name:
            pd.DataFrame(columns=list(THROUGHPUT_COLUMNS.values())).to_csv(self.csv_file_name, index=False)

    def record_throughput(self, timestamp, receive_rate_kbps, packets_received, sink_count, protocol_name, tx_power):
        row = {
            "timestamp": timestamp,
            "receive_rate_kbps": receive_rate_kbps,
            "packets_received": packets_received,
            "sink_count": sink_count,
            "protocol_name": protocol_name,
            "tx_power": tx_power,
        }
        self.throughput.append(row)
        if self.csv_file_name:
            pd.DataFrame([row]).to_csv(self.csv_file_name, mode="a", header=False, index=False)

    def record_detection(self, timestamp, results):
        self.detection.append({"timestamp": timestamp, **results.as_dict()})

    def record_trust(self, timestamp, rows):
        for row in rows:
            self.trust.append({
                "timestamp": timestamp,
                "node": row["node"],
                "trust_score": row["trust_score"],
                "connection_strength": row["connection_strength"],
            })

    def record_defense(self, timestamp, stage, gym):
        self.defense.append({
            "timestamp": timestamp,
            "stage": stage.name,
            "next_node": gym.next_node,
            "reject_node": gym.action.reject_node,
            "reward": gym.reward.value,
            "gameover": gym.reward.gameover,
        })

    def record_flows(self, flows):
        """Per-flow totals at the end of the run, flows as {(src, dst): counters}."""
        self.flows = []
        for (src, dst), counters in sorted(flows.items()):
            tx = counters["tx_packets"]
            self.flows.append({
                "src": src,
                "dst": dst,
                **counters,
                "delivery_ratio": counters["rx_packets"] / tx if tx else 0.0,
            })

    def throughput_frame(self, csv_headers=False):
        frame = pd.DataFrame(self.throughput, columns=list(THROUGHPUT_COLUMNS))
        return frame.rename(columns=THROUGHPUT_COLUMNS) if csv_headers else frame

    def detection_frame(self):
        return pd.DataFrame(self.detection, columns=["timestamp", "tp", "tn", "fp", "fn"])

    def trust_frame(self):
        return pd.DataFrame(self.trust, columns=["timestamp", "node", "trust_score", "connection_strength"])

    def defense_frame(self):
        return pd.DataFrame(self.defense,
                            columns=["timestamp", "stage", "next_node", "reject_node", "reward", "gameover"])

    def flows_frame(self):
        return pd.DataFrame(self.flows, columns=FLOW_COLUMNS)

    def dump(self, prefix, flows=False):
        """
        Writes the trust, detection and defense frames next to the throughput
        CSV, plus the per-flow table when flows is set.
        """
        base, _ = os.path.splitext(prefix)
        paths = {}
        frames = [("trust", self.trust_frame()),
                  ("detection", self.detection_frame()),
                  ("defense", self.defense_frame())]
        if flows:
            frames.append(("flows", self.flows_frame()))
        for name, frame in frames:
            paths[name] = f"{base}.{name}.csv"
            frame.to_csv(paths[name], index=False)
        logger.info(f"Statistics written to {', '.join(paths.values())}")
        return paths
