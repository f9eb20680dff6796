import matplotlib
matplotlib.use("Agg")

import pandas as pd

from network_sim import static_simulation
from visualization import plot_throughput, plot_trust_history, visualize_network


def test_topology_figure_is_saved(tmp_path):
    net_sim = static_simulation([(0.0, 0.0), (30.0, 0.0), (60.0, 0.0)])
    trust = [{"node": 1, "trust_score": 0.1}, {"node": 2, "trust_score": 0.9}]
    out = tmp_path / "topology.png"
    assert visualize_network(net_sim.graph, trust=trust, excluded=[1], attackers=[1],
                             filename=str(out)) == str(out)
    assert out.stat().st_size > 0


def test_history_figures(tmp_path):
    trust = pd.DataFrame({"timestamp": [1.0, 2.0, 1.0, 2.0], "node": [1, 1, 2, 2],
                          "trust_score": [0.5, 0.2, 0.5, 0.8], "connection_strength": [0.5] * 4})
    throughput = pd.DataFrame({"timestamp": [0.0, 1.0], "receive_rate_kbps": [0.0, 6.4]})

    fig = plot_trust_history(trust, return_fig=True)
    assert len(fig.axes[0].lines) == 2
    assert plot_throughput(throughput, filename=str(tmp_path / "t.png")) == str(tmp_path / "t.png")
