import networkx as nx
import matplotlib.pyplot as plt
import matplotlib.patches as mpatches


def visualize_network(graph, trust=None, excluded=None, attackers=None, threshold=0.5,
                      filename="network_topology.png", return_fig=False):
    """
    Visualizes the network topology.
    - Excluded nodes -> Grey
    - Low trust nodes (below threshold) -> Red
    - Trusted nodes -> Green
    Ground-truth attackers get a thick black outline.

    Args:
        trust: list of trust dump rows ({'node', 'trust_score', ...}) or {node: score}
        excluded: nodes withdrawn from routing
        attackers: ground-truth attacker ids
    """
    if isinstance(trust, list):
        trust = {row["node"]: row["trust_score"] for row in trust}
    trust = trust or {}
    excluded = set(excluded or ())
    attackers = set(attackers or ())

    fig = plt.figure(figsize=(12, 10))
    pos = nx.spring_layout(graph, seed=42)

    node_colors = []
    line_widths = []
    for node in graph.nodes():
        if node in excluded:
            node_colors.append('#AAAAAA')
        elif trust.get(node, 1.0) < threshold:
            node_colors.append('#FF4444')
        else:
            node_colors.append('#44FF44')
        line_widths.append(3.0 if node in attackers else 1.0)

    nx.draw_networkx_nodes(graph, pos, node_color=node_colors, node_size=600,
                           edgecolors='black', linewidths=line_widths)
    nx.draw_networkx_edges(graph, pos, alpha=0.3, edge_color='gray', style='dashed')

    labels = {n: f"{n}\n{trust[n]:.2f}" if n in trust else str(n) for n in graph.nodes()}
    nx.draw_networkx_labels(graph, pos, labels=labels, font_size=8)

    legend_patches = [
        mpatches.Patch(color='#44FF44', label='Trusted Node'),
        mpatches.Patch(color='#FF4444', label='Low Trust'),
        mpatches.Patch(color='#AAAAAA', label='Excluded'),
    ]
    plt.legend(handles=legend_patches, loc='upper right')
    plt.title("Network Topology (trust score under node id)")
    plt.axis('off')

    if return_fig:
        return fig
    plt.savefig(filename)
    plt.close(fig)
    return filename


def plot_trust_history(trust_frame, filename="trust_history.png", return_fig=False):
    """One line per node: trust score against simulated time."""
    fig, ax = plt.subplots(figsize=(12, 6))
    for node, rows in trust_frame.groupby("node"):
        ax.plot(rows["timestamp"], rows["trust_score"], label=f"Node {node}", linewidth=1.5)
    ax.set_xlabel('Simulation Second', fontsize=12)
    ax.set_ylabel('Trust Score', fontsize=12)
    ax.set_title('Trust Over Time', fontsize=14, fontweight='bold')
    ax.set_ylim(0, 1.05)
    ax.grid(alpha=0.3)
    if trust_frame["node"].nunique() <= 20:
        ax.legend(fontsize=8, ncol=2)
    plt.tight_layout()

    if return_fig:
        return fig
    plt.savefig(filename, dpi=150)
    plt.close(fig)
    return filename


def plot_throughput(throughput_frame, filename="throughput.png", return_fig=False):
    fig, ax = plt.subplots(figsize=(12, 5))
    ax.plot(throughput_frame["timestamp"], throughput_frame["receive_rate_kbps"], color='tab:blue', linewidth=2)
    ax.set_xlabel('Simulation Second', fontsize=12)
    ax.set_ylabel('Receive Rate (kbps)', fontsize=12)
    ax.set_title('Throughput', fontsize=14, fontweight='bold')
    ax.grid(alpha=0.3)
    plt.tight_layout()

    if return_fig:
        return fig
    plt.savefig(filename, dpi=150)
    plt.close(fig)
    return filename
