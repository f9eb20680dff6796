import streamlit as st
import pandas as pd

from config import RunConfig, ConfigurationError
from experiment import RoutingExperiment, int_list, pair_list
from shared_vars import AttackStrategy, DefenseStrategy
from visualization import visualize_network, plot_trust_history

st.set_page_config(page_title="Grey-hole AODV Trust Dashboard", layout="wide")
st.title("Grey-hole AODV: Trust, Detection and Adaptive Defense")

# Sidebar Setup
st.sidebar.header("🛠️ Network Setup")
num_nodes = st.sidebar.number_input("Number of Nodes", 6, 60, 20)
n_sinks = st.sidebar.number_input("Number of Sinks", 1, 10, 5)
total_time = st.sidebar.slider("Simulated Seconds", 120, 600, 200, step=20)
node_speed = st.sidebar.slider("Max Node Speed (m/s)", 0.0, 30.0, 10.0)
seed = st.sidebar.number_input("Seed", 0, 10_000, 1)

st.sidebar.write("---")
st.sidebar.header("Attack")
attack_strategy = st.sidebar.selectbox("Attack Strategy", [s.name for s in AttackStrategy], index=1)
percent_drop = st.sidebar.slider("Percent Drop", 0.0, 1.0, 1.0)
attackers_text = st.sidebar.text_input("Attacker Nodes (comma separated)", "10,11,12")
drop_flows_text = st.sidebar.text_input("Dropped Flows (src:dst, for PACKET_DROP_CONNECTION)", "")
drop_neighbours_text = st.sidebar.text_input("Dropped Neighbours (for PACKET_DROP_NEIGHBOURS)", "")
drop_windows_text = st.sidebar.text_input("Drop Windows (start-end, for PACKET_DROP_IN_TIME)", "")
select_ttl_below = st.sidebar.number_input("Drop TTL Below (for PACKET_DROP_SELECT)", 0, 255, 0)

st.sidebar.write("---")
st.sidebar.header("Defense")
defense_strategy = st.sidebar.selectbox("Defense Strategy", [s.name for s in DefenseStrategy], index=4)
detection_threshold = st.sidebar.slider("Detection Threshold", 0.0, 1.0, 0.5)
congestion_drop = st.sidebar.slider("Congestion Drop Probability", 0.0, 0.3, 0.0)

if st.sidebar.button("▶️ Run Experiment"):
    try:
        config = RunConfig(
            num_nodes=int(num_nodes),
            n_sinks=int(n_sinks),
            total_time=float(total_time),
            node_speed=float(node_speed),
            seed=int(seed),
            attack_strategy=attack_strategy,
            percent_drop=percent_drop,
            attackers=int_list(attackers_text),
            drop_flows=pair_list(":", int)(drop_flows_text),
            drop_neighbours=int_list(drop_neighbours_text),
            drop_windows=pair_list("-", float)(drop_windows_text),
            select_ttl_below=int(select_ttl_below),
            defense_strategy=defense_strategy,
            detection_threshold=detection_threshold,
            congestion_drop=congestion_drop,
            csv_file_name="",
            trace_mobility=False,
        )
    except (ConfigurationError, ValueError) as e:
        st.error(f"Invalid configuration: {e}")
    else:
        with st.spinner("Simulating..."):
            st.session_state.result = RoutingExperiment(config).run()
        st.toast("Simulation finished")

if 'result' not in st.session_state:
    st.info("Configure the run in the sidebar and press Run Experiment.")
    st.stop()

result = st.session_state.result
d = result.detection

# Headline metrics
col1, col2, col3, col4, col5 = st.columns(5)
sent = result.routing_stats["sent"]
col1.metric("PDR", f"{(result.routing_stats['delivered'] / sent * 100) if sent else 0:.1f}%")
col2.metric("Accuracy", f"{d.accuracy:.2f}")
col3.metric("Precision", f"{d.precision:.2f}")
col4.metric("Recall", f"{d.recall:.2f}")
col5.metric("Final Stage", result.final_stage.name)

st.subheader("Confusion Matrix")
st.table(pd.DataFrame(
    [[d.tp, d.fn], [d.fp, d.tn]],
    index=["Actual malicious", "Actual benign"],
    columns=["Predicted malicious", "Predicted benign"],
))

left, right = st.columns(2)
with left:
    st.subheader("Topology")
    fig = visualize_network(result.graph, trust=result.trust, excluded=result.excluded,
                            attackers=result.config.attackers, threshold=result.config.detection_threshold,
                            return_fig=True)
    st.pyplot(fig)
with right:
    st.subheader("Trust Over Time")
    trust_frame = result.sink.trust_frame()
    if trust_frame.empty:
        st.write("No trust records yet.")
    else:
        st.pyplot(plot_trust_history(trust_frame, return_fig=True))

st.subheader("Throughput")
throughput = result.sink.throughput_frame()
st.line_chart(throughput.set_index("timestamp")["receive_rate_kbps"])

st.subheader("Defense Stages")
st.dataframe(pd.DataFrame(
    [{"time": t, "stage": stage.name} for t, stage in result.stage_history]
))
st.write(f"Excluded nodes: {result.excluded or 'none'}")
if result.unmonitored:
    st.warning(f"Nodes without trust accounting: {result.unmonitored}")

st.subheader("Trust Table")
st.dataframe(pd.DataFrame(result.trust))
