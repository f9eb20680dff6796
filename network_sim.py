import simpy
import networkx as nx
import numpy as np
from utils import setup_logger

logger = setup_logger("NetworkSim")


class NetworkSimulation:
    def __init__(self, env, radio_range=40.0, area=100.0, seed=None, trace_mobility=False):
        """
        Ad hoc topology on a simpy clock.

        Nodes live in a square area and are linked whenever they are within
        radio range of each other (unit-disk graph). Mobility follows the
        random waypoint model and the links are rebuilt after every move.
        """
        self.env = env
        self.graph = nx.Graph()
        self.nodes = []
        self.radio_range = radio_range
        self.area = area
        self.rng = np.random.default_rng(seed)
        self.trace_mobility = trace_mobility
        self.mobility_trace = []
        self.departure_callbacks = []

        self.positions = {}
        self.waypoints = {}
        self.speeds = {}
        self.max_speed = {}
        self.pause = {}
        self.pause_until = {}

    def now(self):
        return self.env.now

    def create_topology(self, num_nodes=20, max_speed=10.0, pause=0.0):
        """Randomly places num_nodes mobile nodes in the area"""
        for _ in range(num_nodes):
            self.add_node(max_speed=max_speed, pause=pause)
        self.rebuild_links()
        logger.info(f"Topology created with {num_nodes} nodes and {len(self.graph.edges())} links")

    def add_node(self, position=None, max_speed=0.0, pause=0.0):
        """Adds a node with a unique ID; without max_speed it stays put"""
        new_id = max(self.nodes) + 1 if self.nodes else 0
        if position is None:
            position = self.rng.uniform(0.0, self.area, size=2)
        self.positions[new_id] = np.asarray(position, dtype=float)
        self.max_speed[new_id] = max_speed
        self.pause[new_id] = pause
        self.pause_until[new_id] = 0.0
        self.speeds[new_id] = 0.0
        self.waypoints[new_id] = self.positions[new_id].copy()
        if max_speed > 0:
            self._pick_waypoint(new_id)

        self.graph.add_node(new_id)
        self.nodes.append(new_id)
        logger.debug(f"Added node {new_id} at ({self.positions[new_id][0]:.1f}, {self.positions[new_id][1]:.1f})")
        return new_id

    def on_departure(self, callback):
        """callback(node_id) is called whenever a node leaves the topology"""
        self.departure_callbacks.append(callback)

    def remove_node(self, node_id):
        if node_id not in self.graph:
            return False
        self.graph.remove_node(node_id)
        self.nodes.remove(node_id)
        for table in (self.positions, self.waypoints, self.speeds, self.max_speed, self.pause, self.pause_until):
            table.pop(node_id, None)
        logger.info(f"Node {node_id} left the topology")
        for callback in self.departure_callbacks:
            callback(node_id)
        return True

    def _pick_waypoint(self, node_id):
        self.waypoints[node_id] = self.rng.uniform(0.0, self.area, size=2)
        self.speeds[node_id] = float(self.rng.uniform(0.0, self.max_speed[node_id]))

    def rebuild_links(self):
        """Links every pair of nodes within radio range (weight = distance in m)"""
        self.graph.remove_edges_from(list(self.graph.edges()))
        for i, u in enumerate(self.nodes):
            for v in self.nodes[i + 1:]:
                d = self.distance(u, v)
                if d <= self.radio_range:
                    self.graph.add_edge(u, v, weight=d)

    def move(self, dt):
        """Advances every mobile node dt seconds along its random waypoint leg"""
        now = self.env.now
        for node in self.nodes:
            if self.max_speed[node] <= 0 or self.pause_until[node] > now:
                continue
            speed = self.speeds[node]
            if speed <= 0:
                self._pick_waypoint(node)
                continue
            remaining = self.waypoints[node] - self.positions[node]
            dist = float(np.linalg.norm(remaining))
            travel = speed * dt
            if travel >= dist:
                self.positions[node] = self.waypoints[node].copy()
                self.pause_until[node] = now + self.pause[node]
                self._pick_waypoint(node)
            else:
                self.positions[node] = self.positions[node] + remaining / dist * travel
            if self.trace_mobility:
                x, y = self.positions[node]
                self.mobility_trace.append({"time": now, "node": node, "x": x, "y": y, "speed": speed})

    def update_mobility(self, step=1.0):
        """
        Periodically moves the nodes and refreshes the links.
        Run this as a SimPy process.
        """
        while True:
            yield self.env.timeout(step)
            self.move(step)
            self.rebuild_links()

    def neighbors(self, node_id):
        if node_id not in self.graph:
            return []
        return sorted(self.graph.neighbors(node_id))

    def position(self, node_id):
        return self.positions[node_id]

    def speed(self, node_id):
        if node_id not in self.speeds or self.pause_until.get(node_id, 0.0) > self.env.now:
            return 0.0
        return self.speeds[node_id]

    def distance(self, u, v):
        if u not in self.positions or v not in self.positions:
            return float("inf")
        return float(np.linalg.norm(self.positions[u] - self.positions[v]))


def static_simulation(positions, radio_range=40.0):
    """Builds a simulation with fixed node positions, handy for scripted scenarios"""
    net_sim = NetworkSimulation(simpy.Environment(), radio_range=radio_range)
    for position in positions:
        net_sim.add_node(position=position)
    net_sim.rebuild_links()
    return net_sim
