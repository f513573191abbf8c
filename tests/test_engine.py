"""
Tests for the cluster engine: the public operations, the end-to-end
failure and recovery scenarios, and invariants over random operation
sequences.
"""

from collections import Counter

import numpy as np
import pytest

from rangesim.simulation import (
    CapacityError,
    ClusterConfig,
    ClusterEngine,
    ClusterState,
    ConfigError,
    HOT_LOAD,
    Node,
    NodeStatus,
    Range,
    RegionStatus,
    ReplicaPlacer,
)


def assert_invariants(engine: ClusterEngine) -> None:
    """Check the placement invariants on an engine's current snapshots."""
    nodes = engine.get_nodes()
    node_ids = [n.node_id for n in nodes]
    assert len(set(node_ids)) == len(node_ids)

    factor = engine.get_config().replication_factor
    for r in engine.get_ranges():
        assert len(r.replicas) == factor, r
        assert len(set(r.replicas)) == factor, r
        assert set(r.replicas) <= set(node_ids), r
        assert r.leaseholder in r.replicas, r
        assert len(r.recent_movements) <= 10


def status_of(engine: ClusterEngine, node_id: str) -> NodeStatus:
    return engine.get_node(node_id).status


def make_three_region_cluster(rng: np.random.Generator, range_count: int = 3) -> ClusterState:
    """Six nodes, two per region, in us-east, eu-west and ap-southeast."""
    cluster = ClusterState(replication_factor=3)
    for region in ("us-east", "eu-west", "ap-southeast"):
        for zone in ("a", "b"):
            cluster.add_node(Node(node_id=cluster.next_node_id(), region=region, zone=zone))
    placer = ReplicaPlacer(rng)
    for _ in range(range_count):
        placer.place_range(cluster)
    return cluster


# =============================================================================
# Configuration Tests
# =============================================================================


class TestConfigure:
    def test_initial_shape(self):
        """Default shape: two nodes per region and one replica per region."""
        engine = ClusterEngine(seed=1)
        engine.configure(ClusterConfig(region_count=3, replication_factor=3, node_count=6, range_count=3))

        nodes = engine.get_nodes()
        assert len(nodes) == 6
        assert len({n.region for n in nodes}) == 3
        assert set(Counter(n.region for n in nodes).values()) == {2}

        ranges = engine.get_ranges()
        assert len(ranges) == 3
        for r in ranges:
            assert len(set(r.replicas)) == 3
            assert r.leaseholder in r.replicas
            # Three regions for three replicas: one replica per region.
            assert len({engine.get_node(n).region for n in r.replicas}) == 3
        assert_invariants(engine)

    def test_configure_returns_snapshots(self):
        """configure hands back the new nodes and ranges."""
        engine = ClusterEngine(seed=2)
        nodes, ranges = engine.configure(ClusterConfig(region_count=2, replication_factor=2, node_count=4, range_count=5))

        assert [n.node_id for n in nodes] == ["n1", "n2", "n3", "n4"]
        assert [r.range_id for r in ranges] == ["r1", "r2", "r3", "r4", "r5"]
        assert engine.get_config().range_count == 5

    def test_reconfigure_restarts_ids(self):
        """A fresh configuration numbers nodes and ranges from one."""
        engine = ClusterEngine(seed=3)
        engine.add_node()
        engine.add_range()
        engine.configure(ClusterConfig(region_count=1, replication_factor=1, node_count=2, range_count=1))

        assert [n.node_id for n in engine.get_nodes()] == ["n1", "n2"]
        assert [r.range_id for r in engine.get_ranges()] == ["r1"]

    def test_capacity_error_keeps_previous_cluster(self):
        """A failed configure leaves the running cluster in place."""
        engine = ClusterEngine(seed=4)
        before_nodes = engine.get_nodes()
        before_ranges = engine.get_ranges()

        with pytest.raises(CapacityError):
            engine.configure(ClusterConfig(region_count=2, replication_factor=5, node_count=3, range_count=2))

        assert engine.get_nodes() == before_nodes
        assert [r.replicas for r in engine.get_ranges()] == [r.replicas for r in before_ranges]
        assert engine.get_config().replication_factor == 3

    def test_out_of_bounds_config(self):
        """Out of range configs are rejected before building."""
        with pytest.raises(ConfigError):
            ClusterConfig(region_count=11)

    def test_constructor_capacity_error(self):
        """The constructor refuses more replicas than nodes."""
        with pytest.raises(CapacityError):
            ClusterEngine(ClusterConfig(region_count=1, replication_factor=4, node_count=2, range_count=1), seed=0)

    def test_adopted_cluster_must_match(self):
        """An adopted cluster must share the configured replication factor."""
        cluster = make_three_region_cluster(np.random.default_rng(0))
        with pytest.raises(ConfigError):
            ClusterEngine(ClusterConfig(replication_factor=2), cluster=cluster)

    def test_adopted_cluster_is_copied(self):
        """Changing the caller's cluster afterwards does not reach the engine."""
        cluster = ClusterState(replication_factor=1)
        cluster.add_node(Node(node_id=cluster.next_node_id(), region="us-east", zone="a"))
        cluster.add_range(Range(range_id=cluster.next_range_id(), replicas=["n1"], leaseholder="n1"))
        engine = ClusterEngine(ClusterConfig(replication_factor=1), cluster=cluster, seed=0)

        cluster.ranges["r1"].leaseholder = "bogus"
        cluster.nodes["n1"].status = NodeStatus.OFFLINE

        assert engine.get_range("r1").leaseholder == "n1"
        assert status_of(engine, "n1") is NodeStatus.ONLINE
        assert_invariants(engine)

    def test_adopted_config_describes_cluster(self):
        """The active config reflects the adopted cluster's shape."""
        rng = np.random.default_rng(0)
        engine = ClusterEngine(cluster=make_three_region_cluster(rng, range_count=4), rng=rng)

        config = engine.get_config()

        assert (config.region_count, config.node_count, config.range_count) == (3, 6, 4)
        assert config.replication_factor == 3
        assert engine.get_selected_regions() == ["us-east", "eu-west", "ap-southeast"]

    def test_adopted_cluster_leaseholder_outside_replicas(self):
        """A lease on a node that holds no replica is rejected."""
        cluster = make_three_region_cluster(np.random.default_rng(0))
        r1 = cluster.ranges["r1"]
        r1.leaseholder = next(n for n in cluster.nodes if n not in r1.replicas)
        with pytest.raises(ConfigError):
            ClusterEngine(cluster=cluster, seed=0)

    def test_adopted_cluster_duplicate_replicas(self):
        """A range that repeats a node is rejected."""
        cluster = ClusterState(replication_factor=2)
        for zone in ("a", "b"):
            cluster.add_node(Node(node_id=cluster.next_node_id(), region="us-east", zone=zone))
        cluster.add_range(Range(range_id=cluster.next_range_id(), replicas=["n1", "n1"], leaseholder="n1"))
        with pytest.raises(ConfigError):
            ClusterEngine(ClusterConfig(replication_factor=2), cluster=cluster)

    def test_adopted_cluster_stale_counts(self):
        """replica_counts that disagree with the ranges are rejected."""
        cluster = make_three_region_cluster(np.random.default_rng(0))
        cluster.replica_counts["n1"] += 1
        with pytest.raises(ConfigError):
            ClusterEngine(cluster=cluster, seed=0)

    def test_selected_regions_keep_empty_and_skip_added(self):
        """Selected regions are fixed at configure time, nodes or not."""
        config = ClusterConfig(region_count=5, replication_factor=1, node_count=3, range_count=1)
        engine = ClusterEngine(config, seed=1)
        selected = engine.get_selected_regions()

        assert len(selected) == 5
        assert len(engine.get_regions()) == 3

        for _ in range(5):
            engine.add_node()
        assert engine.get_selected_regions() == selected

    def test_seeded_engines_agree(self):
        """Two engines with the same seed build the same cluster."""
        a = ClusterEngine(seed=99)
        b = ClusterEngine(seed=99)
        assert [n.region for n in a.get_nodes()] == [n.region for n in b.get_nodes()]
        assert [r.replicas for r in a.get_ranges()] == [r.replicas for r in b.get_ranges()]


# =============================================================================
# Snapshot Tests
# =============================================================================


class TestSnapshots:
    def test_range_snapshots_are_detached(self):
        """Editing a range snapshot does not reach the engine."""
        engine = ClusterEngine(seed=5)
        snapshot = engine.get_ranges()[0]
        snapshot.replicas.clear()
        snapshot.leaseholder = "nope"

        live = engine.get_range(snapshot.range_id)
        assert len(live.replicas) == 3
        assert live.leaseholder in live.replicas

    def test_node_snapshots_are_detached(self):
        """Editing a node snapshot does not reach the engine."""
        engine = ClusterEngine(seed=5)
        engine.get_nodes()[0].status = NodeStatus.OFFLINE
        assert status_of(engine, "n1") is NodeStatus.ONLINE

    def test_unknown_lookups(self):
        """Lookups of unknown ids return None."""
        engine = ClusterEngine(seed=5)
        assert engine.get_node("n404") is None
        assert engine.get_range("r404") is None


# =============================================================================
# Failure Scenarios
# =============================================================================


class TestNodeFailure:
    def test_leaseholder_failure_moves_lease(self):
        """Leaseholder goes down, the lease moves to an online co-replica."""
        engine = ClusterEngine(seed=6)
        before = engine.get_range("r1")
        failed = before.leaseholder

        engine.toggle_node(failed)

        after = engine.get_range("r1")
        assert status_of(engine, failed) is NodeStatus.OFFLINE
        assert after.leaseholder != failed
        assert after.leaseholder in before.replicas
        assert status_of(engine, after.leaseholder) is NodeStatus.ONLINE
        assert any(m.is_leaseholder for m in after.recent_movements)
        assert_invariants(engine)

    def test_replica_failure_gets_replaced(self):
        """A failed follower is replaced by an online non-member."""
        engine = ClusterEngine(seed=7)
        before = engine.get_range("r1")
        failed = next(n for n in before.replicas if n != before.leaseholder)

        engine.toggle_node(failed)

        after = engine.get_range("r1")
        assert failed not in after.replicas
        (added,) = set(after.replicas) - set(before.replicas)
        assert status_of(engine, added) is NodeStatus.ONLINE
        assert after.leaseholder == before.leaseholder
        assert all(status_of(engine, n) is NodeStatus.ONLINE for n in after.replicas)
        assert_invariants(engine)

    def test_unknown_node_is_noop(self):
        """Toggling an unknown node changes nothing."""
        engine = ClusterEngine(seed=8)
        before = engine.get_ranges()
        engine.toggle_node("n999")
        assert [r.replicas for r in engine.get_ranges()] == [r.replicas for r in before]


class TestRecovery:
    def test_recovery_repairs_under_replicated_range(self):
        """A returning replica brings its range back to full strength."""
        config = ClusterConfig(region_count=3, replication_factor=3, node_count=3, range_count=1)
        engine = ClusterEngine(config, seed=9)
        r1 = engine.get_range("r1")
        failed = next(n for n in r1.replicas if n != r1.leaseholder)

        engine.toggle_node(failed)
        assert engine.get_metrics().under_replicated == ["r1"]
        assert failed in engine.get_range("r1").replicas

        engine.toggle_node(failed)

        repaired = engine.get_range("r1")
        online = [n for n in repaired.replicas if status_of(engine, n) is NodeStatus.ONLINE]
        assert len(online) == 3
        assert failed in repaired.replicas
        assert engine.get_metrics().is_healthy
        assert_invariants(engine)

    def test_recovering_node_fills_stale_slot(self):
        """A recovering non-member takes the offline replica's slot."""
        config = ClusterConfig(region_count=1, replication_factor=2, node_count=3, range_count=1)
        engine = ClusterEngine(config, seed=10)
        r1 = engine.get_range("r1")
        (spare,) = {"n1", "n2", "n3"} - set(r1.replicas)
        stale = next(n for n in r1.replicas if n != r1.leaseholder)

        # Take the spare down first so the failed replica cannot be replaced.
        engine.toggle_node(spare)
        engine.toggle_node(stale)
        assert engine.get_range("r1").replicas == r1.replicas

        engine.toggle_node(spare)

        repaired = engine.get_range("r1")
        assert spare in repaired.replicas
        assert stale not in repaired.replicas
        assert repaired.leaseholder == r1.leaseholder
        assert_invariants(engine)

    def test_recovery_rebalances_onto_idle_node(self):
        """An empty recovered node picks up a few replicas."""
        config = ClusterConfig(region_count=2, replication_factor=2, node_count=4, range_count=12)
        engine = ClusterEngine(config, seed=12)
        engine.toggle_node("n4")
        # Nothing is under-replicated: n4's replicas all moved elsewhere.
        assert engine.get_metrics().replica_counts["n4"] == 0

        engine.toggle_node("n4")

        counts = engine.get_metrics().replica_counts
        assert 1 <= counts["n4"] <= 3
        assert_invariants(engine)


# =============================================================================
# Region Scenarios
# =============================================================================


class TestRegionToggle:
    def test_region_offline_migrates_everything(self):
        """Region outage moves every replica and lease out of it."""
        rng = np.random.default_rng(13)
        engine = ClusterEngine(cluster=make_three_region_cluster(rng), rng=rng)
        us_east = [n.node_id for n in engine.get_nodes() if n.region == "us-east"]

        engine.toggle_region("us-east")

        assert all(status_of(engine, n) is NodeStatus.OFFLINE for n in us_east)
        for r in engine.get_ranges():
            assert not set(r.replicas) & set(us_east)
            assert engine.get_node(r.leaseholder).region != "us-east"
            assert status_of(engine, r.leaseholder) is NodeStatus.ONLINE
        region = next(s for s in engine.get_regions() if s.name == "us-east")
        assert region.status is RegionStatus.OFFLINE
        assert_invariants(engine)

    def test_mixed_region_comes_back_online(self):
        """A partly offline region toggles back to fully online."""
        rng = np.random.default_rng(14)
        engine = ClusterEngine(cluster=make_three_region_cluster(rng), rng=rng)
        engine.toggle_node("n1")
        assert next(s for s in engine.get_regions() if s.name == "us-east").status is RegionStatus.MIXED

        engine.toggle_region("us-east")

        assert status_of(engine, "n1") is NodeStatus.ONLINE
        assert status_of(engine, "n2") is NodeStatus.ONLINE
        assert_invariants(engine)

    def test_region_round_trip(self):
        """Region off then on leaves nothing under-replicated."""
        engine = ClusterEngine(ClusterConfig(region_count=2, replication_factor=3, node_count=6, range_count=6), seed=15)
        region = engine.get_selected_regions()[0]

        engine.toggle_region(region)
        assert engine.get_metrics().online_count == 3
        assert_invariants(engine)

        engine.toggle_region(region)
        metrics = engine.get_metrics()
        assert metrics.online_count == 6
        assert metrics.under_replicated == []
        assert_invariants(engine)

    def test_unknown_region_is_noop(self):
        """Toggling a region without nodes changes nothing."""
        engine = ClusterEngine(seed=16)
        engine.toggle_region("atlantis")
        assert engine.get_metrics().online_count == 6


# =============================================================================
# Growth Tests
# =============================================================================


class TestAddNode:
    def test_add_node(self):
        """A new node gets the next id and starts online."""
        engine = ClusterEngine(seed=17)
        node = engine.add_node()

        assert node.node_id == "n7"
        assert node.is_online
        assert engine.get_node("n7") == node
        assert_invariants(engine)

    def test_add_node_takes_some_replicas(self):
        """A new node receives at most three replicas."""
        config = ClusterConfig(region_count=2, replication_factor=2, node_count=4, range_count=20)
        engine = ClusterEngine(config, seed=18)

        node = engine.add_node()

        count = engine.get_metrics().replica_counts[node.node_id]
        assert count == 3
        moved = [r for r in engine.get_ranges() if node.node_id in r.replicas]
        assert all(r.recent_movements.latest() is not None for r in moved)
        assert_invariants(engine)

    def test_ids_never_reused(self):
        """Added nodes keep counting up from the last id."""
        engine = ClusterEngine(seed=19)
        ids = [engine.add_node().node_id for _ in range(3)]
        assert ids == ["n7", "n8", "n9"]


class TestAddRange:
    def test_add_range(self):
        """A new range gets the next id and baseline load."""
        engine = ClusterEngine(seed=20)
        r = engine.add_range()
        assert r.range_id == "r4"
        assert r.load == 10
        assert_invariants(engine)

    def test_capacity_error(self):
        """add_range fails while too few nodes are online and works once they return."""
        config = ClusterConfig(region_count=1, replication_factor=3, node_count=3, range_count=1)
        engine = ClusterEngine(config, seed=21)
        engine.toggle_node("n1")

        with pytest.raises(CapacityError):
            engine.add_range()

        assert len(engine.get_ranges()) == 1
        engine.toggle_node("n1")
        assert engine.add_range().range_id == "r2"


# =============================================================================
# Hot Range Tests
# =============================================================================


class TestMarkRangeHot:
    def test_hot_range_lease_leaves_busy_region(self):
        """Marking a range hot moves its lease to the quietest region."""
        cluster = ClusterState(replication_factor=3)
        for region in ("us-east", "eu-west", "ap-southeast"):
            cluster.add_node(Node(node_id=cluster.next_node_id(), region=region, zone="a"))
        for leaseholder in ("n1", "n1", "n2"):
            cluster.add_range(
                Range(range_id=cluster.next_range_id(), replicas=["n1", "n2", "n3"], leaseholder=leaseholder)
            )
        engine = ClusterEngine(cluster=cluster, seed=22)

        engine.mark_range_hot("r1")

        r1 = engine.get_range("r1")
        assert r1.load == HOT_LOAD
        assert r1.leaseholder == "n3"
        assert engine.get_metrics().region_loads == {"us-east": 10, "eu-west": 10, "ap-southeast": 80}
        assert_invariants(engine)

    def test_hot_range_lease_stays_valid(self):
        """Hot ranges keep an online leaseholder among their replicas."""
        engine = ClusterEngine(seed=23)
        for r in engine.get_ranges():
            engine.mark_range_hot(r.range_id)
            after = engine.get_range(r.range_id)
            assert after.leaseholder in r.replicas
            assert status_of(engine, after.leaseholder) is NodeStatus.ONLINE
        assert_invariants(engine)

    def test_unknown_range_is_noop(self):
        """Marking an unknown range hot changes nothing."""
        engine = ClusterEngine(seed=24)
        engine.mark_range_hot("r404")
        assert all(r.load == 10 for r in engine.get_ranges())


# =============================================================================
# Invariant Tests
# =============================================================================


class TestInvariants:
    @pytest.mark.parametrize("seed", range(5))
    def test_random_operations(self, seed):
        """Placement invariants hold after every step of a random walk."""
        rng = np.random.default_rng(seed)
        config = ClusterConfig(region_count=3, replication_factor=3, node_count=9, range_count=10)
        engine = ClusterEngine(config, rng=rng)

        for _ in range(150):
            nodes = engine.get_nodes()
            op = rng.integers(5)
            if op == 0:
                engine.toggle_node(nodes[rng.integers(len(nodes))].node_id)
            elif op == 1:
                engine.toggle_region(nodes[rng.integers(len(nodes))].region)
            elif op == 2 and len(nodes) < 20:
                engine.add_node()
            elif op == 3:
                try:
                    engine.add_range()
                except CapacityError:
                    pass
            else:
                ranges = engine.get_ranges()
                engine.mark_range_hot(ranges[rng.integers(len(ranges))].range_id)
            assert_invariants(engine)


# =============================================================================
# Metrics Tests
# =============================================================================


class TestMetrics:
    def test_balanced_cluster(self):
        """A fresh balanced cluster reports healthy metrics."""
        config = ClusterConfig(region_count=2, replication_factor=2, node_count=4, range_count=4)
        engine = ClusterEngine(config, seed=25)

        metrics = engine.get_metrics()

        assert metrics.node_count == 4
        assert metrics.online_count == 4
        assert metrics.range_count == 4
        assert metrics.replica_counts == {"n1": 2, "n2": 2, "n3": 2, "n4": 2}
        assert metrics.replica_spread == pytest.approx(0.0)
        assert metrics.is_healthy

    def test_unavailable_range(self):
        """Ranges whose leaseholder is offline are reported unavailable."""
        config = ClusterConfig(region_count=1, replication_factor=1, node_count=1, range_count=2)
        engine = ClusterEngine(config, seed=26)
        engine.toggle_node("n1")

        metrics = engine.get_metrics()

        assert metrics.unavailable == ["r1", "r2"]
        assert metrics.under_replicated == ["r1", "r2"]
        assert metrics.replica_spread == 0.0
        assert not metrics.is_healthy

    def test_region_summaries(self):
        """Region summaries list zones, nodes and lease load."""
        rng = np.random.default_rng(27)
        engine = ClusterEngine(cluster=make_three_region_cluster(rng), rng=rng)

        summaries = {s.name: s for s in engine.get_regions()}

        assert set(summaries) == {"us-east", "eu-west", "ap-southeast"}
        assert summaries["us-east"].node_ids == ("n1", "n2")
        assert summaries["us-east"].zones == ("a", "b")
        assert sum(s.lease_load for s in summaries.values()) == 30
