"""Tests for MetricsCollector."""

import json

import numpy as np
import pytest

from pagedewarp.utils.metrics import MetricsCollector


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_add_serialises_numpy(self):
        metrics = MetricsCollector()
        metrics.add("dims", np.array([1.5, 2.0]))
        metrics.add("count", np.int64(3))
        metrics.add("nested", {"a": (np.float32(0.5), [np.arange(2)])})

        assert metrics.get("dims") == [1.5, 2.0]
        assert metrics.get("count") == 3
        assert isinstance(metrics.get("count"), int)
        assert metrics.get("nested") == {"a": [0.5, [[0, 1]]]}

    def test_add_replaces(self):
        metrics = MetricsCollector()
        metrics.add("x", 1)
        metrics.add("x", 2)
        assert metrics.get("x") == 2
        assert len(metrics) == 1

    def test_increment(self):
        metrics = MetricsCollector()
        metrics.increment("nonfinite")
        metrics.increment("nonfinite", 4)
        assert metrics.get("nonfinite") == 5

    def test_get_default(self):
        assert MetricsCollector().get("missing", "none") == "none"

    def test_snapshot_is_read_only_copy(self):
        metrics = MetricsCollector()
        metrics.add("spans", [1, 2])
        snap = metrics.snapshot()
        with pytest.raises(TypeError):
            snap["spans"] = []
        snap["spans"].append(3)
        assert metrics.get("spans") == [1, 2]

    def test_reset(self):
        metrics = MetricsCollector()
        metrics.add("x", 1)
        metrics.reset()
        assert "x" not in metrics

    def test_save(self, tmp_path):
        metrics = MetricsCollector()
        metrics.add("final_cost", 0.25)
        path = metrics.save(tmp_path / "debug" / "metrics.json")
        assert json.loads(path.read_text(encoding="utf-8")) == {"final_cost": 0.25}
