"""Unit tests for the drift-plus-penalty optimizer."""

import math
import unittest

import numpy as np

from istream_abr.config.config import ABRConfig
from istream_abr.models.abr_objects import State
from istream_abr.modules.abr import DriftPlusPenaltyOptimizer, StateMachine


class TestDriftPlusPenaltyOptimizer(unittest.TestCase):

    def setUp(self):
        self.optimizer = DriftPlusPenaltyOptimizer()
        self.optimizer.setup(ABRConfig())
        self.state = StateMachine().initial_state([1000000, 2000000, 4000000], 12)
        self.state.state = State.STEADY
        self.state.last_segment_duration_s = 4.0

    def assertOnSimplex(self, w):
        self.assertLess(abs(sum(w) - 1), 1e-9)
        self.assertGreaterEqual(min(w), -1e-12)

    def test_props_from_module_string(self):
        optimizer = DriftPlusPenaltyOptimizer(horizon="8", target_buffer="1.5")
        optimizer.setup(ABRConfig())
        self.assertEqual(optimizer.params.horizon, 8.0)
        self.assertEqual(optimizer.params.target_buffer, 1.5)
        self.assertAlmostEqual(optimizer.params.VL, math.sqrt(8))

    def test_skips_without_segment_duration(self):
        self.state.last_segment_duration_s = None
        self.state.last_quality = 1
        q = self.optimizer.choose_quality(self.state, 5, 3000000, 2700000, 0.0)
        self.assertEqual(q, 1)
        self.assertIsNone(self.state.w)

    def test_skips_without_throughput(self):
        self.state.last_quality = 2
        for throughput in (0.0, -1.0, float("nan"), float("inf")):
            self.assertEqual(self.optimizer.choose_quality(self.state, 5, throughput, 0.0, 0.0), 2)
        self.assertIsNone(self.state.w)

    def test_initializes_uniform_weights(self):
        self.optimizer.choose_quality(self.state, 5, 3000000, 2700000, 0.0)
        self.assertOnSimplex(self.state.w)
        self.assertEqual(len(self.state.w), 3)

    def test_reinitializes_corrupt_weights(self):
        for bad in ([0.5, 0.5], [float("nan"), 0.5, 0.5]):
            self.state.w = list(bad)
            self.state.Q1 = float("nan")
            self.optimizer.choose_quality(self.state, 5, 3000000, 2700000, 0.0)
            self.assertEqual(len(self.state.w), 3)
            self.assertOnSimplex(self.state.w)
            self.assertTrue(math.isfinite(self.state.Q1))

    def test_tie_picks_lowest_index(self):
        state = StateMachine().initial_state([1000000, 3000000], 12)
        state.state = State.STEADY
        state.last_segment_duration_s = 1.0
        state.w = [0.5, 0.5]
        # 梯度项为零时权重保持不变，目标码率恰好位于两档中点
        state.Q1 = self.optimizer.params.VL
        self.assertEqual(self.optimizer.choose_quality(state, 5, 10000000, 9000000, 0.0), 0)
        np.testing.assert_allclose(state.w, [0.5, 0.5])

    def test_converges_up_with_ample_throughput(self):
        q = None
        for _ in range(20):
            q = self.optimizer.choose_quality(self.state, 5, 10000000, 9000000, 0.0)
            self.assertOnSimplex(self.state.w)
            self.assertGreaterEqual(self.state.Q1, 0.0)
        self.assertEqual(q, 2)
        self.assertEqual(int(np.argmax(self.state.w)), 2)

    def test_converges_down_with_scarce_throughput(self):
        q = None
        for _ in range(10):
            q = self.optimizer.choose_quality(self.state, 5, 500000, 450000, 0.0)
            self.assertOnSimplex(self.state.w)
        self.assertEqual(q, 0)
        self.assertEqual(self.state.Q1, 0.0)


if __name__ == "__main__":
    unittest.main()
