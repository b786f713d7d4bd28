"""Unit tests for the buffer-occupancy decider."""

import unittest

from istream_abr.models.abr_objects import DecisionState, State
from istream_abr.modules.abr import BufferOccupancyDecider, StateMachine
from istream_abr.modules.abr.abr_bola import (
    max_buffer_level_for_quality,
    min_buffer_level_for_quality,
    quality_from_buffer_level,
)

LADDERS = [
    [500000, 1000000, 2000000],
    [300000, 750000, 1200000, 2400000, 4800000, 8000000],
    [1000000, 1100000],
]


def steady_state(bitrates, stable_buffer_time=30):
    state = StateMachine().initial_state(bitrates, stable_buffer_time)
    state.state = State.STEADY
    return state


class TestBufferLevelRule(unittest.TestCase):

    def test_monotone_in_buffer_level(self):
        for bitrates in LADDERS:
            for target in (12, 30, 60):
                state = steady_state(bitrates, target)
                last = 0
                level = 0.0
                while level <= 80:
                    q = quality_from_buffer_level(state, level)
                    self.assertGreaterEqual(q, last, f"ladder={bitrates} target={target} level={level}")
                    last = q
                    level += 0.25
                self.assertEqual(last, len(bitrates) - 1)

    def test_ties_favor_lower_index(self):
        state = DecisionState(state=State.STEADY, bitrates=[1.0, 2.0], utilities=[1.0, 2.0], gp=0.0, Vp=1.0)
        self.assertEqual(quality_from_buffer_level(state, 0.0), 0)

    def test_max_buffer_level(self):
        state = steady_state(LADDERS[0])
        self.assertAlmostEqual(max_buffer_level_for_quality(state, 0), state.Vp * (1 + state.gp))
        self.assertAlmostEqual(max_buffer_level_for_quality(state, 0), state.Vp + 10)

    def test_min_buffer_level(self):
        for bitrates in LADDERS:
            state = steady_state(bitrates)
            self.assertEqual(min_buffer_level_for_quality(state, 0), 0.0)
            for q in range(1, len(bitrates)):
                level = min_buffer_level_for_quality(state, q)
                self.assertGreaterEqual(quality_from_buffer_level(state, level + 1e-3), q)
                self.assertLess(quality_from_buffer_level(state, level - 1e-3), q)


class TestBufferOccupancyDecider(unittest.TestCase):

    def setUp(self):
        self.decider = BufferOccupancyDecider()
        self.state = steady_state([1000000, 2000000, 4000000], 20)

    def test_clamps_unsustainable_upswitch(self):
        self.state.last_quality = 0
        q = self.decider.choose_quality(self.state, 100, 3000000, 2500000, 0.0)
        self.assertEqual(q, 1)

    def test_clamp_falls_back_to_last_quality(self):
        # 安全吞吐量只够最低码率时，停留在上一次的码率
        self.state.last_quality = 0
        q = self.decider.choose_quality(self.state, 100, 1500000, 1200000, 0.0)
        self.assertEqual(q, 0)

    def test_never_below_last_quality_when_clamping(self):
        self.state.last_quality = 1
        q = self.decider.choose_quality(self.state, 100, 500000, 400000, 0.0)
        self.assertEqual(q, 1)

    def test_no_clamp_without_upswitch(self):
        self.state.last_quality = 2
        q = self.decider.choose_quality(self.state, 100, 500000, 400000, 0.0)
        self.assertEqual(q, 2)

    def test_placeholder_counts_as_buffer(self):
        self.state.last_quality = 2
        low = self.decider.choose_quality(self.state, 0, 9000000, 9000000, 0.0)
        self.state.placeholder_buffer = 100
        high = self.decider.choose_quality(self.state, 0, 9000000, 9000000, 0.0)
        self.assertEqual(low, 0)
        self.assertEqual(high, 2)


if __name__ == "__main__":
    unittest.main()
