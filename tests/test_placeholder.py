"""Unit tests for the placeholder buffer tracker."""

import random
import unittest

from istream_abr.models.abr_objects import State
from istream_abr.modules.abr import PlaceholderBufferTracker, StateMachine
from istream_abr.modules.abr.abr_bola import max_buffer_level_for_quality, min_buffer_level_for_quality


class TestPlaceholderBufferTracker(unittest.TestCase):

    def setUp(self):
        self.tracker = PlaceholderBufferTracker()
        self.state = StateMachine().initial_state([500000, 1000000, 2000000], 30)
        self.state.state = State.STEADY

    def test_decision_compensates_since_finish(self):
        self.state.last_segment_finish_time = 100.0
        self.state.last_call_time = 90.0
        self.tracker.on_decision(self.state, 103.0)
        self.assertAlmostEqual(self.state.placeholder_buffer, 3.0)
        self.assertEqual(self.state.last_call_time, 103.0)
        self.assertIsNone(self.state.last_segment_finish_time)
        self.assertIsNone(self.state.last_segment_request_time)
        self.assertIsNone(self.state.last_segment_start)

    def test_decision_compensates_since_last_call(self):
        self.state.last_call_time = 100.0
        self.tracker.on_decision(self.state, 102.5)
        self.assertAlmostEqual(self.state.placeholder_buffer, 2.5)

    def test_first_decision_adds_nothing(self):
        self.tracker.on_decision(self.state, 50.0)
        self.assertEqual(self.state.placeholder_buffer, 0.0)

    def test_clock_going_backwards_adds_nothing(self):
        self.state.placeholder_buffer = 1.0
        self.state.last_segment_finish_time = 100.0
        self.tracker.on_decision(self.state, 99.0)
        self.assertEqual(self.state.placeholder_buffer, 1.0)

    def test_segment_needs_both_notifications(self):
        self.state.placeholder_buffer = 5.0
        self.state.last_segment_start = 0.0
        self.assertFalse(self.tracker.on_segment_complete(self.state, 5.0))
        self.assertEqual(self.state.placeholder_buffer, 5.0)

    def test_segment_complete_decays(self):
        self.state.placeholder_buffer = 2.0
        self.state.last_segment_start = 0.0
        self.state.last_segment_request_time = 100.0
        self.assertTrue(self.tracker.on_segment_complete(self.state, 5.0))
        self.assertAlmostEqual(self.state.placeholder_buffer, 1.98)
        self.assertIsNone(self.state.last_segment_start)
        self.assertIsNone(self.state.last_segment_request_time)

    def test_segment_complete_caps_to_last_quality(self):
        self.state.last_quality = 0
        self.state.placeholder_buffer = 50.0
        self.state.last_segment_start = 0.0
        self.state.last_segment_request_time = 100.0
        self.state.last_segment_finish_time = 102.0
        self.tracker.on_segment_complete(self.state, 5.0)
        self.assertAlmostEqual(self.state.placeholder_buffer, max_buffer_level_for_quality(self.state, 0) - 7.0)

    def test_replacement_segment_adds_duration(self):
        self.state.last_segment_start = 0.0
        self.state.last_segment_request_time = 100.0
        self.state.last_segment_duration_s = 4.0
        self.state.last_segment_was_replacement = True
        self.tracker.on_segment_complete(self.state, 5.0)
        self.assertAlmostEqual(self.state.placeholder_buffer, 4.0)

    def test_pacing_consumes_placeholder_first(self):
        ceiling = max_buffer_level_for_quality(self.state, 0)
        self.state.placeholder_buffer = 6.0
        delay = self.tracker.apply_pacing(self.state, ceiling - 2.0, 0, 2)
        self.assertEqual(delay, 0.0)
        self.assertAlmostEqual(self.state.placeholder_buffer, 2.0)

    def test_pacing_delays_below_top_quality(self):
        ceiling = max_buffer_level_for_quality(self.state, 0)
        self.state.placeholder_buffer = 1.0
        delay = self.tracker.apply_pacing(self.state, ceiling + 3.0, 0, 2)
        self.assertAlmostEqual(delay, 3.0)
        self.assertEqual(self.state.placeholder_buffer, 0.0)

    def test_no_pacing_at_top_quality(self):
        ceiling = max_buffer_level_for_quality(self.state, 2)
        delay = self.tracker.apply_pacing(self.state, ceiling + 3.0, 2, 2)
        self.assertEqual(delay, 0.0)
        self.assertEqual(self.state.placeholder_buffer, 0.0)

    def test_abandon_shrinks_to_requested_quality(self):
        self.state.abr_quality = 1
        self.state.placeholder_buffer = 50.0
        buffer_level = min_buffer_level_for_quality(self.state, 1) - 5.0
        self.tracker.on_abandoned(self.state, buffer_level)
        self.assertAlmostEqual(self.state.placeholder_buffer, 5.0)

    def test_abandon_never_grows(self):
        self.state.abr_quality = 1
        self.state.placeholder_buffer = 2.0
        self.tracker.on_abandoned(self.state, 0.0)
        self.assertEqual(self.state.placeholder_buffer, 2.0)

    def test_abandon_without_requested_quality_uses_minimum_buffer(self):
        self.state.placeholder_buffer = 50.0
        self.tracker.on_abandoned(self.state, 4.0)
        self.assertAlmostEqual(self.state.placeholder_buffer, 6.0)

    def test_seed_startup(self):
        self.tracker.seed_startup(self.state, 3.0, 1)
        self.assertAlmostEqual(self.state.placeholder_buffer + 3.0, min_buffer_level_for_quality(self.state, 1))
        self.tracker.seed_startup(self.state, 100.0, 1)
        self.assertEqual(self.state.placeholder_buffer, 0.0)

    def test_rescale_keeps_anchor(self):
        self.state.placeholder_buffer = 7.0
        self.tracker.rescale(self.state, 3.0, self.state.Vp, self.state.Vp * 2)
        self.assertAlmostEqual(self.state.placeholder_buffer, 7.0)

    def test_rescale_scales_about_anchor(self):
        self.state.placeholder_buffer = 10.0
        self.tracker.rescale(self.state, 10.0, 4.0, 2.0)
        # (20 - 10) * 0.5 + 10 - 10
        self.assertAlmostEqual(self.state.placeholder_buffer, 5.0)

    def test_never_negative(self):
        rng = random.Random(11)
        now = 0.0
        for _ in range(500):
            op = rng.randrange(5)
            buffer_level = rng.uniform(0, 60)
            if op == 0:
                now += rng.uniform(-1, 5)
                self.tracker.on_decision(self.state, now)
            elif op == 1:
                self.state.last_segment_start = now
                self.state.last_segment_request_time = now - rng.uniform(0, 3)
                self.state.last_segment_finish_time = now
                self.state.last_quality = rng.randrange(3)
                self.tracker.on_segment_complete(self.state, buffer_level)
            elif op == 2:
                self.tracker.apply_pacing(self.state, buffer_level, rng.randrange(3), 2)
            elif op == 3:
                self.state.abr_quality = rng.randrange(3)
                self.tracker.on_abandoned(self.state, buffer_level)
            else:
                self.tracker.rescale(self.state, buffer_level, self.state.Vp, self.state.Vp * rng.uniform(0.2, 3))
            self.assertGreaterEqual(self.state.placeholder_buffer, 0.0)


if __name__ == "__main__":
    unittest.main()
