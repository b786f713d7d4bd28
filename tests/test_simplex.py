"""Unit tests for the probability-simplex projection."""

import unittest

import numpy as np

from istream_abr.modules.abr.simplex import project_onto_simplex


class TestSimplexProjection(unittest.TestCase):

    def assertOnSimplex(self, x):
        self.assertLess(abs(float(np.sum(x)) - 1), 1e-9)
        self.assertGreaterEqual(float(np.min(x)), -1e-9)

    def test_projects_assorted_vectors(self):
        """Sum is one and entries are non-negative for hand-picked inputs."""
        vectors = [
            [0.5, 0.5, 0.5],
            [-1.0, -2.0, 3.0],
            [10.0, -10.0, 0.0, 5.0],
            [0.0, 0.0, 0.0, 0.0],
            [-7.0, -7.0],
            [1000.0, 1001.0],
            [3.0],
        ]
        for y in vectors:
            with self.subTest(y=y):
                self.assertOnSimplex(project_onto_simplex(y))

    def test_projects_random_vectors(self):
        rng = np.random.default_rng(7)
        for _ in range(200):
            m = int(rng.integers(1, 12))
            y = rng.normal(scale=50.0, size=m)
            self.assertOnSimplex(project_onto_simplex(y))

    def test_known_values(self):
        np.testing.assert_allclose(project_onto_simplex([2.0, 0.0]), [1.0, 0.0])
        np.testing.assert_allclose(project_onto_simplex([1.0, 1.0]), [0.5, 0.5])
        np.testing.assert_allclose(project_onto_simplex([0.5, 0.5, 0.5]), [1 / 3, 1 / 3, 1 / 3])

    def test_idempotent_on_simplex_points(self):
        for x in ([0.2, 0.3, 0.5], [1.0, 0.0, 0.0], [0.25] * 4):
            with self.subTest(x=x):
                np.testing.assert_allclose(project_onto_simplex(x), x, atol=1e-12)

    def test_projection_is_nearest_point(self):
        """Moving along the simplex never gets closer to y than the projection."""
        y = np.array([0.9, 0.4, -0.2])
        x = project_onto_simplex(y)
        best = np.linalg.norm(x - y)
        rng = np.random.default_rng(3)
        for _ in range(100):
            candidate = rng.dirichlet(np.ones(3))
            self.assertGreaterEqual(np.linalg.norm(candidate - y) + 1e-12, best)

    def test_input_not_mutated(self):
        y = [3.0, 1.0, 2.0]
        project_onto_simplex(y)
        self.assertEqual(y, [3.0, 1.0, 2.0])

    def test_rejects_invalid_input(self):
        with self.assertRaises(ValueError):
            project_onto_simplex([])
        with self.assertRaises(ValueError):
            project_onto_simplex([1.0, float("nan")])
        with self.assertRaises(ValueError):
            project_onto_simplex([float("inf"), 0.0])


if __name__ == "__main__":
    unittest.main()
