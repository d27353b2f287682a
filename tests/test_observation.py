import unittest

import numpy as np

from knapsack_sim.observation import build_observation, observation_shape, observation_size
from knapsack_sim.utils import pad


class TestPad(unittest.TestCase):
    def test_pads_with_constant(self):
        out = pad(np.array([[1.0, 2.0]]), [(1, 2), (0, 0)])
        self.assertEqual(out.shape, (4, 2))
        np.testing.assert_array_equal(out[1], [1.0, 2.0])
        self.assertEqual(float(out[[0, 2, 3]].sum()), 0.0)

    def test_zero_padding_returns_input_unchanged(self):
        x = np.arange(6, dtype=np.float32).reshape(2, 3)
        out = pad(x, [(0, 0), (0, 0)])
        self.assertEqual(out.shape, x.shape)
        self.assertEqual(out.dtype, x.dtype)
        np.testing.assert_array_equal(out, x)

    def test_empty_input_becomes_fill(self):
        out = pad(np.zeros((0, 3)), [(0, 5), (0, 0)], constant_value=7.0)
        self.assertEqual(out.shape, (5, 3))
        self.assertTrue(np.all(out == 7.0))

    def test_rejects_bad_paddings(self):
        with self.assertRaises(ValueError):
            pad(np.zeros((2, 2)), [(0, 1)])
        with self.assertRaises(ValueError):
            pad(np.zeros((2,)), [(-1, 0)])


class TestObservation(unittest.TestCase):
    def setUp(self):
        self.costs = np.array([0.1, 0.2, 0.3, 0.4])
        self.values = np.array([1.0, 2.0, 3.0, 4.0])
        self.member = np.array([True, False, True, False])

    def test_shape_and_size(self):
        self.assertEqual(observation_shape(), (2, 2, 2))
        self.assertEqual(observation_shape(extended=True), (2, 2, 5))
        self.assertEqual(observation_size(), 8)

    def test_cursor_at_zero_leaves_left_side_empty(self):
        obs = build_observation(self.costs, self.values, self.member, 0)
        np.testing.assert_allclose(obs[0], np.zeros((2, 2)))
        np.testing.assert_allclose(obs[1, 0], [0.4, 4.0], rtol=1e-6)
        np.testing.assert_allclose(obs[1, 1], [0.6, 6.0], rtol=1e-6)

    def test_split_around_cursor(self):
        obs = build_observation(self.costs, self.values, self.member, 2)
        # left: items 0 (in), 1 (out); right: items 2 (in), 3 (out)
        np.testing.assert_allclose(obs[0, 0], [0.1, 1.0], rtol=1e-6)
        np.testing.assert_allclose(obs[0, 1], [0.2, 2.0], rtol=1e-6)
        np.testing.assert_allclose(obs[1, 0], [0.3, 3.0], rtol=1e-6)
        np.testing.assert_allclose(obs[1, 1], [0.4, 4.0], rtol=1e-6)

    def test_totals_are_preserved_for_any_cursor(self):
        for index in range(4):
            obs = build_observation(self.costs, self.values, self.member, index)
            np.testing.assert_allclose(obs.sum(axis=(0, 1)), [1.0, 10.0], rtol=1e-6)

    def test_extended_features(self):
        obs = build_observation(self.costs, self.values, np.zeros(4, dtype=bool), 0, extended=True)
        self.assertEqual(obs.shape, (2, 2, 5))
        # roi = value / cost / n = 10 / 4 for every item
        self.assertAlmostEqual(float(obs[1, 1, 2]), 4 * 2.5, places=5)
        self.assertLess(float(obs[1, 1, 3]), float(obs[1, 1, 2]))

    def test_extended_visits_are_share_of_total_visits(self):
        visits = np.array([3, 1, 0, 0])
        obs = build_observation(
            self.costs, self.values, np.zeros(4, dtype=bool), 2, extended=True, visit_counts=visits
        )
        # left side holds items 0 and 1, all out of the knapsack
        self.assertAlmostEqual(float(obs[0, 1, 4]), 1.0, places=6)
        self.assertAlmostEqual(float(obs[1, 1, 4]), 0.0, places=6)
        unvisited = build_observation(self.costs, self.values, np.zeros(4, dtype=bool), 2, extended=True)
        self.assertEqual(float(unvisited[..., 4].sum()), 0.0)

    def test_extended_rejects_zero_cost(self):
        with self.assertRaises(ZeroDivisionError):
            build_observation(np.array([0.0, 0.1]), np.array([1.0, 1.0]), np.zeros(2, dtype=bool), 0, extended=True)

    def test_rejects_out_of_range_cursor(self):
        with self.assertRaises(ValueError):
            build_observation(self.costs, self.values, self.member, 4)


if __name__ == "__main__":
    unittest.main()
