import unittest

import numpy as np
import torch

from knapsack_rl.policy import KnapsackPolicy


class TestKnapsackPolicy(unittest.TestCase):
    def test_network_shapes(self):
        policy = KnapsackPolicy(hidden_layer_sizes=[16, 8], history_size=3, seed=0)
        self.assertEqual(policy.input_dim, 24)
        logits = policy.forward_logits(torch.randn(5, policy.input_dim))
        self.assertEqual(tuple(logits.shape), (5, policy.ACTION_DIM))
        probs = policy(torch.randn(5, policy.input_dim))
        self.assertTrue(torch.all((probs >= 0.0) & (probs <= 1.0)))

    def test_rejects_invalid_hidden_sizes(self):
        with self.assertRaises(ValueError):
            KnapsackPolicy(hidden_layer_sizes=[0])
        with self.assertRaises(ValueError):
            KnapsackPolicy(history_size=0)

    def test_stack_history_zero_fills_missing_slots(self):
        policy = KnapsackPolicy(history_size=3, seed=0)
        obs = np.ones((2, 2, 2), dtype=np.float32)
        x = policy.stack_history([obs])
        self.assertEqual(x.shape, (24,))
        self.assertEqual(float(x[:16].sum()), 0.0)
        self.assertEqual(float(x[16:].sum()), 8.0)

    def test_stack_history_keeps_most_recent(self):
        policy = KnapsackPolicy(history_size=2, seed=0)
        history = [np.full((2, 2, 2), float(i), dtype=np.float32) for i in range(4)]
        x = policy.stack_history(history)
        np.testing.assert_array_equal(x[:8], np.full(8, 2.0))
        np.testing.assert_array_equal(x[8:], np.full(8, 3.0))

    def test_sample_action_returns_signals_and_differentiable_log_prob(self):
        policy = KnapsackPolicy(seed=0)
        action, log_prob = policy.sample_action(np.zeros((2, 2, 2), dtype=np.float32))
        for signal in action:
            self.assertIn(signal, (-1.0, 1.0))
        self.assertEqual(log_prob.dim(), 0)
        self.assertLessEqual(float(log_prob.item()), 0.0)

        policy.zero_grad()
        (-log_prob).backward()
        for p in policy.parameters():
            self.assertIsNotNone(p.grad)
            self.assertTrue(torch.isfinite(p.grad).all().item())

    def test_greedy_action_follows_logit_sign(self):
        policy = KnapsackPolicy(hidden_layer_sizes=[4], seed=0)
        with torch.no_grad():
            for p in policy.parameters():
                p.zero_()
            policy.output.bias.copy_(torch.tensor([2.0, -3.0]))
        self.assertEqual(policy.get_actions(np.zeros((2, 2, 2))), (1.0, -1.0))
        probs = policy.action_probs(np.zeros((2, 2, 2)))
        self.assertGreater(probs[0], 0.5)
        self.assertLess(probs[1], 0.5)

    def test_from_state_dict_roundtrip(self):
        policy = KnapsackPolicy(hidden_layer_sizes=[8], history_size=2, extended_features=True, seed=1)
        clone = KnapsackPolicy.from_state_dict(policy.state_dict(), **policy.policy_config())
        x = torch.randn(3, policy.input_dim)
        self.assertTrue(torch.allclose(policy.forward_logits(x), clone.forward_logits(x)))


if __name__ == "__main__":
    unittest.main()
