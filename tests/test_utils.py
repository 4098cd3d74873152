"""Tests for internal utilities."""

import unittest
from unittest.mock import patch

from kcloud._utils import sleep_with_jitter


class TestSleepWithJitter(unittest.TestCase):
    """Tests for sleep_with_jitter()."""

    @patch("kcloud._utils.time.sleep")
    def test_no_jitter_sleeps_exact_duration(self, mock_sleep):
        sleep_with_jitter(0.5, jitter_factor=0.0)
        mock_sleep.assert_called_once_with(0.5)

    @patch("kcloud._utils.random.uniform", return_value=0.1)
    @patch("kcloud._utils.time.sleep")
    def test_jitter_is_applied(self, mock_sleep, mock_uniform):
        sleep_with_jitter(10.0, jitter_factor=0.1)
        mock_uniform.assert_called_once_with(-0.1, 0.1)
        self.assertAlmostEqual(mock_sleep.call_args.args[0], 11.0)

    @patch("kcloud._utils.time.sleep")
    def test_jitter_stays_within_bounds(self, mock_sleep):
        for _ in range(50):
            sleep_with_jitter(2.0, jitter_factor=0.2)
        for c in mock_sleep.call_args_list:
            self.assertGreaterEqual(c.args[0], 1.6)
            self.assertLessEqual(c.args[0], 2.4)

    @patch("kcloud._utils.time.sleep")
    def test_zero_duration(self, mock_sleep):
        sleep_with_jitter(0.0)
        mock_sleep.assert_called_once_with(0.0)


if __name__ == "__main__":
    unittest.main()
