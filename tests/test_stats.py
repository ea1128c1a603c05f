"""Tests for rate derivation, loss, jitter and the sample dataclasses."""

import math
import statistics
import unittest

from speedbuffy.constants import EPSILON_SECONDS, MB, UNKNOWN
from speedbuffy.stats import (
    ChunkStats,
    Outcome,
    SpeedSample,
    TransferAttempt,
    calculate_jitter,
    calculate_mean,
    floor_elapsed,
    format_latency,
    format_speed,
    loss_percent,
    transfer_rates,
)


class TestFloorElapsed(unittest.TestCase):
    def test_zero_becomes_epsilon(self):
        self.assertEqual(floor_elapsed(0), EPSILON_SECONDS)

    def test_negative_becomes_epsilon(self):
        self.assertEqual(floor_elapsed(-3.0), EPSILON_SECONDS)

    def test_nan_becomes_epsilon(self):
        self.assertEqual(floor_elapsed(float("nan")), EPSILON_SECONDS)

    def test_garbage_becomes_epsilon(self):
        self.assertEqual(floor_elapsed("abc"), EPSILON_SECONDS)

    def test_normal_value_kept(self):
        self.assertEqual(floor_elapsed(2.5), 2.5)


class TestTransferRates(unittest.TestCase):
    def test_one_megabyte_per_second(self):
        mbytes, mbits = transfer_rates(MB, 1.0)
        self.assertAlmostEqual(mbytes, 1.0)
        self.assertAlmostEqual(mbits, 8.0)

    def test_mbits_is_eight_times_mbytes(self):
        mbytes, mbits = transfer_rates(12_345_678, 3.7)
        self.assertAlmostEqual(mbits, mbytes * 8)

    def test_zero_elapsed_uses_epsilon(self):
        mbytes, _ = transfer_rates(MB, 0)
        self.assertAlmostEqual(mbytes, 1.0 / EPSILON_SECONDS)
        self.assertFalse(math.isinf(mbytes))

    def test_negative_bytes_clamped(self):
        self.assertEqual(transfer_rates(-100, 1.0), (0.0, 0.0))


class TestLossPercent(unittest.TestCase):
    def test_no_loss(self):
        self.assertEqual(loss_percent(10, 10), 0.0)

    def test_partial_loss(self):
        self.assertAlmostEqual(loss_percent(10, 7), 30.0)

    def test_total_loss(self):
        self.assertEqual(loss_percent(10, 0), 100.0)

    def test_nothing_sent_is_total_loss(self):
        self.assertEqual(loss_percent(0, 0), 100.0)

    def test_clamped_to_range(self):
        self.assertEqual(loss_percent(5, 9), 0.0)
        self.assertEqual(loss_percent(5, -1), 100.0)


class TestMeanAndJitter(unittest.TestCase):
    def test_mean(self):
        self.assertAlmostEqual(calculate_mean([10.0, 20.0, 30.0]), 20.0)

    def test_mean_empty(self):
        self.assertEqual(calculate_mean([]), 0.0)

    def test_jitter_is_population_stddev(self):
        # mean 5, squared deviations 9+1+1+9 = 20, /4 = 5
        self.assertAlmostEqual(calculate_jitter([2.0, 4.0, 6.0, 8.0]), math.sqrt(5))

    def test_jitter_constant_samples(self):
        self.assertEqual(calculate_jitter([7.0, 7.0, 7.0]), 0.0)

    def test_jitter_single_sample(self):
        self.assertEqual(calculate_jitter([42.0]), 0.0)

    def test_jitter_uneven_samples(self):
        samples = [12.1, 9.8, 30.4, 11.0, 10.7]
        self.assertAlmostEqual(calculate_jitter(samples), statistics.pstdev(samples))
        self.assertAlmostEqual(calculate_mean(samples), 14.8)


class TestSpeedSample(unittest.TestCase):
    def test_measure_derives_rates(self):
        s = SpeedSample.measure("http://x", 2 * MB, 2.0, Outcome.SUCCESS)
        self.assertAlmostEqual(s.mbytes_per_sec, 1.0)
        self.assertAlmostEqual(s.mbits_per_sec, 8.0)
        self.assertTrue(s.usable)

    def test_measure_floors_seconds(self):
        s = SpeedSample.measure("http://x", 100, 0.0, Outcome.SUCCESS)
        self.assertEqual(s.seconds, EPSILON_SECONDS)

    def test_failed_sample(self):
        s = SpeedSample.failed(None, "unreachable")
        self.assertEqual(s.server, UNKNOWN)
        self.assertEqual(s.bytes_total, 0)
        self.assertEqual(s.mbytes_per_sec, 0.0)
        self.assertIs(s.outcome, Outcome.FAILED)
        self.assertFalse(s.usable)

    def test_partial_with_bytes_is_usable(self):
        s = SpeedSample.measure("http://x", 10, 1.0, Outcome.PARTIAL_FAILURE, "time cap reached")
        self.assertTrue(s.usable)

    def test_to_dict(self):
        d = SpeedSample.measure("http://x", MB, 1.0, Outcome.SUCCESS).to_dict()
        self.assertEqual(d["server"], "http://x")
        self.assertEqual(d["outcome"], "success")
        self.assertEqual(d["Mbps"], 8.0)


class TestTransferAttempt(unittest.TestCase):
    def test_accumulates_chunks(self):
        attempt = TransferAttempt(server="http://x", strategy="ranged")
        attempt.record(ChunkStats(index=0, bytes_transferred=MB, seconds=0.5))
        attempt.record(ChunkStats(index=1, bytes_transferred=MB, seconds=1.5))
        self.assertEqual(attempt.bytes_total, 2 * MB)
        self.assertAlmostEqual(attempt.seconds, 2.0)

    def test_finish_produces_sample(self):
        attempt = TransferAttempt(server="http://x", strategy="ranged")
        attempt.record(ChunkStats(index=0, bytes_transferred=MB, seconds=1.0))
        sample = attempt.finish(Outcome.PARTIAL_FAILURE, "time cap reached")
        self.assertIs(attempt.status, Outcome.PARTIAL_FAILURE)
        self.assertEqual(sample.reason, "time cap reached")
        self.assertAlmostEqual(sample.mbytes_per_sec, 1.0)


class TestFormatting(unittest.TestCase):
    def test_format_speed(self):
        self.assertEqual(format_speed(5.0), "5.00 MB/s (40.00 Mb/s)")

    def test_format_latency_ms(self):
        self.assertEqual(format_latency(12.5), "12.50 ms")

    def test_format_latency_seconds(self):
        self.assertEqual(format_latency(1500), "1.50 s")


if __name__ == "__main__":
    unittest.main()
