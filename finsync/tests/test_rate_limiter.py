import unittest

from finsync.rate_limiter import MinIntervalRateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class MinIntervalRateLimiterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.limiter = MinIntervalRateLimiter(1.1, clock=self.clock, sleep=self.clock.sleep)

    def test_first_call_does_not_wait(self) -> None:
        self.assertEqual(self.limiter.wait(), 0.0)
        self.assertEqual(self.clock.sleeps, [])

    def test_back_to_back_calls_are_spaced(self) -> None:
        self.limiter.wait()
        self.clock.now += 0.3

        waited = self.limiter.wait()

        self.assertAlmostEqual(waited, 0.8)
        self.assertEqual(len(self.clock.sleeps), 1)

    def test_no_wait_after_interval_elapsed(self) -> None:
        self.limiter.wait()
        self.clock.now += 2.0

        self.assertEqual(self.limiter.wait(), 0.0)

    def test_negative_interval_rejected(self) -> None:
        with self.assertRaises(ValueError):
            MinIntervalRateLimiter(-1)


if __name__ == "__main__":
    unittest.main()
