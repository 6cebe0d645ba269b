import sys
import threading
import time
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "core"))

from ohm_core.scheduler import Scheduler


def _wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


class SchedulerTests(unittest.TestCase):
    def test_fires_repeatedly(self):
        calls = []
        s = Scheduler(lambda: calls.append(time.monotonic()), interval_s=0.02)
        s.start()
        try:
            self.assertTrue(_wait_for(lambda: len(calls) >= 3))
        finally:
            s.stop()
            s.join(1.0)
        self.assertGreaterEqual(s.stats.cycles, 3)

    def test_no_cycle_after_stop(self):
        calls = []
        s = Scheduler(lambda: calls.append(1), interval_s=0.01)
        s.start()
        self.assertTrue(_wait_for(lambda: len(calls) >= 2))
        s.stop()
        self.assertTrue(s.join(1.0))
        seen = len(calls)
        time.sleep(0.05)
        self.assertEqual(len(calls), seen)
        self.assertFalse(s.running)

    def test_stop_is_idempotent(self):
        s = Scheduler(lambda: None, interval_s=10.0)
        s.start()
        s.stop()
        s.stop()
        self.assertTrue(s.join(1.0))

    def test_errors_do_not_stop_future_cycles(self):
        def _boom():
            raise RuntimeError("sensor read failed")

        s = Scheduler(_boom, interval_s=0.01)
        s.start()
        try:
            self.assertTrue(_wait_for(lambda: s.stats.failures >= 3))
        finally:
            s.stop()
            s.join(1.0)
        self.assertEqual(s.stats.failures, s.stats.cycles)

    def test_stop_from_inside_cycle(self):
        calls = []
        holder = {}

        def _cb():
            calls.append(1)
            holder["s"].stop()

        s = Scheduler(_cb, interval_s=0.01)
        holder["s"] = s
        s.start()
        self.assertTrue(_wait_for(lambda: calls))
        self.assertTrue(s.join(1.0))
        self.assertEqual(len(calls), 1)

    def test_stop_does_not_wait_for_in_flight_cycle(self):
        entered = threading.Event()
        release = threading.Event()

        def _slow():
            entered.set()
            release.wait(2.0)

        s = Scheduler(_slow, interval_s=0.01)
        s.start()
        self.assertTrue(entered.wait(1.0))
        started = time.monotonic()
        s.stop()
        self.assertLess(time.monotonic() - started, 0.5)
        self.assertTrue(s.in_cycle)
        release.set()
        self.assertTrue(s.join(1.0))
        self.assertEqual(s.stats.cycles, 1)

    def test_overrun_skips_missed_ticks(self):
        def _slow():
            time.sleep(0.12)

        s = Scheduler(_slow, interval_s=0.05)
        s.start()
        try:
            self.assertTrue(_wait_for(lambda: s.stats.skipped >= 1))
        finally:
            s.stop()
            s.join(1.0)
        self.assertLessEqual(s.stats.cycles, 2)

    def test_lifecycle_errors(self):
        with self.assertRaises(ValueError):
            Scheduler(lambda: None, interval_s=0)
        s = Scheduler(lambda: None, interval_s=10.0)
        s.start()
        with self.assertRaises(RuntimeError):
            s.start()
        s.stop()
        s.join(1.0)
        with self.assertRaises(RuntimeError):
            s.start()

    def test_instances_are_independent(self):
        a_calls, b_calls = [], []
        a = Scheduler(lambda: a_calls.append(1), interval_s=0.01)
        b = Scheduler(lambda: b_calls.append(1), interval_s=0.01)
        a.start()
        b.start()
        a.stop()
        a.join(1.0)
        try:
            self.assertTrue(_wait_for(lambda: len(b_calls) >= 2))
        finally:
            b.stop()
            b.join(1.0)
        self.assertTrue(b_calls)


if __name__ == "__main__":
    unittest.main()
