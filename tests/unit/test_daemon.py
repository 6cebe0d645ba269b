import io
import itertools
import queue
import socketserver
import threading
import time
import unittest

from fakes import FakeNode, FakeSensor, FakeTransport, FakeTree, two_sensor_tree

from ohm_core.daemon import Daemon, StartupError
from ohm_core.forwarder import Forwarder, ForwarderError
from ohm_graphite import Endpoint


def _wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


class _GraphiteSink(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self):
        self.received = queue.Queue()
        super().__init__(("127.0.0.1", 0), _LineHandler)


class _LineHandler(socketserver.StreamRequestHandler):
    def handle(self):
        for raw in self.rfile:
            self.server.received.put(raw.decode("utf-8").rstrip("\n"))


def _forwarder(transport, **kwargs):
    kwargs.setdefault("backoff_base_s", 0.0)
    kwargs.setdefault("backoff_cap_s", 0.0)
    return Forwarder(Endpoint("graphite.test"), transport=transport, **kwargs)


class DaemonCycleTests(unittest.TestCase):
    def test_end_to_end_two_sensor_lines(self):
        sink = _GraphiteSink()
        server = threading.Thread(target=sink.serve_forever, daemon=True)
        server.start()
        try:
            host, port = sink.server_address
            daemon = Daemon(
                two_sensor_tree(),
                Forwarder(Endpoint(host, port)),
                clock=lambda: 1700000000,
            )
            daemon.tree.open()
            daemon.forwarder.connect()
            daemon.run_cycle()
            daemon.forwarder.close()

            lines = [sink.received.get(timeout=2.0) for _ in range(2)]
        finally:
            sink.shutdown()
            sink.server_close()

        self.assertEqual(lines, ["ohm.x.0.load.load 42.5 1700000000", "ohm.x.0.load.load 0.0 1700000000"])
        self.assertTrue(sink.received.empty())

    def test_one_timestamp_per_cycle(self):
        ticks = itertools.count(1700000000)
        sensors = [FakeSensor(f"/cpu/0/load/{i}", f"CPU Core #{i}", float(i)) for i in range(5)]
        t = FakeTransport()
        daemon = Daemon(FakeTree([FakeNode("/cpu/0", sensors)]), _forwarder(t), clock=lambda: next(ticks))
        daemon.forwarder.connect()

        first = daemon.run_cycle()
        second = daemon.run_cycle()
        self.assertEqual({line.timestamp for line in first}, {1700000000})
        self.assertEqual({line.timestamp for line in second}, {1700000001})
        self.assertEqual(len(t.writes), 10)

    def test_fractional_clock_is_truncated(self):
        daemon = Daemon(two_sensor_tree(), _forwarder(FakeTransport()), clock=lambda: 1700000000.9)
        self.assertEqual({line.timestamp for line in daemon.collect()}, {1700000000})

    def test_echo_writes_lines_and_time(self):
        out = io.StringIO()
        t = FakeTransport()
        daemon = Daemon(two_sensor_tree(), _forwarder(t), clock=lambda: 1700000000, echo=out)
        daemon.forwarder.connect()
        daemon.run_cycle()

        echoed = out.getvalue().splitlines()
        self.assertEqual(echoed[:2], ["ohm.x.0.load.load 42.5 1700000000", "ohm.x.0.load.load 0.0 1700000000"])
        self.assertEqual(len(echoed), 3)

    def test_custom_prefix(self):
        daemon = Daemon(two_sensor_tree(), _forwarder(FakeTransport()), prefix="lab", clock=lambda: 1)
        self.assertEqual(daemon.collect()[0].name, "lab.x.0.load.load")

    def test_failed_cycle_sends_nothing(self):
        bad = FakeSensor("/x/0/load/1", "Load", None)
        tree = FakeTree([FakeNode("/x/0", [FakeSensor("/x/0/load/0", "Load", 1.0)]), FakeNode("/y/0", [bad], fail_updates=1)])
        t = FakeTransport()
        daemon = Daemon(tree, _forwarder(t), clock=lambda: 1)
        daemon.forwarder.connect()
        with self.assertRaises(RuntimeError):
            daemon.run_cycle()
        self.assertEqual(t.writes, [])
        self.assertEqual(len(daemon.run_cycle()), 2)


class DaemonLifecycleTests(unittest.TestCase):
    def test_startup_fails_when_tree_cannot_open(self):
        tree = FakeTree(fail_open=True)
        t = FakeTransport()
        daemon = Daemon(tree, _forwarder(t), interval_s=0.01)
        with self.assertRaises(StartupError):
            daemon.start()
        self.assertEqual(t.opens, 0)
        self.assertFalse(daemon.scheduler.running)

    def test_startup_fails_when_collector_unreachable(self):
        tree = two_sensor_tree()
        t = FakeTransport(fail_opens=1)
        daemon = Daemon(tree, _forwarder(t), interval_s=0.01)
        with self.assertRaises(StartupError):
            daemon.run()
        self.assertEqual(tree.closes, 1)
        self.assertFalse(daemon.scheduler.running)
        self.assertEqual(daemon.scheduler.stats.cycles, 0)

    def test_cycle_error_isolated_from_later_cycles(self):
        node = FakeNode("/x/0", [FakeSensor("/x/0/load/0", "Load", 1.0)], fail_updates=1)
        tree = FakeTree([node])
        t = FakeTransport()
        daemon = Daemon(tree, _forwarder(t), interval_s=0.02, clock=lambda: 1)
        daemon.start()
        try:
            self.assertTrue(_wait_for(lambda: len(t.writes) >= 2))
        finally:
            daemon.stop()
            daemon.shutdown()
        self.assertGreaterEqual(daemon.scheduler.stats.failures, 1)
        self.assertEqual(t.lines()[0], "ohm.x.0.load.load 1.0 1\n")
        self.assertIsNone(daemon.fatal_error)

    def test_shutdown_releases_resources_once(self):
        tree = two_sensor_tree()
        t = FakeTransport()
        daemon = Daemon(tree, _forwarder(t), interval_s=0.01)
        daemon.start()
        self.assertTrue(_wait_for(lambda: t.flushes >= 1))

        workers = [threading.Thread(target=daemon.shutdown) for _ in range(4)]
        for w in workers:
            w.start()
        for w in workers:
            w.join(2.0)
        daemon.shutdown()

        self.assertEqual(tree.closes, 1)
        self.assertEqual(t.closes, 1)
        flushed = t.flushes
        time.sleep(0.05)
        self.assertEqual(t.flushes, flushed)

    def test_tree_outlives_slow_cycle_at_shutdown(self):
        entered = threading.Event()
        release = threading.Event()

        class _SlowNode(FakeNode):
            def update(self):
                entered.set()
                release.wait(5.0)

        tree = FakeTree([_SlowNode("/x/0", [FakeSensor("/x/0/load/0", "Load", 1.0)])])
        t = FakeTransport()
        daemon = Daemon(tree, _forwarder(t), interval_s=0.02)
        daemon.start()
        self.assertTrue(entered.wait(2.0))

        daemon.shutdown()
        self.assertEqual(tree.closes, 0)
        self.assertEqual(t.closes, 1)

        release.set()
        self.assertTrue(daemon.scheduler.join(2.0))
        self.assertEqual(tree.closes, 1)
        self.assertEqual(t.writes, [])

    def test_shutdown_wakes_backoff_before_waiting(self):
        tree = two_sensor_tree()
        t = FakeTransport()
        forwarder = _forwarder(t, reconnect_attempts=1, backoff_base_s=30.0, backoff_cap_s=30.0)
        daemon = Daemon(tree, forwarder, interval_s=0.02)
        t.fail_writes = 1
        daemon.start()
        self.assertTrue(_wait_for(lambda: forwarder.status.recovery_attempts == 1))

        started = time.monotonic()
        daemon.shutdown()
        self.assertLess(time.monotonic() - started, 2.0)
        self.assertTrue(_wait_for(lambda: not daemon.scheduler.in_cycle))
        self.assertEqual(tree.closes, 1)
        self.assertIsNone(daemon.fatal_error)

    def test_run_returns_after_stop(self):
        tree = two_sensor_tree()
        t = FakeTransport()
        daemon = Daemon(tree, _forwarder(t), interval_s=0.01)
        stopper = threading.Timer(0.1, daemon.stop)
        stopper.start()
        daemon.run()
        stopper.join()

        self.assertTrue(daemon.stop_requested)
        self.assertEqual(tree.closes, 1)
        self.assertEqual(t.closes, 1)
        self.assertFalse(daemon.scheduler.running)

    def test_run_raises_after_unrecoverable_write(self):
        tree = two_sensor_tree()
        t = FakeTransport()
        daemon = Daemon(tree, _forwarder(t, reconnect_attempts=0), interval_s=0.01)
        t.fail_writes = 10**6
        with self.assertRaises(ForwarderError):
            daemon.run()
        self.assertIsNotNone(daemon.fatal_error)
        self.assertEqual(tree.closes, 1)
        self.assertEqual(daemon.scheduler.stats.cycles, 1)


if __name__ == "__main__":
    unittest.main()
