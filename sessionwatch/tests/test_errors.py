import unittest

from sessionwatch.errors import ErrorTracker


class ErrorTrackerTests(unittest.TestCase):
    def test_errors_sort_before_warnings_then_newest_first(self) -> None:
        ticks = iter([1.0, 2.0, 3.0])
        tracker = ErrorTracker(clock=lambda: next(ticks))
        tracker.set_error("w1", "signals unreadable", "warning")
        tracker.set_error("e1", "projects unreadable")
        tracker.set_error("e2", "transcript failed")

        self.assertEqual([e.id for e in tracker.get_errors()], ["e2", "e1", "w1"])

    def test_clear_and_listeners(self) -> None:
        tracker = ErrorTracker(clock=lambda: 0.0)
        seen: list[int] = []
        remove = tracker.on_change(lambda errors: seen.append(len(errors)))

        tracker.set_error("e1", "boom")
        self.assertTrue(tracker.has_error("e1"))
        tracker.clear_error("e1")
        tracker.clear_error("e1")
        remove()
        tracker.set_error("e2", "again")

        self.assertEqual(seen, [1, 0])
        tracker.clear_all()
        self.assertEqual(tracker.get_errors(), [])
