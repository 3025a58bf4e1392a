import asyncio
import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from sessionwatch.models import HookSignal, MachineState, SignalKind, StatusResult
from sessionwatch.status.signals import (
    SessionSignals,
    SignalReconciler,
    SignalStore,
    parse_signal_filename,
    read_signal,
    reconcile,
)

WORKING_RESULT = StatusResult(status="working", machineState=MachineState.WORKING, messageCount=4)


def _signal(kind: SignalKind, session_id: str = "abc", **payload) -> HookSignal:
    return HookSignal(sessionId=session_id, kind=kind, payload=payload)


class SignalFileTests(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.dir = Path(tmpdir.name)

    def test_parse_signal_filename(self) -> None:
        self.assertEqual(parse_signal_filename("/x/abc-123.permission.json"), ("abc-123", SignalKind.PERMISSION))
        self.assertEqual(parse_signal_filename("a.b.stop.json"), ("a.b", SignalKind.STOP))
        self.assertIsNone(parse_signal_filename("abc.unknown.json"))
        self.assertIsNone(parse_signal_filename("abc.working.txt"))

    def test_read_signal_payload(self) -> None:
        path = self.dir / "abc.permission.json"
        path.write_text(json.dumps({"tool_name": "Bash", "tool_input": {"command": "ls"}}), encoding="utf-8")

        signal = read_signal(path)

        self.assertEqual(signal.sessionId, "abc")
        self.assertEqual(signal.kind, SignalKind.PERMISSION)
        request = signal.permission_request()
        self.assertEqual(request.tool_name, "Bash")
        self.assertEqual(request.tool_input, {"command": "ls"})

    def test_read_signal_swallows_races_and_garbage(self) -> None:
        self.assertIsNone(read_signal(self.dir / "gone.stop.json"))
        bad = self.dir / "abc.stop.json"
        bad.write_text("{half", encoding="utf-8")
        self.assertIsNone(read_signal(bad))


class SignalStoreTests(unittest.TestCase):
    def test_stop_retracts_working_and_permission(self) -> None:
        store = SignalStore()
        store.assert_signal(_signal(SignalKind.WORKING))
        store.assert_signal(_signal(SignalKind.PERMISSION, tool_name="Bash"))
        store.assert_signal(_signal(SignalKind.STOP))

        signals = store.get("abc")
        self.assertTrue(signals.stop)
        self.assertFalse(signals.working)
        self.assertIsNone(signals.permission)

    def test_working_retracts_stop(self) -> None:
        store = SignalStore()
        store.assert_signal(_signal(SignalKind.STOP))
        store.assert_signal(_signal(SignalKind.WORKING))
        signals = store.get("abc")
        self.assertTrue(signals.working)
        self.assertFalse(signals.stop)

    def test_ended_retracts_everything_else(self) -> None:
        store = SignalStore()
        for kind in (SignalKind.WORKING, SignalKind.PERMISSION, SignalKind.ENDED):
            store.assert_signal(_signal(kind))
        self.assertEqual(store.get("abc"), SessionSignals(ended=True))

    def test_retract_forgets_empty_sessions(self) -> None:
        store = SignalStore()
        store.assert_signal(_signal(SignalKind.WORKING, session_id="s1"))
        self.assertIsNotNone(store.retract("s1", SignalKind.WORKING))
        self.assertIsNone(store.retract("s1", SignalKind.WORKING))
        self.assertEqual(store.session_ids(), [])


class ReconcileTests(unittest.TestCase):
    def test_no_signals_keeps_log_status(self) -> None:
        self.assertEqual(reconcile(WORKING_RESULT, SessionSignals()), WORKING_RESULT)

    def test_permission_overrides_working_log_status(self) -> None:
        store = SignalStore()
        store.assert_signal(_signal(SignalKind.PERMISSION, tool_name="Edit"))
        result = reconcile(WORKING_RESULT, store.get("abc"))
        self.assertEqual(result.status, "waiting")
        self.assertTrue(result.hasPendingToolUse)
        self.assertEqual(result.messageCount, 4)

    def test_precedence_order(self) -> None:
        waiting = StatusResult(status="waiting", hasPendingToolUse=True)
        cases = [
            (SessionSignals(ended=True, working=True, stop=True), "idle", False),
            (SessionSignals(permission=_signal(SignalKind.PERMISSION).permission_request(), stop=True), "waiting", True),
            (SessionSignals(stop=True), "waiting", False),
            (SessionSignals(working=True), "working", False),
        ]
        for signals, status, pending in cases:
            result = reconcile(waiting, signals)
            self.assertEqual(result.status, status)
            self.assertEqual(result.hasPendingToolUse, pending)

    def test_working_and_stop_together_resolve_to_stop(self) -> None:
        # The producer is expected never to assert both; precedence decides if it does.
        result = reconcile(WORKING_RESULT, SessionSignals(working=True, stop=True))
        self.assertEqual(result.status, "waiting")
        self.assertFalse(result.hasPendingToolUse)


class SignalReconcilerTests(unittest.IsolatedAsyncioTestCase):
    async def test_consume_retracts_and_deletes_file(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        signals_dir = Path(tmpdir.name)
        path = signals_dir / "abc.permission.json"
        path.write_text('{"tool_name": "Bash"}', encoding="utf-8")

        reconciler = SignalReconciler(signals_dir)
        self.assertIsNotNone(await reconciler.load(path))
        self.assertTrue(reconciler.store.has("abc", SignalKind.PERMISSION))

        self.assertTrue(await reconciler.consume("abc", SignalKind.PERMISSION))
        self.assertFalse(path.exists())
        self.assertFalse(reconciler.store.has("abc", SignalKind.PERMISSION))
        self.assertFalse(await reconciler.consume("abc", SignalKind.PERMISSION))

    async def test_consume_tolerates_missing_file(self) -> None:
        reconciler = SignalReconciler(Path(tempfile.gettempdir()) / "sessionwatch-missing-signals")
        reconciler.store.assert_signal(_signal(SignalKind.STOP))
        self.assertTrue(await reconciler.consume("abc", SignalKind.STOP))

    def test_only_permission_removal_requires_replay(self) -> None:
        self.assertTrue(SignalReconciler.removal_requires_replay(SignalKind.PERMISSION))
        for kind in (SignalKind.WORKING, SignalKind.STOP, SignalKind.ENDED):
            self.assertFalse(SignalReconciler.removal_requires_replay(kind))

    async def test_load_reads_file_off_the_event_loop(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "abc.working.json"
        path.write_text("{}", encoding="utf-8")
        reconciler = SignalReconciler(Path(tmpdir.name))

        with patch("sessionwatch.status.signals.asyncio.to_thread", side_effect=asyncio.to_thread) as to_thread:
            signal = await reconciler.load(path)

        self.assertEqual(signal.kind, SignalKind.WORKING)
        to_thread.assert_called_once_with(read_signal, path)
        self.assertTrue(reconciler.store.has("abc", SignalKind.WORKING))
