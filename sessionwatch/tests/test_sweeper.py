import json
import tempfile
import unittest
from pathlib import Path

from sessionwatch.date_utils import iso_to_epoch
from sessionwatch.events import LifecycleChannel
from sessionwatch.models import GitInfo, MachineState
from sessionwatch.status.signals import SignalReconciler
from sessionwatch.watcher.registry import SessionRegistry
from sessionwatch.watcher.sweeper import StaleSweeper

T0 = "2026-02-16T10:00:00.000Z"


async def _no_git(cwd: str) -> GitInfo:
    return GitInfo()


class StaleSweeperTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        root = Path(tmpdir.name)
        project = root / "projects" / "-srv-app"
        project.mkdir(parents=True)
        self.path = project / "s1.jsonl"
        self.path.write_text(
            json.dumps(
                {
                    "type": "user",
                    "sessionId": "s1",
                    "timestamp": T0,
                    "cwd": "/srv/app",
                    "message": {"role": "user", "content": "Refactor"},
                }
            )
            + "\n",
            encoding="utf-8",
        )
        self.now = [iso_to_epoch(T0) + 1]
        self.channel = LifecycleChannel()
        self.registry = SessionRegistry(
            self.channel,
            SignalReconciler(root / "signals"),
            _no_git,
            projects_dir=root / "projects",
            stale_timeout=15.0,
            clock=lambda: self.now[0],
        )
        await self.registry.handle_file(self.path)
        self.subscription = self.channel.subscribe("test")

    async def test_quiet_working_session_falls_back_to_waiting(self) -> None:
        sweeper = StaleSweeper(self.registry, interval=10)

        self.assertEqual(await sweeper.sweep_once(), [])

        self.now[0] = iso_to_epoch(T0) + 20
        self.assertEqual(await sweeper.sweep_once(), ["s1"])

        event = await self.subscription.get()
        self.assertEqual(event.type, "updated")
        self.assertEqual(event.session.status.status, "waiting")
        self.assertEqual(event.session.status.machineState, MachineState.WAITING_FOR_INPUT)
        self.assertEqual(await sweeper.sweep_once(), [])

    async def test_start_and_stop(self) -> None:
        sweeper = StaleSweeper(self.registry, interval=60)
        sweeper.start()
        self.assertTrue(sweeper.is_running)
        await sweeper.stop()
        self.assertFalse(sweeper.is_running)
