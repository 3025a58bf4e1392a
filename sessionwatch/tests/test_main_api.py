import json
import tempfile
import types
import unittest
from pathlib import Path

from sessionwatch.context import WatcherContext, WatcherSettings
from sessionwatch.date_utils import iso_to_epoch
from sessionwatch.main import health, list_errors, list_sessions
from sessionwatch.models import GitInfo


async def _no_git(cwd: str) -> GitInfo:
    return GitInfo()


def _prompt(session_id: str, timestamp: str) -> str:
    return (
        json.dumps(
            {
                "type": "user",
                "sessionId": session_id,
                "timestamp": timestamp,
                "cwd": "/srv/app",
                "message": {"role": "user", "content": f"task {session_id}"},
            }
        )
        + "\n"
    )


class ApiTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        root = Path(tmpdir.name)
        project = root / "projects" / "-srv-app"
        project.mkdir(parents=True)
        (project / "older.jsonl").write_text(_prompt("older", "2026-02-16T10:00:00.000Z"), encoding="utf-8")
        (project / "newer.jsonl").write_text(_prompt("newer", "2026-02-16T10:00:05.000Z"), encoding="utf-8")

        settings = WatcherSettings(projects_dir=root / "projects", signals_dir=root / "signals")
        self.context = WatcherContext(
            settings,
            git_lookup=_no_git,
            clock=lambda: iso_to_epoch("2026-02-16T10:00:06.000Z"),
        )
        await self.context.initialize(log_events=False)
        self.addAsyncCleanup(self.context.teardown)
        self.request = types.SimpleNamespace(app=types.SimpleNamespace(state=types.SimpleNamespace(watcher_context=self.context)))

    async def test_health_reports_components(self) -> None:
        payload = health(self.request)

        self.assertEqual(payload["status"], "ok")
        self.assertEqual(payload["watcher"], "running")
        self.assertEqual(payload["sweeper"], "running")
        self.assertEqual(payload["sessions"], 2)

    async def test_sessions_sorted_by_activity_without_entries(self) -> None:
        payload = list_sessions(self.request)

        self.assertEqual([s["sessionId"] for s in payload], ["newer", "older"])
        self.assertNotIn("entries", payload[0])
        self.assertEqual(payload[0]["statusKey"], "working")
        self.assertEqual(payload[0]["status"]["status"], "working")

    async def test_errors_empty_when_healthy(self) -> None:
        self.assertEqual(list_errors(self.request), [])
        self.context.errors.set_error("projects-dir", "boom")
        self.assertEqual(list_errors(self.request)[0]["id"], "projects-dir")


class ContextLifecycleTests(unittest.IsolatedAsyncioTestCase):
    async def test_teardown_is_idempotent(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            settings = WatcherSettings(projects_dir=Path(tmp) / "missing", signals_dir=Path(tmp) / "signals")
            context = WatcherContext(settings, git_lookup=_no_git)
            await context.initialize()
            self.assertTrue(context.is_initialized)
            self.assertTrue(context.errors.has_error("projects-dir"))
            await context.teardown()
            await context.teardown()
            self.assertFalse(context.is_initialized)
