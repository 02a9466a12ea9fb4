"""
Tests for the Post-Promotion Notifier.
"""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from forksync.config.settings import SyncSettings
from forksync.git.runner import CommandResult
from forksync.models.session import BackupTag, SyncSession
from forksync.pipeline.notifier import PostPromotionNotifier, find_marker

from conftest import FakeRunner


def _promoted_session():
    session = SyncSession(mode="auto", new_commit_count=3, test_result="passed", promoted=True)
    session.record_backup(BackupTag(
        name="backup/production-20260203-120000",
        created_at="",
        source_role="production",
        source_commit="c" * 40,
    ))
    return session


def _notifier(tmp_path, runner=None, **settings):
    refs = MagicMock()
    refs.root = tmp_path
    refs.subjects.return_value = ["feat: add thing", "fix: crash"]
    settings.setdefault("health_interval", 0.0)
    notifier = PostPromotionNotifier(
        runner or FakeRunner(),
        refs,
        SyncSettings(**settings),
        sleep=lambda seconds: None,
    )
    return notifier, refs


class TestFindMarker:
    """Tests for find_marker."""

    def test_found(self, tmp_path):
        (tmp_path / "dist" / "js").mkdir(parents=True)
        (tmp_path / "dist" / "js" / "app.js").write_text("const apiId = 1;")

        assert find_marker(tmp_path / "dist", "apiId") == tmp_path / "dist" / "js" / "app.js"

    def test_not_found(self, tmp_path):
        (tmp_path / "dist").mkdir()
        (tmp_path / "dist" / "app.js").write_text("nothing")

        assert find_marker(tmp_path / "dist", "apiId") is None

    def test_missing_dir(self, tmp_path):
        assert find_marker(tmp_path / "dist", "apiId") is None


class TestBuild:
    """Tests for rebuild and marker verification."""

    def test_discover_build(self, tmp_path):
        notifier, _ = _notifier(tmp_path)
        assert notifier.discover_build() is None

        (tmp_path / "package.json").write_text(json.dumps({"scripts": {"build": "tsc"}}))
        assert notifier.discover_build() == "npm run build"

        (tmp_path / "pnpm-lock.yaml").write_text("")
        assert notifier.discover_build() == "pnpm build"

    def test_build_and_marker(self, tmp_path):
        (tmp_path / "dist").mkdir()
        (tmp_path / "dist" / "out.js").write_text("apiId")
        runner = FakeRunner()
        notifier, _ = _notifier(tmp_path, runner, install_command="pnpm install", build_command="pnpm build", custom_marker="apiId")
        session = _promoted_session()

        notifier.build(session)

        assert runner.commands() == ["sh -c pnpm install", "sh -c pnpm build"]
        assert session.build_ok is True
        assert session.marker_ok is True
        assert notifier.warnings == []

    def test_build_failure_warns(self, tmp_path):
        runner = FakeRunner({"build": CommandResult(["sh"], 2)})
        notifier, _ = _notifier(tmp_path, runner, build_command="pnpm build", custom_marker="apiId")
        session = _promoted_session()

        notifier.build(session)

        assert session.build_ok is False
        assert session.marker_ok is None
        assert len(notifier.warnings) == 1
        assert notifier.warnings[0].stage == "notify"

    def test_missing_marker_warns(self, tmp_path):
        notifier, _ = _notifier(tmp_path, build_command="pnpm build", custom_marker="apiId")
        session = _promoted_session()

        notifier.build(session)

        assert session.marker_ok is False
        assert "apiId" in notifier.warnings[0].message


class TestRestart:
    """Tests for service restart and health polling."""

    def test_no_restart_configured(self, tmp_path):
        runner = FakeRunner()
        notifier, _ = _notifier(tmp_path, runner)
        session = _promoted_session()

        notifier.restart(session)

        assert runner.calls == []
        assert session.service_restarted is False

    def test_service_not_running(self, tmp_path):
        runner = FakeRunner({"pgrep": CommandResult(["sh"], 1)})
        notifier, _ = _notifier(
            tmp_path, runner,
            service_detect_command="pgrep -f gateway-{profile}",
            service_restart_command="systemctl restart gw-{profile}",
            profile="prod",
        )
        session = _promoted_session()

        notifier.restart(session)

        assert runner.commands() == ["sh -c pgrep -f gateway-prod"]
        assert session.service_restarted is False

    def test_restart_and_http_health(self, tmp_path):
        runner = FakeRunner()
        notifier, _ = _notifier(
            tmp_path, runner,
            service_restart_command="systemctl restart gw",
            health_url="http://127.0.0.1:18789/health",
            health_attempts=3,
        )
        session = _promoted_session()
        responses = [MagicMock(status_code=503), MagicMock(status_code=200)]

        with patch("forksync.pipeline.notifier.requests.get", side_effect=responses) as get:
            notifier.restart(session)

        assert session.service_restarted is True
        assert session.service_healthy is True
        assert get.call_count == 2

    def test_unhealthy_after_attempts(self, tmp_path):
        runner = FakeRunner({"curl": CommandResult(["sh"], 7)})
        notifier, _ = _notifier(
            tmp_path, runner,
            service_restart_command="restart-it",
            health_command="curl -sf localhost/health",
            health_attempts=2,
        )
        session = _promoted_session()

        notifier.restart(session)

        assert session.service_restarted is True
        assert session.service_healthy is False
        assert runner.commands().count("sh -c curl -sf localhost/health") == 2

    def test_restart_failure(self, tmp_path):
        runner = FakeRunner({"restart-it": CommandResult(["sh"], 1, stderr="unit not found")})
        notifier, _ = _notifier(tmp_path, runner, service_restart_command="restart-it")
        session = _promoted_session()

        notifier.restart(session)

        assert session.service_restarted is False
        assert session.service_healthy is False


class TestNotify:
    """Tests for the notification."""

    def test_message(self, tmp_path):
        notifier, refs = _notifier(tmp_path)

        message = notifier.build_message(_promoted_session())

        assert "3 new upstream commit(s)" in message
        assert "Tests: passed" in message
        assert "- feat: add thing" in message
        assert refs.subjects.call_args.kwargs["grep"] == "feat|fix|breaking"

    def test_webhook(self, tmp_path):
        notifier, _ = _notifier(tmp_path, notify_url="https://hooks.example/x", notify_target="@ops")
        session = _promoted_session()

        with patch("forksync.pipeline.notifier.httpx.post") as post:
            post.return_value = MagicMock(status_code=204)
            notifier.notify(session)

        assert session.notified is True
        args, kwargs = post.call_args
        assert args[0] == "https://hooks.example/x"
        assert kwargs["json"]["channel"] == "telegram"
        assert kwargs["json"]["session"]["promoted"] is True

    def test_webhook_error_not_fatal(self, tmp_path):
        notifier, _ = _notifier(tmp_path, notify_url="https://hooks.example/x")
        session = _promoted_session()

        with patch("forksync.pipeline.notifier.httpx.post", side_effect=httpx.ConnectError("down")):
            notifier.notify(session)

        assert session.notified is False

    def test_webhook_bad_status(self, tmp_path):
        notifier, _ = _notifier(tmp_path, notify_url="https://hooks.example/x")
        session = _promoted_session()

        with patch("forksync.pipeline.notifier.httpx.post", return_value=MagicMock(status_code=500)):
            notifier.notify(session)

        assert session.notified is False

    def test_command(self, tmp_path):
        runner = FakeRunner()
        notifier, _ = _notifier(
            tmp_path, runner,
            notify_command="notify --channel {channel} --to {target} --msg '{message}'",
            notify_target="12345",
        )
        session = _promoted_session()

        notifier.notify(session)

        assert session.notified is True
        command = runner.calls[0][2]
        assert command.startswith("notify --channel telegram --to 12345 --msg '")

    def test_nothing_configured(self, tmp_path):
        runner = FakeRunner()
        notifier, _ = _notifier(tmp_path, runner, notify_target="12345")
        session = _promoted_session()

        notifier.notify(session)

        assert runner.calls == []
        assert session.notified is False


class TestRun:
    """Tests for the whole post-promotion step."""

    def test_not_promoted_does_nothing(self, tmp_path):
        runner = FakeRunner()
        notifier, _ = _notifier(tmp_path, runner, build_command="make", service_restart_command="restart")

        assert notifier.run(SyncSession(promoted=False)) == []
        assert runner.calls == []

    @pytest.mark.parametrize("marker_present", [True, False])
    def test_warnings_returned(self, tmp_path, marker_present):
        (tmp_path / "dist").mkdir()
        (tmp_path / "dist" / "out.js").write_text("apiId" if marker_present else "")
        notifier, _ = _notifier(tmp_path, build_command="make", custom_marker="apiId")

        warnings = notifier.run(_promoted_session())

        assert len(warnings) == (0 if marker_present else 1)
