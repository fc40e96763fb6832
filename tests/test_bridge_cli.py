from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path

import allure
from click.testing import CliRunner
from conftest import echo_cli

from skill_bridge.main import skill_bridge
from skill_bridge.orchestrator.events import conversation_key
from skill_bridge.orchestrator.models import ConversationState, ConversationStatus
from skill_bridge.storage.common import utc_now
from skill_bridge.storage.repository import SqlConversationRepository

pytestmark = [
    allure.epic("Operations"),
    allure.feature("Bridge CLI"),
]


def test_classify_prints_signal_and_key_info_json() -> None:
    runner = CliRunner()

    result = runner.invoke(
        skill_bridge,
        ["classify"],
        input="Saved out/summary.pdf\nNEXT_PHASE: Deploy to staging\n",
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["signal"]["kind"] == "continue"
    assert payload["signal"]["next_phase"] == "Deploy to staging"
    assert payload["signal"]["confidence"] == 0.8
    assert payload["key_info"]["documents"] == ["out/summary.pdf"]


def test_classify_reads_file_argument(tmp_path: Path) -> None:
    output_file = tmp_path / "output.txt"
    output_file.write_text("All steps finished.\n", "utf-8")

    result = CliRunner().invoke(skill_bridge, ["classify", str(output_file)])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["signal"]["kind"] == "completed"


def test_probe_reports_version_for_available_tool() -> None:
    result = CliRunner().invoke(skill_bridge, ["probe", "--cli-path", echo_cli()])

    assert result.exit_code == 0, result.output
    assert "Available: yes" in result.output
    assert "Version: echo-agent 1.0" in result.output


def test_probe_fails_for_missing_tool(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        skill_bridge,
        ["probe", "--cli-path", str(tmp_path / "missing-skill")],
    )

    assert result.exit_code != 0
    assert "Available: no" in result.output


def test_serve_runs_stdin_messages_and_persists_state(monkeypatch, tmp_path: Path) -> None:
    db_path = tmp_path / "bridge.db"
    monkeypatch.setenv("SKILL_BRIDGE_YOLO_MODE", "false")
    monkeypatch.setenv("SKILL_BRIDGE_PROGRESS_ENABLED", "false")
    event_payload = {
        "sender": {"sender_id": {"user_id": "u-7"}},
        "message": {
            "chat_id": "oc_1",
            "msg_type": "text",
            "content": json.dumps({"text": "second request"}),
        },
    }

    result = CliRunner().invoke(
        skill_bridge,
        [
            "serve",
            "--cli-path",
            echo_cli("--reply", "Task completed"),
            "--db-path",
            str(db_path),
        ],
        input="first request\n\n" + json.dumps(event_payload) + "\n",
    )

    assert result.exit_code == 0, result.output
    assert "Serve summary: messages=2 completed=2" in result.output
    assert "✅ Execution succeeded" in result.output

    with SqlConversationRepository(db_path) as repository:
        states = repository.list_states(status=ConversationStatus.COMPLETED)
    assert {state.conversation_id for state in states} == {
        conversation_key("console", "local"),
        conversation_key("oc_1", "u-7"),
    }


def test_sessions_list_show_and_prune(tmp_path: Path) -> None:
    db_path = tmp_path / "bridge.db"
    stale_at = utc_now() - timedelta(hours=3)
    with SqlConversationRepository(db_path) as repository:
        repository.init_schema()
        repository.save_state(
            ConversationState(
                conversation_id="session_stale",
                chat_id="chat",
                message="old work",
                started_at=stale_at,
                last_summary_at=stale_at,
                last_activity_at=stale_at,
            ),
        )
        repository.save_state(ConversationState(conversation_id="session_fresh", chat_id="chat"))
    runner = CliRunner()

    listed = runner.invoke(skill_bridge, ["sessions", "list", "--db-path", str(db_path)])
    shown = runner.invoke(
        skill_bridge,
        ["sessions", "show", "session_stale", "--db-path", str(db_path)],
    )
    dry_run = runner.invoke(
        skill_bridge,
        [
            "sessions",
            "prune",
            "--db-path",
            str(db_path),
            "--older-than-seconds",
            "3600",
            "--dry-run",
        ],
    )
    pruned = runner.invoke(
        skill_bridge,
        ["sessions", "prune", "--db-path", str(db_path), "--older-than-seconds", "3600"],
    )
    after = runner.invoke(skill_bridge, ["sessions", "list", "--db-path", str(db_path)])

    assert listed.exit_code == 0, listed.output
    assert "Conversations: 2" in listed.output
    assert "# Conversation: session_stale" in shown.output
    assert "old work" in shown.output
    assert "Would delete 1 conversation(s)" in dry_run.output
    assert "Deleted 1 conversation(s)" in pruned.output
    assert "session_stale" not in after.output
    assert "session_fresh" in after.output


def test_sessions_show_missing_conversation_fails(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        skill_bridge,
        ["sessions", "show", "session_nope", "--db-path", str(tmp_path / "bridge.db")],
    )

    assert result.exit_code != 0
    assert "Conversation not found" in result.output
