"""Human-readable Markdown record of a conversation."""

from __future__ import annotations

from skill_bridge.orchestrator.models import ConversationState


def render_conversation_markdown(state: ConversationState) -> str:
    """Render id, chat, status, timestamps, loop depth, original message and history."""

    lines = [
        f"# Conversation: {state.conversation_id}",
        "",
        "## Details",
        "",
        f"- **Conversation ID**: {state.conversation_id}",
        f"- **Sender ID**: {state.sender_id}",
        f"- **Chat ID**: {state.chat_id}",
        f"- **Status**: {state.status.value}",
        f"- **Started at**: {state.started_at.isoformat()}",
        f"- **Last activity**: {state.last_activity_at.isoformat()}",
        f"- **Loop depth**: {state.loop_depth}",
    ]
    if state.last_phase:
        lines.append(f"- **Next phase**: {state.last_phase}")

    lines.extend(["", "## Original message", "", "```", state.message, "```", ""])
    lines.extend(["## Execution history", ""])
    if not state.history:
        lines.extend(["*No executions yet*", ""])
    for index, record in enumerate(state.history, start=1):
        lines.extend(
            [
                f"### Execution #{index}",
                "",
                f"- **Time**: {record.timestamp.isoformat()}",
                f"- **Command**: {record.command}",
                f"- **Success**: {'✅' if record.success else '❌'}",
                f"- **Exit code**: {record.exit_code}",
            ],
        )
        if record.next_phase:
            lines.append(f"- **Next phase**: {record.next_phase}")
        lines.extend(
            [
                f"- **Loop depth**: {record.loop_depth}",
                "",
                "**Output**:",
                "",
                "```",
                record.output.rstrip("\n"),
                "```",
                "",
            ],
        )
    return "\n".join(lines)
