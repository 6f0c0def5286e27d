"""Export threads to Markdown and JSON formats."""

import json

from .core import Message, ThreadContext
from .messages import extract_text

ROLE_LABELS = {"user": "User", "agent": "Agent", "tool": "Tool"}


def _timestamp(msg: Message) -> str | None:
    return msg.created_at.isoformat() if msg.created_at else None


def thread_to_markdown(ctx: ThreadContext, title: str, messages: list[Message]) -> str:
    """Export a thread and its messages as clean Markdown."""
    lines = [f"# {title}", ""]

    if ctx.persistent_id:
        lines.append(f"**Thread:** {ctx.persistent_id}")
    if ctx.execution_id:
        lines.append(f"**Execution:** {ctx.execution_id}")
    if ctx.read_only:
        lines.append("**Read-only:** yes")
    lines.append(f"**Messages:** {len(messages)}")
    lines.extend(["", "---", ""])

    for msg in messages:
        role_label = ROLE_LABELS.get(msg.role, msg.role.capitalize())
        ts = ""
        if msg.created_at:
            ts = f" ({msg.created_at.strftime('%Y-%m-%d %H:%M')})"
        lines.append(f"## {role_label}{ts}")
        lines.append("")
        if msg.tool_call_id:
            lines.append(f"_Result of tool call `{msg.tool_call_id}`_")
            lines.append("")
        lines.append(extract_text(msg.content))
        lines.extend(["", "---", ""])

    return "\n".join(lines)


def thread_to_json(ctx: ThreadContext, title: str, messages: list[Message]) -> str:
    """Export a thread and its messages as structured JSON."""
    data = {
        "thread": {
            "title": title,
            "execution_id": ctx.execution_id,
            "persistent_id": ctx.persistent_id,
            "read_only": ctx.read_only,
            "message_count": len(messages),
        },
        "messages": [
            {
                "id": msg.id,
                "role": msg.role,
                "content": extract_text(msg.content),
                "tool_call_id": msg.tool_call_id,
                "created_at": _timestamp(msg),
                "metadata": msg.metadata,
            }
            for msg in messages
        ],
    }
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)
