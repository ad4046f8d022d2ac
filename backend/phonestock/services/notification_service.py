# Overview: Notification collaborator; posts assignment messages to the Telegram Bot API.

"""
Notification Service

FIRE-AND-FORGET: Notifications are sent after the assignment transaction has
committed. A failed or disabled notifier is logged and never undoes or fails
the assignment.
"""

from __future__ import annotations

import httpx
from flask import current_app


def is_enabled() -> bool:
    cfg = current_app.config
    return bool(cfg.get("TELEGRAM_BOT_TOKEN") and cfg.get("TELEGRAM_CHAT_ID"))


def _money(cents: int) -> str:
    return f"{(cents or 0) / 100:,.2f}"


def format_assignment_message(assignment) -> str:
    agent = assignment.agent
    lines = [
        "*New DSR Assignment*",
        "",
        f"*Assignment #:* {assignment.assignment_number}",
        f"*DSR:* {agent.full_name if agent else assignment.agent_id}",
    ]
    if agent and agent.phone:
        lines.append(f"*Phone:* {agent.phone}")
    lines.extend([
        f"*Date:* {assignment.assignment_date.strftime('%B %d, %Y')}",
        f"*Units:* {assignment.total_units}",
        f"*Total value:* {_money(assignment.total_value_cents)}",
        f"*Target revenue:* {_money(assignment.total_target_cents)}",
        "",
        "*Phones:*",
    ])
    for index, line in enumerate(assignment.lines, start=1):
        lines.append(f"{index}. `{line.imei}` target {_money(line.target_price_cents)}")
    if assignment.notes:
        lines.extend(["", f"*Notes:* {assignment.notes}"])
    return "\n".join(lines)


def send_message(text: str) -> bool:
    cfg = current_app.config
    url = f"{cfg['TELEGRAM_API_BASE'].rstrip('/')}/bot{cfg['TELEGRAM_BOT_TOKEN']}/sendMessage"
    with httpx.Client(timeout=cfg["NOTIFICATION_TIMEOUT_SECONDS"]) as client:
        response = client.post(
            url,
            json={"chat_id": cfg["TELEGRAM_CHAT_ID"], "text": text, "parse_mode": "Markdown"},
        )
        response.raise_for_status()
    return True


def send_assignment_notification(assignment) -> bool:
    """Returns True if delivered. Never raises."""
    if not is_enabled():
        current_app.logger.info(
            "Notifier not configured, skipping notification for %s", assignment.assignment_number
        )
        return False

    try:
        send_message(format_assignment_message(assignment))
    except httpx.HTTPError as exc:
        current_app.logger.warning(
            "Failed to send notification for assignment %s: %s", assignment.assignment_number, exc
        )
        return False
    except Exception:
        # Fire-and-forget: the assignment is already committed
        current_app.logger.exception(
            "Unexpected notifier failure for assignment %s", assignment.assignment_number
        )
        return False

    current_app.logger.info("Notification sent for assignment %s", assignment.assignment_number)
    return True
