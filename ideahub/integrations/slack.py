"""Slack incoming-webhook sender."""

from __future__ import annotations

from ideahub.integrations.gateway import GatewayResult, gateway

TEST_MESSAGE = "IdeaHub connection test - this is a test message."


def _blocks(message: str, context: dict) -> list[dict]:
    blocks = [{"type": "header", "text": {"type": "plain_text", "text": message[:150]}}]
    fields = []
    if context.get("title"):
        fields.append({"type": "mrkdwn", "text": f"*Title:*\n{context['title']}"})
    if context.get("status"):
        fields.append({"type": "mrkdwn", "text": f"*Status:*\n{context['status']}"})
    if context.get("actor_name"):
        fields.append({"type": "mrkdwn", "text": f"*By:*\n{context['actor_name']}"})
    if fields:
        blocks.append({"type": "section", "fields": fields})
    if context.get("notes"):
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": f"*Notes:*\n{context['notes']}"}})
    if context.get("url"):
        blocks.append({"type": "context", "elements": [
            {"type": "mrkdwn", "text": f"<{context['url']}|Open in IdeaHub>"},
        ]})
    return blocks


def send_notification(config: dict, message: str, context: dict | None = None) -> GatewayResult:
    context = context or {}
    payload = {"text": message, "blocks": _blocks(message, context)}
    if config.get("channel"):
        payload["channel"] = config["channel"]
    return gateway.post_json(config.get("webhook_url"), payload)
