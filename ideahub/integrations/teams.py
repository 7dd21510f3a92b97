"""Microsoft Teams incoming-webhook sender (MessageCard format)."""

from __future__ import annotations

from ideahub.integrations.gateway import GatewayResult, gateway

THEME_COLORS = {
    "idea.submitted": "0076D7",
    "idea.approved": "2EB886",
    "idea.rejected": "D63333",
    "idea.implemented": "6F42C1",
}


def send_notification(config: dict, message: str, context: dict | None = None) -> GatewayResult:
    context = context or {}
    facts = [
        {"name": label, "value": str(context[key])}
        for key, label in (("title", "Title"), ("status", "Status"), ("actor_name", "By"), ("notes", "Notes"))
        if context.get(key)
    ]
    card = {
        "@type": "MessageCard",
        "@context": "https://schema.org/extensions",
        "summary": message,
        "themeColor": THEME_COLORS.get(context.get("event_kind"), "0076D7"),
        "title": message,
        "sections": [{"facts": facts}] if facts else [],
    }
    if context.get("url"):
        card["potentialAction"] = [{
            "@type": "OpenUri",
            "name": "Open in IdeaHub",
            "targets": [{"os": "default", "uri": context["url"]}],
        }]
    return gateway.post_json(config.get("webhook_url"), card)
