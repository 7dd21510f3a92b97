"""
Generic signed webhook sender.

The body is the JSON envelope below; when the integration config carries a
``secret`` the request has an ``X-IdeaHub-Signature: sha256=<hex>`` header,
the HMAC-SHA256 of the raw body.

    {"message": "...", "event": "idea.approved", "data": {...context}}
"""

from __future__ import annotations

import hashlib
import hmac
import json

from ideahub.integrations.gateway import GatewayResult, gateway

SIGNATURE_HEADER = "X-IdeaHub-Signature"


def sign(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def send_notification(config: dict, message: str, context: dict | None = None) -> GatewayResult:
    context = context or {}
    envelope = {"message": message, "event": context.get("event_kind"), "data": context}
    body = json.dumps(envelope, sort_keys=True, default=str).encode("utf-8")
    headers = {}
    if config.get("secret"):
        headers[SIGNATURE_HEADER] = sign(config["secret"], body)
    return gateway.post_json(config.get("url") or config.get("webhook_url"), envelope,
                             headers=headers, body=body)
