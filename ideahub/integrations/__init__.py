"""
Chat integration senders.

Every sender exposes ``send_notification(config, message, context) -> GatewayResult``
and is looked up by integration type.
"""

from ideahub.integrations import slack, teams, webhook
from ideahub.integrations.gateway import GatewayResult, WebhookGateway, gateway

INTEGRATION_SENDERS = {
    "slack": slack.send_notification,
    "teams": teams.send_notification,
    "webhook": webhook.send_notification,
}

__all__ = ["INTEGRATION_SENDERS", "GatewayResult", "WebhookGateway", "gateway"]
