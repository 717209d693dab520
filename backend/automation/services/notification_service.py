"""Notification Service - Webhook delivery of automation notifications"""
from typing import Any, Dict, List, Optional
import httpx

from ..domain.models import DispatchResult
from ..domain.interfaces import NotificationDispatcher
from ..config.settings import settings
from ..utils.logger import get_logger, get_correlation_id
from ..utils.time import format_iso, utc_now

logger = get_logger(__name__)


class WebhookNotificationDispatcher(NotificationDispatcher):
    """
    Post notifications to a webhook that fans out to email, SMS or chat
    
    Delivery is best effort: transport errors and non-2xx responses come
    back as an unsuccessful DispatchResult instead of raising.
    """
    
    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.webhook_url = webhook_url if webhook_url is not None else settings.notification_webhook_url
        self.timeout_seconds = timeout_seconds or settings.external_call_timeout_seconds
        self._transport = transport
    
    def send(self, channel: str, recipients: List[str], payload: Dict[str, Any]) -> DispatchResult:
        if not self.webhook_url:
            logger.warning(f"No notification webhook configured, dropping {channel} notification")
            return DispatchResult(success=False, error="Notification webhook not configured")
        
        body = {
            "channel": channel,
            "recipients": recipients,
            "payload": payload,
            "sent_at": format_iso(utc_now()),
        }
        headers = {"Content-Type": "application/json"}
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id
        
        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = client.post(self.webhook_url, json=body, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(
                f"Notification dispatch via {channel} failed: {e}",
                extra={"ticket_id": payload.get("ticket_id"), "error_type": type(e).__name__}
            )
            return DispatchResult(success=False, error=f"Dispatch failed: {e}")
        
        if response.status_code >= 300:
            logger.warning(
                f"Notification webhook returned {response.status_code}",
                extra={"ticket_id": payload.get("ticket_id")}
            )
            return DispatchResult(
                success=False,
                error=f"Webhook returned {response.status_code}: {response.text[:200]}"
            )
        
        message_id = None
        if response.headers.get("content-type", "").startswith("application/json"):
            data = response.json()
            if isinstance(data, dict):
                message_id = data.get("message_id")
        
        logger.info(
            f"Sent {channel} notification to {len(recipients)} recipient(s)",
            extra={"ticket_id": payload.get("ticket_id")}
        )
        return DispatchResult(success=True, message_id=message_id)
