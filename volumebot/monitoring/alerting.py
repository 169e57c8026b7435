"""
Webhook alerting for run lifecycle events.

- Send alerts to webhooks (Slack, Discord, generic HTTP)
- Rate limiting per alert type to prevent alert storms
- Delivery failures are logged and never interrupt trading
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger("volumebot")


class AlertSeverity(Enum):
    """Alert severity levels."""
    CRITICAL = auto()  # Immediate attention required
    WARNING = auto()   # Potential issue
    INFO = auto()      # Informational


class AlertType(Enum):
    RUN_STARTED = auto()
    RUN_COMPLETED = auto()
    RUN_PAUSED = auto()
    RUN_FAILED = auto()
    GATHER_DONE = auto()


@dataclass
class Alert:
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))
    details: Dict[str, Any] = field(default_factory=dict)
    token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.alert_type.name,
            "severity": self.severity.name,
            "title": self.title,
            "message": self.message,
            "timestamp_ms": self.timestamp_ms,
            "timestamp_iso": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.timestamp_ms / 1000)),
            "details": self.details,
            "token": self.token,
        }


@dataclass
class AlertConfig:
    webhook_url: Optional[str] = None
    webhook_type: str = "generic"  # generic, slack, discord
    min_severity: AlertSeverity = AlertSeverity.INFO
    rate_limit_seconds: int = 60  # Min seconds between same alert type
    include_details: bool = True
    bot_name: str = "VolumeBot"
    timeout_sec: float = 10.0


class WebhookFormatter:
    """Formats alerts for different webhook types."""

    @staticmethod
    def format_generic(alert: Alert, config: AlertConfig) -> Dict[str, Any]:
        return alert.to_dict()

    @staticmethod
    def format_slack(alert: Alert, config: AlertConfig) -> Dict[str, Any]:
        color = {
            AlertSeverity.CRITICAL: "#FF0000",
            AlertSeverity.WARNING: "#FFA500",
            AlertSeverity.INFO: "#0000FF",
        }.get(alert.severity, "#808080")

        fields = []
        if alert.token:
            fields.append({"title": "Token", "value": alert.token, "short": True})
        fields.append({"title": "Type", "value": alert.alert_type.name, "short": True})
        if config.include_details and alert.details:
            for key, value in list(alert.details.items())[:5]:
                fields.append({"title": key, "value": str(value), "short": True})

        return {
            "username": config.bot_name,
            "attachments": [{
                "color": color,
                "title": alert.title,
                "text": alert.message,
                "fields": fields,
                "footer": f"{config.bot_name} | {alert.severity.name}",
                "ts": alert.timestamp_ms // 1000,
            }]
        }

    @staticmethod
    def format_discord(alert: Alert, config: AlertConfig) -> Dict[str, Any]:
        color = {
            AlertSeverity.CRITICAL: 0xFF0000,
            AlertSeverity.WARNING: 0xFFA500,
            AlertSeverity.INFO: 0x0000FF,
        }.get(alert.severity, 0x808080)

        fields = []
        if alert.token:
            fields.append({"name": "Token", "value": alert.token, "inline": True})
        fields.append({"name": "Type", "value": alert.alert_type.name, "inline": True})
        if config.include_details and alert.details:
            for key, value in list(alert.details.items())[:5]:
                fields.append({"name": key, "value": str(value), "inline": True})

        return {
            "username": config.bot_name,
            "embeds": [{
                "title": alert.title,
                "description": alert.message,
                "color": color,
                "fields": fields,
                "footer": {"text": f"{config.bot_name} | {alert.severity.name}"},
                "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(alert.timestamp_ms / 1000)),
            }]
        }


_FORMATTERS = {
    "generic": WebhookFormatter.format_generic,
    "slack": WebhookFormatter.format_slack,
    "discord": WebhookFormatter.format_discord,
}


class AlertManager:
    """
    Delivers alerts to one webhook with per-type rate limiting.

    Passed explicitly to the components that raise alerts; an AlertManager
    without a webhook URL accepts every call and sends nothing.
    """

    def __init__(self, config: Optional[AlertConfig] = None, client: Optional[httpx.AsyncClient] = None) -> None:
        self.config = config or AlertConfig()
        self._client = client
        self._owns_client = client is None
        self._last_alert_times: Dict[AlertType, int] = {}

    @property
    def enabled(self) -> bool:
        return bool(self.config.webhook_url)

    async def send_alert(self, alert: Alert) -> bool:
        """
        Deliver an alert now.

        Returns:
            True if the webhook accepted it, False if disabled, filtered,
            rate limited or undeliverable
        """
        if not self.config.webhook_url:
            logger.debug(f"Alert not sent (no webhook): {alert.title}")
            return False

        if alert.severity.value > self.config.min_severity.value:
            return False

        now_ms = int(time.time() * 1000)
        last_time = self._last_alert_times.get(alert.alert_type)
        if last_time is not None and now_ms - last_time < self.config.rate_limit_seconds * 1000:
            logger.debug(f"Alert rate limited: {alert.alert_type.name}")
            return False
        self._last_alert_times[alert.alert_type] = now_ms

        return await self._http_post(self.format_alert(alert))

    def format_alert(self, alert: Alert) -> Dict[str, Any]:
        formatter = _FORMATTERS.get(self.config.webhook_type, WebhookFormatter.format_generic)
        return formatter(alert, self.config)

    async def _http_post(self, payload: Dict[str, Any], retries: int = 2) -> bool:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_sec)
        for attempt in range(retries + 1):
            try:
                resp = await self._client.post(self.config.webhook_url, json=payload)
                if resp.status_code < 300:
                    return True
                logger.warning(f"Alert delivery failed: HTTP {resp.status_code}")
            except httpx.HTTPError as e:
                logger.warning(f"Alert delivery error (attempt {attempt + 1}): {e}")
            if attempt < retries:
                await asyncio.sleep(1 * (attempt + 1))
        return False

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    # ----- lifecycle alerts -----

    async def alert_run_started(self, token: str, start_cycle: int, total_cycles: int) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.RUN_STARTED,
            severity=AlertSeverity.INFO,
            title="Volume run started",
            message=f"Trading from cycle {start_cycle} of {total_cycles or 'unlimited'}",
            token=token,
            details={"start_cycle": start_cycle, "total_cycles": total_cycles},
        ))

    async def alert_run_completed(self, token: str, cycles: int) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.RUN_COMPLETED,
            severity=AlertSeverity.INFO,
            title="Volume run completed",
            message=f"All {cycles} cycles finished",
            token=token,
        ))

    async def alert_run_paused(self, token: str, cycle: int) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.RUN_PAUSED,
            severity=AlertSeverity.WARNING,
            title="Volume run paused",
            message=f"Stopped by user at cycle {cycle}; state saved for resume",
            token=token,
            details={"cycle": cycle},
        ))

    async def alert_run_failed(self, token: str, error: str, cycle: Optional[int] = None) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.RUN_FAILED,
            severity=AlertSeverity.CRITICAL,
            title="Volume run failed",
            message=error,
            token=token,
            details={"cycle": cycle},
        ))

    async def alert_gather_done(self, token: str, swept_bnb: float, failed: int) -> bool:
        severity = AlertSeverity.WARNING if failed else AlertSeverity.INFO
        return await self.send_alert(Alert(
            alert_type=AlertType.GATHER_DONE,
            severity=severity,
            title="Gather finished",
            message=f"Swept {swept_bnb} BNB back to the main wallet, {failed} wallets failed",
            token=token,
            details={"swept_bnb": swept_bnb, "failed": failed},
        ))
