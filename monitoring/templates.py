"""
============================================================================
APPWATCH - ALERT TEMPLATES
============================================================================
Payload builders for each alert channel.

``FORMATTERS`` maps a ChannelType to the function that renders an
``AlertData`` into that channel's payload. ``resolve_formatter`` applies
the URL-based detection used for plain ``webhook`` destinations, so a
Slack, Discord or Teams incoming-webhook URL gets its native format.

Version: 1.0.0
License: MIT
============================================================================
"""

import html
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict

from config.constants import (
    ALERT_FOOTER,
    CHANNEL_HOST_PATTERNS,
    DISCORD_COLORS,
    EMAIL_COLORS,
    GENERIC_WEBHOOK_TYPE,
    GENERIC_WEBHOOK_VERSION,
    SLACK_COLORS,
    TEAMS_COLORS,
    ChannelType,
    EndpointStatus,
    Severity,
)
from utils.helpers import TimeHelper


DEFAULT_DASHBOARD_URL = "https://your-appwatch-domain.com"


# ============================================================================
# ALERT DATA
# ============================================================================

@dataclass
class AlertData:
    """Channel-independent content of one status-change alert."""
    app: str
    url: str
    old_status: str
    new_status: str
    severity: str
    timestamp: str = field(default_factory=lambda: TimeHelper.to_iso(TimeHelper.utc_now()))

    @classmethod
    def build(cls, name: str, url: str, old_status, new_status) -> "AlertData":
        old_status = EndpointStatus(old_status)
        new_status = EndpointStatus(new_status)
        return cls(
            app=name,
            url=url,
            old_status=old_status.value,
            new_status=new_status.value,
            severity=Severity.classify(old_status, new_status).value,
        )

    @classmethod
    def test_alert(cls) -> "AlertData":
        """Synthetic online -> offline alert used to verify a destination."""
        return cls(
            app="Test Application",
            url="https://example.com",
            old_status=EndpointStatus.ONLINE.value,
            new_status=EndpointStatus.OFFLINE.value,
            severity=Severity.CRITICAL.value,
        )

    @property
    def emoji(self) -> str:
        return "✅" if self.new_status == EndpointStatus.ONLINE.value else "🚨"

    @property
    def color_key(self) -> str:
        if self.severity == Severity.CRITICAL.value:
            return "critical"
        if self.new_status == EndpointStatus.ONLINE.value:
            return "online"
        return "other"

    @property
    def status_change(self) -> str:
        return f"{self.old_status} → {self.new_status}"

    @property
    def checked_at(self) -> datetime:
        return TimeHelper.parse_iso(self.timestamp)

    @property
    def display_time(self) -> str:
        return self.checked_at.strftime("%Y-%m-%d %H:%M:%S UTC")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EmailContent:
    subject: str
    html: str
    text: str


# ============================================================================
# FORMATTERS
# ============================================================================

def format_slack(data: AlertData, dashboard_url: str = DEFAULT_DASHBOARD_URL) -> Dict[str, Any]:
    return {
        "text": f"{data.emoji} AppWatch Alert: {data.app} is now {data.new_status}",
        "attachments": [{
            "color": SLACK_COLORS[data.color_key],
            "fields": [
                {"title": "Application", "value": data.app, "short": True},
                {"title": "Status Change", "value": data.status_change, "short": True},
                {"title": "URL", "value": data.url, "short": False},
                {"title": "Timestamp", "value": data.display_time, "short": True},
                {"title": "Severity", "value": data.severity.upper(), "short": True},
            ],
            "footer": ALERT_FOOTER,
            "ts": int(data.checked_at.replace(tzinfo=timezone.utc).timestamp()),
        }],
    }


def format_discord(data: AlertData, dashboard_url: str = DEFAULT_DASHBOARD_URL) -> Dict[str, Any]:
    return {
        "embeds": [{
            "title": f"{data.emoji} AppWatch Alert",
            "description": f"**{data.app}** is now **{data.new_status}**",
            "color": DISCORD_COLORS[data.color_key],
            "fields": [
                {"name": "Status Change", "value": data.status_change, "inline": True},
                {"name": "Severity", "value": data.severity.upper(), "inline": True},
                {"name": "URL", "value": data.url, "inline": False},
            ],
            "timestamp": data.timestamp,
            "footer": {"text": ALERT_FOOTER},
        }],
    }


def format_msteams(data: AlertData, dashboard_url: str = DEFAULT_DASHBOARD_URL) -> Dict[str, Any]:
    return {
        "@type": "MessageCard",
        "@context": "https://schema.org/extensions",
        "themeColor": TEAMS_COLORS[data.color_key],
        "summary": f"AppWatch Alert: {data.app} is {data.new_status}",
        "sections": [{
            "activityTitle": f"{data.emoji} AppWatch Alert",
            "activitySubtitle": f"**{data.app}** is now **{data.new_status}**",
            "facts": [
                {"name": "Status Change", "value": data.status_change},
                {"name": "Severity", "value": data.severity.upper()},
                {"name": "URL", "value": data.url},
                {"name": "Timestamp", "value": data.display_time},
            ],
        }],
        "potentialAction": [{
            "@type": "OpenUri",
            "name": "Open AppWatch Dashboard",
            "targets": [{"os": "default", "uri": dashboard_url}],
        }],
    }


def format_generic(data: AlertData, dashboard_url: str = DEFAULT_DASHBOARD_URL) -> Dict[str, Any]:
    return {
        "type": GENERIC_WEBHOOK_TYPE,
        "data": data.to_dict(),
        "version": GENERIC_WEBHOOK_VERSION,
    }


def format_email(data: AlertData, dashboard_url: str = DEFAULT_DASHBOARD_URL) -> EmailContent:
    """Subject, HTML and plain-text bodies of an email alert."""
    color = EMAIL_COLORS[data.color_key]
    app = html.escape(data.app)
    url = html.escape(data.url, quote=True)
    dashboard = html.escape(dashboard_url, quote=True)

    html_body = f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>AppWatch Alert</title>
    <style>
        body {{ font-family: Arial, sans-serif; margin: 0; padding: 20px; background-color: #f5f5f5; }}
        .container {{ max-width: 600px; margin: 0 auto; background-color: white; border-radius: 8px; overflow: hidden; }}
        .header {{ background-color: {color}; color: white; padding: 20px; text-align: center; }}
        .content {{ padding: 20px; }}
        .status-change {{ font-size: 24px; font-weight: bold; margin: 20px 0; text-align: center; }}
        .details {{ background-color: #f9f9f9; padding: 15px; border-radius: 5px; margin: 20px 0; }}
        .detail-row {{ margin: 10px 0; padding: 5px 0; border-bottom: 1px solid #eee; }}
        .detail-label {{ font-weight: bold; color: #666; }}
        .footer {{ background-color: #f0f0f0; padding: 15px; text-align: center; font-size: 12px; color: #666; }}
        .button {{ display: inline-block; padding: 10px 20px; background-color: #007bff; color: white; text-decoration: none; border-radius: 5px; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h1>{data.emoji} AppWatch Alert</h1>
        </div>
        <div class="content">
            <div class="status-change">
                <strong>{app}</strong> is now <span style="color: {color};">{data.new_status}</span>
            </div>
            <div class="details">
                <div class="detail-row"><span class="detail-label">Status Change:</span> {data.status_change}</div>
                <div class="detail-row"><span class="detail-label">Severity:</span> {data.severity.upper()}</div>
                <div class="detail-row"><span class="detail-label">URL:</span> <a href="{url}">{url}</a></div>
                <div class="detail-row"><span class="detail-label">Timestamp:</span> {data.display_time}</div>
            </div>
            <div style="text-align: center;">
                <a href="{dashboard}" class="button">View Dashboard</a>
            </div>
        </div>
        <div class="footer">
            This alert was generated by {ALERT_FOOTER}
        </div>
    </div>
</body>
</html>"""

    text_body = (
        f"AppWatch Alert: {data.app} is {data.new_status}\n"
        f"\n"
        f"Status Change: {data.status_change}\n"
        f"Severity: {data.severity.upper()}\n"
        f"URL: {data.url}\n"
        f"Timestamp: {data.display_time}\n"
        f"\n"
        f"View Dashboard: {dashboard_url}\n"
    )

    return EmailContent(
        subject=f"{data.emoji} AppWatch Alert: {data.app} is {data.new_status}",
        html=html_body,
        text=text_body,
    )


FORMATTERS: Dict[ChannelType, Callable[..., Any]] = {
    ChannelType.EMAIL: format_email,
    ChannelType.WEBHOOK: format_generic,
    ChannelType.SLACK: format_slack,
    ChannelType.DISCORD: format_discord,
    ChannelType.MSTEAMS: format_msteams,
}


# ============================================================================
# CHANNEL DETECTION
# ============================================================================

def detect_channel(destination: str) -> ChannelType:
    """Platform behind a webhook URL, or WEBHOOK when unrecognised."""
    for pattern, channel in CHANNEL_HOST_PATTERNS:
        if pattern in destination:
            return channel
    return ChannelType.WEBHOOK


def resolve_formatter(channel: ChannelType, destination: str) -> ChannelType:
    """
    Formatter key for a configured channel.

    Only the generic ``webhook`` channel is subject to URL detection.
    """
    if channel == ChannelType.WEBHOOK:
        return detect_channel(destination)
    return channel
