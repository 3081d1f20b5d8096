"""
Notification Service - aviso de novas submissões KYC por email (SMTP) e Telegram.

Cada canal é independente: canal não configurado -> ignorado;
falha de envio -> registada no log, nunca propagada para a submissão.
"""
from __future__ import annotations

import html
import logging
import mimetypes
from datetime import datetime
from email.message import EmailMessage
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import aiosmtplib
import httpx
from starlette.concurrency import run_in_threadpool

from ..settings import settings
from ..utils import utcnow
from .security_analysis import RiskReport

logger = logging.getLogger(__name__)

NA = "Not available"
NP = "Not provided"

_RISK_BADGE = {"high": "🔴 HIGH RISK", "medium": "🟡 MEDIUM RISK", "low": "🟢 LOW RISK"}
_RISK_SHORT = {"high": "🔴 HIGH", "medium": "🟡 MEDIUM", "low": "🟢 LOW"}


def _v(value: Any, default: str = NA) -> str:
    if value is None or value == "":
        return default
    return str(value)


def _yes_no(flag: Any) -> str:
    return "Yes" if flag else "No"


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _browser_location(sub: Dict[str, Any]) -> str:
    geo = _as_dict(sub.get("geolocation"))
    if not geo:
        return NA
    return f"{_v(geo.get('city'), '?')}, {_v(geo.get('country'), '?')}"


def _browser(device: Dict[str, Any]) -> str:
    # browserInfo vem do cliente: objecto {name, version} ou texto livre
    info = device.get("browserInfo")
    info = info if isinstance(info, dict) else {"name": info}
    name = _v(info.get("name"))
    version = info.get("version")
    return f"{name} ({version})" if version else name


def _count(device: Dict[str, Any], key: str) -> int:
    items = device.get(key)
    return len(items) if isinstance(items, list) else 0


def _available(device: Dict[str, Any], key: str) -> str:
    return "Available" if device.get(key) else NA


# -------------------------
# Renderização
# -------------------------
def render_email_html(sub: Dict[str, Any], report: RiskReport, now: Optional[datetime] = None) -> str:
    device = _as_dict(sub.get("device"))
    loc = report.real_location
    proxy = report.proxy_info
    e = html.escape

    def li(label: str, value: Any, default: str = NA) -> str:
        return f"<li><strong>{label}:</strong> {e(_v(value, default))}</li>"

    parts = [
        "<h2>New KYC Submission</h2>",
        "<h3>Personal Information:</h3><ul>",
        li("Name", sub.get("full_name")),
        li("Email", sub.get("email"), NP),
        li("Phone", sub.get("phone"), NP),
        li("Address", sub.get("address"), NP),
        li("City", sub.get("city"), NP),
        li("State", sub.get("state"), NP),
        li("Country", sub.get("country"), NP),
        li("Postal Code", sub.get("postal_code"), NP),
        "</ul>",
        "<h3>Player Information:</h3><ul>",
        li("Player ID", sub.get("player_id"), NP),
        "</ul>",
        "<h3>Device Information:</h3><ul>",
        li("IP Address", sub.get("ip_address")),
        li("Browser Location", _browser_location(sub)),
        li("Browser", _browser(device)),
        li("Platform", device.get("platform")),
        li("Screen Resolution", device.get("screenResolution")),
        li("Device ID", device.get("deviceId")),
        li("Timezone", device.get("timezone")),
        li("Language", device.get("language")),
        li("User Agent", device.get("userAgent")),
        li("WebGL Fingerprint", _available(device, "webglFingerprint")),
        li("Canvas Fingerprint", _available(device, "canvasFingerprint")),
        li("Audio Fingerprint", _available(device, "audioFingerprint")),
        li("Installed Fonts", f"{_count(device, 'fonts')} fonts detected"),
        li("Browser Plugins", f"{_count(device, 'plugins')} plugins detected"),
        "</ul>",
        "<h3>Real Location (IP2Location):</h3><ul>",
        li("Real Country", loc.country if loc else None),
        li("Real City", loc.city if loc else None),
        li("Real Region", loc.region if loc else None),
        li("ISP", loc.isp if loc else None),
        li("Organization", loc.organization if loc else None),
        li("Domain", loc.domain if loc else None),
        li("Usage Type", loc.usage_type if loc else None),
        li("Timezone", loc.timezone if loc else None),
        li("Coordinates", f"{loc.latitude}, {loc.longitude}" if loc and loc.latitude is not None else None),
        "</ul>",
        "<h3>Proxy/VPN Analysis:</h3><ul>",
        li("VPN/Proxy Detected", "⚠️ YES" if report.vpn_detected else "✅ No"),
    ]
    if proxy:
        parts += [
            li("Proxy Type", proxy.proxy_type, "Unknown"),
            li("Provider", proxy.provider, "Unknown"),
            li("Is VPN", _yes_no(proxy.is_vpn)),
            li("Is Tor", _yes_no(proxy.is_tor)),
            li("Is Data Center", _yes_no(proxy.is_data_center)),
            li("Threat Level", proxy.threat, "Unknown"),
            li("Is Spammer", "⚠️ YES" if proxy.is_spammer else "No"),
        ]
    parts += [
        "</ul>",
        "<h3>Security Analysis:</h3><ul>",
        li("Fraud Score", f"{report.fraud_score}/100 {_RISK_BADGE[report.fraud_risk]}"),
        li(
            "Location Mismatch",
            "⚠️ Location mismatch detected" if report.location_mismatch else "✅ Location consistent",
        ),
        li("Analysis Confidence", report.confidence),
        li("Device Fingerprint", sub.get("device_fingerprint")),
        "</ul>",
        f"<p><strong>Submission Time:</strong> {e((now or utcnow()).strftime('%Y-%m-%d %H:%M:%S UTC'))}</p>",
    ]
    return "\n".join(parts)


_MD_SPECIAL = ("\\", "_", "*", "`", "[")


def _md(value: Any, default: str = NA) -> str:
    s = _v(value, default)
    for ch in _MD_SPECIAL:
        s = s.replace(ch, f"\\{ch}")
    return s


def render_telegram_markdown(sub: Dict[str, Any], report: RiskReport, now: Optional[datetime] = None) -> str:
    device = _as_dict(sub.get("device"))
    loc = report.real_location
    proxy = report.proxy_info

    lines = [
        "🚨 *New KYC Submission*",
        "",
        "👤 *Personal Info:*",
        f"• Name: {_md(sub.get('full_name'))}",
        f"• Email: {_md(sub.get('email'), NP)}",
        f"• Phone: {_md(sub.get('phone'), NP)}",
        f"• User Location: {_md(_browser_location(sub))}",
        "",
        "🎮 *Player Info:*",
        f"• Player ID: {_md(sub.get('player_id'), NP)}",
        "",
        "🌍 *Real Location (IP2Location):*",
        f"• Country: {_md(loc.country if loc else None)}",
        f"• City: {_md(loc.city if loc else None)}",
        f"• Region: {_md(loc.region if loc else None)}",
        f"• ISP: {_md(loc.isp if loc else None)}",
        f"• Organization: {_md(loc.organization if loc else None)}",
        f"• Usage Type: {_md(loc.usage_type if loc else None)}",
        "",
        "🔍 *Proxy/VPN Analysis:*",
        f"• VPN/Proxy: {'⚠️ DETECTED' if report.vpn_detected else '✅ Clean'}",
    ]
    if proxy:
        lines += [
            f"• Type: {_md(proxy.proxy_type, 'Unknown')}",
            f"• Provider: {_md(proxy.provider, 'Unknown')}",
            f"• VPN: {_yes_no(proxy.is_vpn)}",
            f"• Tor: {_yes_no(proxy.is_tor)}",
            f"• Data Center: {_yes_no(proxy.is_data_center)}",
            f"• Threat: {_md(proxy.threat, 'Unknown')}",
            f"• Spammer: {'⚠️ YES' if proxy.is_spammer else 'No'}",
        ]
    lines += [
        "",
        "💻 *Device Information:*",
        f"• IP: {_md(sub.get('ip_address'))}",
        f"• Browser: {_md(_browser(device))}",
        f"• Platform: {_md(device.get('platform'), 'Unknown')}",
        f"• Screen: {_md(device.get('screenResolution'), 'Unknown')}",
        f"• Device ID: {_md(device.get('deviceId'), 'Unknown')}",
        f"• Timezone: {_md(device.get('timezone'), 'Unknown')}",
        f"• Language: {_md(device.get('language'), 'Unknown')}",
        f"• Fonts: {_count(device, 'fonts')} detected",
        f"• Plugins: {_count(device, 'plugins')} detected",
        "",
        "🛡️ *Security Analysis:*",
        f"• Fraud Score: {report.fraud_score}/100 {_RISK_SHORT[report.fraud_risk]}",
        f"• Location Match: {'⚠️ MISMATCH' if report.location_mismatch else '✅ Consistent'}",
        f"• Confidence: {report.confidence}",
        "",
        f"⏰ *Submitted:* {(now or utcnow()).strftime('%Y-%m-%d %H:%M:%S UTC')}",
    ]
    return "\n".join(lines)


# -------------------------
# Envio
# -------------------------
def _read_attachments(paths: List[str]) -> List[Tuple[str, bytes]]:
    out = []
    for path in paths:
        p = Path(path)
        if not p.is_file():
            logger.warning(f"Attachment missing on disk, skipping: {path}")
            continue
        out.append((p.name, p.read_bytes()))
    return out


def _build_email(sub: Dict[str, Any], report: RiskReport, attachments: List[Tuple[str, bytes]]) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = f"New KYC Submission - {sub.get('full_name')}"
    msg["From"] = settings.SERVICE_EMAIL or settings.SMTP_USER
    msg["To"] = settings.NOTIFY_EMAIL
    msg.set_content("New KYC submission received. Open this message in an HTML-capable client.")
    msg.add_alternative(render_email_html(sub, report), subtype="html")

    for name, data in attachments:
        ctype, _ = mimetypes.guess_type(name)
        maintype, subtype = (ctype or "application/octet-stream").split("/", 1)
        msg.add_attachment(data, maintype=maintype, subtype=subtype, filename=name)
    return msg


async def send_email_notification(sub: Dict[str, Any], report: RiskReport) -> bool:
    if not settings.smtp_configured():
        logger.info("SMTP not configured, skipping email notification")
        return False

    try:
        attachments = await run_in_threadpool(_read_attachments, list(sub.get("files") or []))
        message = _build_email(sub, report, attachments)
        implicit_tls = settings.SMTP_PORT == 465
        async with aiosmtplib.SMTP(
            hostname=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            use_tls=implicit_tls,
            start_tls=not implicit_tls,
            timeout=settings.NOTIFY_TIMEOUT_SEC,
        ) as smtp:
            await smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
            await smtp.send_message(message)
    except Exception as e:
        logger.error(f"Error sending email notification for {sub.get('submission_id')}: {e}")
        return False

    logger.info(f"Email notification sent for submission {sub.get('submission_id')}")
    return True


async def send_telegram_notification(
    sub: Dict[str, Any],
    report: RiskReport,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bool:
    if not settings.telegram_configured():
        logger.info("Telegram credentials not configured, skipping Telegram notification")
        return False

    url = f"https://api.telegram.org/bot{settings.TELEGRAM_BOT_TOKEN}/sendMessage"
    try:
        body = {
            "chat_id": settings.TELEGRAM_CHAT_ID,
            "text": render_telegram_markdown(sub, report),
            "parse_mode": "Markdown",
        }
        async with httpx.AsyncClient(timeout=settings.NOTIFY_TIMEOUT_SEC, transport=transport) as client:
            response = await client.post(url, json=body)
    except httpx.HTTPError as e:
        logger.error(f"Error sending Telegram notification: {e}")
        return False
    except Exception as e:
        logger.exception(f"Unexpected error building Telegram notification for {sub.get('submission_id')}: {e}")
        return False

    if response.status_code != 200:
        logger.error(f"Failed to send Telegram notification: HTTP {response.status_code} {response.text[:200]}")
        return False

    logger.info(f"Telegram notification sent for submission {sub.get('submission_id')}")
    return True


async def notify_submission(sub: Dict[str, Any], report: RiskReport) -> Dict[str, bool]:
    return {
        "email": await send_email_notification(sub, report),
        "telegram": await send_telegram_notification(sub, report),
    }
