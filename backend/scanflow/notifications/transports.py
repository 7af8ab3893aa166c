# =============================================================================
# File: scanflow/notifications/transports.py
# Description: Channel senders for rendered notifications.
#   email   → SMTP (smtplib, STARTTLS)
#   slack   → incoming webhook
#   webhook → generic JSON POST with optional HMAC signature
#   sms     → Twilio REST API
#
# Every sender takes (config, message, meta) and returns (ok, error).
# `config` is the channel configuration merged with per-send options,
# `message` is the rendered template body, `meta` carries the
# notification id/type for headers and envelopes.
# =============================================================================

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import re
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from scanflow.errors import ValidationError

logger = logging.getLogger(__name__)

SendResult = Tuple[bool, Optional[str]]
Sender = Callable[[Dict[str, Any], Dict[str, Any], Dict[str, Any]], SendResult]

TWILIO_API = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PHONE_RE = re.compile(r"^\+?[1-9]\d{6,14}$")

# Fields to mask when configs are echoed back through the API
SENSITIVE_FIELDS = {"smtp_pass", "secret", "auth_token", "twilio_auth_token", "api_token"}


def safe_config(config: dict) -> dict:
    """Return config with sensitive fields masked."""
    out = {}
    for k, v in (config or {}).items():
        if k in SENSITIVE_FIELDS and v:
            out[k] = "••••" + str(v)[-4:] if len(str(v)) > 4 else "••••"
        else:
            out[k] = v
    return out


def _as_list(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v).strip() for v in value if str(v).strip()]


# ────────────────────────────────────────────────────────────────
# Email (SMTP)
# ────────────────────────────────────────────────────────────────

def send_email(config: dict, message: dict, meta: dict) -> SendResult:
    to_list = _as_list(config.get("to") or config.get("recipients"))
    if not to_list:
        return False, "No recipients configured"

    host = config.get("smtp_host", "")
    if not host:
        return False, "No smtp_host configured"

    msg = MIMEMultipart("alternative")
    msg["Subject"] = message.get("subject") or f"Scanflow notification ({meta.get('type', '')})"
    msg["From"] = config.get("from") or config.get("smtp_from") or "notifications@scanflow.local"
    msg["To"] = ", ".join(to_list)
    if message.get("text"):
        msg.attach(MIMEText(message["text"], "plain"))
    if message.get("html"):
        msg.attach(MIMEText(message["html"], "html"))

    try:
        with smtplib.SMTP(host, int(config.get("smtp_port") or 587), timeout=15) as smtp:
            if config.get("smtp_tls", True):
                smtp.starttls()
            if config.get("smtp_user"):
                smtp.login(config["smtp_user"], config.get("smtp_pass", ""))
            smtp.send_message(msg)
        return True, None
    except (smtplib.SMTPException, OSError) as e:
        return False, f"Email send failed: {str(e)[:200]}"


# ────────────────────────────────────────────────────────────────
# Slack
# ────────────────────────────────────────────────────────────────

def send_slack(config: dict, message: dict, meta: dict) -> SendResult:
    webhook_url = config.get("webhook_url", "")
    if not webhook_url:
        return False, "No webhook_url configured"

    body = dict(message)
    if config.get("channel"):
        body["channel"] = config["channel"]

    try:
        resp = requests.post(webhook_url, json=body, timeout=10)
        if resp.status_code == 200:
            return True, None
        return False, f"Slack returned {resp.status_code}: {resp.text[:200]}"
    except requests.RequestException as e:
        return False, f"Slack request failed: {str(e)[:200]}"


# ────────────────────────────────────────────────────────────────
# Webhook (generic)
# ────────────────────────────────────────────────────────────────

def send_webhook(config: dict, message: dict, meta: dict) -> SendResult:
    url = config.get("url") or config.get("webhook_url", "")
    if not url:
        return False, "No URL configured"

    method = (config.get("method") or "POST").upper()
    secret = config.get("secret", "")

    envelope = {
        "notification_id": meta.get("id"),
        "type": meta.get("type"),
        "timestamp": meta.get("timestamp"),
        "data": message,
    }
    body = json.dumps(envelope, default=str)
    headers = {"Content-Type": "application/json", "User-Agent": "Scanflow-Webhook/1.0"}
    headers.update(config.get("headers") or {})

    if secret:
        sig = hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()
        headers["X-Scanflow-Signature"] = f"sha256={sig}"

    try:
        resp = requests.request(method, url, data=body, headers=headers, timeout=15)
        if 200 <= resp.status_code < 300:
            return True, None
        return False, f"Webhook returned {resp.status_code}: {resp.text[:200]}"
    except requests.RequestException as e:
        return False, f"Webhook request failed: {str(e)[:200]}"


# ────────────────────────────────────────────────────────────────
# SMS (Twilio)
# ────────────────────────────────────────────────────────────────

def send_sms(config: dict, message: dict, meta: dict) -> SendResult:
    numbers = _as_list(config.get("phone_number") or config.get("phone_numbers"))
    if not numbers:
        return False, "No phone_number configured"

    sid = config.get("twilio_account_sid", "")
    token = config.get("twilio_auth_token", "")
    from_number = config.get("twilio_from_number", "")
    if not all([sid, token, from_number]):
        return False, "Incomplete Twilio configuration"

    text = (message.get("text") or "")[:1600]
    errors = []
    for number in numbers:
        try:
            resp = requests.post(
                TWILIO_API.format(sid=sid),
                data={"To": number, "From": from_number, "Body": text},
                auth=(sid, token),
                timeout=10,
            )
            if resp.status_code not in (200, 201):
                errors.append(f"{number}: Twilio returned {resp.status_code}")
        except requests.RequestException as e:
            errors.append(f"{number}: {str(e)[:100]}")

    if errors:
        return False, "; ".join(errors)[:300]
    return True, None


# ────────────────────────────────────────────────────────────────
# Router + config validation
# ────────────────────────────────────────────────────────────────

SENDERS: Dict[str, Sender] = {
    "email": send_email,
    "slack": send_slack,
    "webhook": send_webhook,
    "sms": send_sms,
}

CHANNELS = tuple(SENDERS)


def validate_channel_config(channel: str, config: dict) -> None:
    """Raise ValidationError if `config` can't drive `channel`."""
    config = config or {}
    if channel not in SENDERS:
        raise ValidationError(f"Unknown channel '{channel}'. Must be one of: {', '.join(CHANNELS)}")

    if channel == "email":
        if not config.get("smtp_host"):
            raise ValidationError("email channel requires smtp_host")
        for addr in _as_list(config.get("to") or config.get("recipients")):
            if not _EMAIL_RE.match(addr):
                raise ValidationError(f"Invalid email address: {addr}")

    elif channel == "slack":
        url = config.get("webhook_url", "")
        if not url.startswith("https://"):
            raise ValidationError("slack channel requires an https webhook_url")

    elif channel == "webhook":
        url = config.get("url") or config.get("webhook_url", "")
        if not url.startswith(("http://", "https://")):
            raise ValidationError("webhook channel requires a url")
        method = (config.get("method") or "POST").upper()
        if method not in ("POST", "PUT", "PATCH"):
            raise ValidationError(f"Unsupported webhook method: {method}")

    elif channel == "sms":
        if not all(config.get(k) for k in ("twilio_account_sid", "twilio_auth_token", "twilio_from_number")):
            raise ValidationError("sms channel requires twilio_account_sid, twilio_auth_token and twilio_from_number")
        for number in _as_list(config.get("phone_number") or config.get("phone_numbers")):
            if not _PHONE_RE.match(number):
                raise ValidationError(f"Invalid phone number: {number}")
