"""
Message formatting for the chat-webhook sink.

Builds Discord-style payloads from flushed bursts and one-off events.
Client-declared signals come straight from the beacon body, so every
nested value is read defensively.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from collector.core.models.events import BurstSnapshot, Event, GeoInfo

SUMMARY_COLOR = 0x00A3FF
PAGE_VIEW_COLOR = 0x8888FF
FIELD_VALUE_LIMIT = 1024
TRIM_MARKER = "\n…trimmed…"
TRIM_RESERVE = 100
EMPTY = "—"

FALLBACK_PAYLOAD = {"content": "⚠️ Alert too large; sent minimal summary."}


def flag_for(country_code: str) -> str:
    """Regional-indicator flag emoji for a two-letter country code."""
    cc = (country_code or "").upper()
    if len(cc) != 2 or not cc.isalpha() or not cc.isascii():
        return ""
    return "".join(chr(0x1F1E6 + ord(c) - ord("A")) for c in cc)


def approx_location(geo: GeoInfo) -> str:
    if not (geo.city or geo.region or geo.country_code):
        return "Unknown"
    parts = ""
    if geo.city:
        parts += f"{geo.city}, "
    if geo.region:
        parts += f"{geo.region}, "
    parts += geo.country_code
    if geo.country_code:
        parts += f" {flag_for(geo.country_code)}"
    location = parts.strip()
    if geo.latitude and geo.longitude:
        location += f" ({geo.latitude}, {geo.longitude})"
    return location


def safe_json(obj: Any) -> str:
    try:
        return json.dumps(obj, indent=2, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(obj)


def trim_text(text: str, max_chars: int) -> str:
    """Cut ``text`` to ``max_chars`` and append a marker when it was too long."""
    text = text or ""
    if len(text) <= max_chars:
        return text
    return text[:max(0, max_chars - TRIM_RESERVE)] + TRIM_MARKER


def format_local(ts: datetime, tz_name: str) -> str:
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        tz = timezone.utc
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(tz).strftime("%m/%d/%Y, %I:%M:%S %p")


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _or_dash(value: Any) -> str:
    return "-" if value is None or value == "" else str(value)


def _field(name: str, value: Any, inline: bool = False) -> Dict[str, Any]:
    text = str(value) if value not in (None, "") else EMPTY
    if len(text) > FIELD_VALUE_LIMIT:
        text = text[:FIELD_VALUE_LIMIT - 1] + "…"
    return {"name": name, "value": text, "inline": inline}


def signal_fields(signals: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Optional embed fields for the declared browser/device signals that are present."""
    fields = []

    extra = _as_dict(signals.get("extra"))
    if extra:
        fields.append(_field("Platform/Vendor", f"{_or_dash(extra.get('platform'))} / {_or_dash(extra.get('vendor'))}", True))
        fields.append(_field(
            "Touch/Cookies/DNT",
            f"touch={extra.get('maxTouchPoints') or 0} • "
            f"cookies={'on' if extra.get('cookieEnabled') else 'off'} • "
            f"dnt={extra.get('doNotTrack') or 'n/a'}",
        ))
        ua_data = _as_dict(extra.get("userAgentData"))
        if ua_data:
            brands = ua_data.get("brands") if isinstance(ua_data.get("brands"), list) else []
            fields.append(_field(
                "UA-CH",
                f"{_or_dash(ua_data.get('platform'))} • "
                f"{'mobile' if ua_data.get('mobile') else 'desktop'} • "
                f"{', '.join(str(b) for b in brands)}",
            ))

    color = _as_dict(signals.get("color"))
    if color:
        fields.append(_field(
            "Color/Prefs",
            f"{_or_dash(color.get('scheme'))} • gamut={_or_dash(color.get('gamut'))} • "
            f"hdr={_or_dash(color.get('hdr'))} • motion={_or_dash(color.get('prefersReducedMotion'))} • "
            f"contrast={_or_dash(color.get('prefersContrast'))}",
        ))

    screen = _as_dict(signals.get("screen"))
    if screen:
        fields.append(_field(
            "Screen",
            f"{screen.get('w')}×{screen.get('h')} ({screen.get('colorDepth')}-bit) • dpr={screen.get('dpr')} • "
            f"avail={screen.get('availW')}×{screen.get('availH')} • inner={screen.get('innerW')}×{screen.get('innerH')}",
        ))

    hw = _as_dict(signals.get("hw"))
    if hw:
        fields.append(_field("Hardware", f"{_or_dash(hw.get('cores'))} cores • {_or_dash(hw.get('memoryGB'))} GB RAM", True))

    net = _as_dict(signals.get("net"))
    if net:
        fields.append(_field("Network", f"{_or_dash(net.get('type'))} • {_or_dash(net.get('downlink'))} Mb/s", True))

    battery = _as_dict(signals.get("battery"))
    if battery:
        try:
            level = round(float(battery.get("level") or 0) * 100)
        except (TypeError, ValueError):
            level = 0
        fields.append(_field("Battery", f"{level}% • {'⚡ charging' if battery.get('charging') else 'idle'}", True))

    gpu = _as_dict(signals.get("gpu"))
    if gpu:
        extensions = gpu.get("extensions")
        exts = ", ".join(str(e) for e in extensions) if isinstance(extensions, list) else "-"
        fields.append(_field(
            "GPU",
            f"{gpu.get('renderer') or gpu.get('vendor') or '-'} • maxTex={_or_dash(gpu.get('maxTextureSize'))} • exts={exts}",
        ))

    return fields


def build_summary_payload(snapshot: BurstSnapshot, display_timezone: str = "America/Los_Angeles") -> Dict[str, Any]:
    """Primary embed for a flushed burst."""
    event = snapshot.latest_event
    score = snapshot.latest_score
    signals = event.client_signals
    languages = signals.get("languages")
    lang = str(signals.get("language") or "unknown")
    if isinstance(languages, list) and languages:
        lang += f" ({', '.join(str(x) for x in languages)})"
    offset = signals.get("timezoneOffsetMin")

    first = format_local(snapshot.first_seen_at, display_timezone)
    last = format_local(snapshot.last_seen_at, display_timezone)

    fields = [
        _field("Count (deduped)", snapshot.count, True),
        _field("When", f"{first} → {last}"),
        _field("VPN/Proxy", f"{score.tier.value} ({score.score}/100)", True),
        _field("VPN hints", " • ".join(score.reasons) if score.reasons else EMPTY),
        _field("Device / OS / Browser", f"{signals.get('device')} / {signals.get('os')} / {signals.get('browser')}"),
        _field("Approx Location", approx_location(event.geo)),
        _field("IP", event.identity.ip, True),
        _field("Path", signals.get("path") or "/", True),
        _field("Referrer", signals.get("ref") or "none", True),
        _field("Lang / TZ", f"{lang} / {signals.get('timezone') or EMPTY}"),
        _field("TZ offset (min)", EMPTY if offset is None else offset, True),
        _field("FP Hash", event.identity.fp_hash, True),
        _field("Click ID", event.identity.click_id, True),
    ]
    fields.extend(signal_fields(signals))

    if score.reverse_dns_hostname:
        fields.append(_field("rDNS", score.reverse_dns_hostname))
    if score.asn:
        fields.append(_field("ASN", score.asn))

    last_seen = snapshot.last_seen_at
    if last_seen.tzinfo is None:
        last_seen = last_seen.replace(tzinfo=timezone.utc)

    embed = {
        "title": "New Visit (aggregated)",
        "color": SUMMARY_COLOR,
        "fields": fields,
        "timestamp": last_seen.astimezone(timezone.utc).isoformat(),
    }
    return {"embeds": [embed]}


def build_debug_payload(snapshot: BurstSnapshot, max_chars: int) -> Dict[str, Any]:
    """Diagnostic payload with raw headers, body and UA trimmed to ``max_chars``."""
    event = snapshot.latest_event
    debug = {
        "headers": event.raw_headers or {},
        "body": event.raw_body or {},
        "rawUa": event.user_agent,
    }
    return {"content": "```json\n" + trim_text(safe_json(debug), max_chars) + "\n```"}


def build_page_view_payload(event: Event, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    embed = {
        "title": "Page view",
        "color": PAGE_VIEW_COLOR,
        "fields": [
            _field("Time", now.isoformat()),
            _field("Path", event.client_signals.get("path") or "unknown", True),
            _field("IP", event.identity.ip, True),
            _field("Referrer", event.raw_headers.get("referer") or "none"),
        ],
    }
    return {"embeds": [embed]}


def build_link_click_payload(event: Event, destination: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    content = (
        "🔔 **Tracked link clicked**\n"
        f"• **Time**: {now.isoformat()}\n"
        f"• **IP**: {event.identity.ip}\n"
        f"• **User-Agent**: {event.user_agent or 'unknown'}\n"
        f"• **Referrer**: {event.raw_headers.get('referer') or 'none'}\n"
        f"• **Redirecting to**: {destination}"
    )
    return {"content": content}


def build_self_test_payload(now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    return {"content": f"✅ Self-test ping @ {now.isoformat()}"}
