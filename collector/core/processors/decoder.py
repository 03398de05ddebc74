"""
Beacon request decoding.

Turns raw request pieces (headers, URL path, peer address and an already
parsed JSON body) into an immutable ``Event``. Every optional field is
defaulted here so the rest of the collector never sees missing data.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlsplit

from collector.core.models.events import Event, GeoInfo, IdentitySeed

# Declared browser/device attributes copied verbatim from the beacon body
PASSTHROUGH_SIGNALS = ("extra", "color", "screen", "hw", "net", "battery", "gpu")

_EDGE = re.compile(r"edg", re.IGNORECASE)
_OPERA = re.compile(r"opr|opera", re.IGNORECASE)
_FIREFOX = re.compile(r"firefox|fxios", re.IGNORECASE)
_CHROME = re.compile(r"chrome|crios", re.IGNORECASE)
_SAFARI = re.compile(r"safari", re.IGNORECASE)

_WINDOWS = re.compile(r"windows nt", re.IGNORECASE)
_MACOS = re.compile(r"macintosh|mac os x", re.IGNORECASE)
_ANDROID = re.compile(r"android", re.IGNORECASE)
_IOS = re.compile(r"iphone|ipad|ipod", re.IGNORECASE)
_LINUX = re.compile(r"linux", re.IGNORECASE)
_MOBILE = re.compile(r"mobile|android|iphone|ipad|ipod", re.IGNORECASE)


def parse_user_agent(ua: str) -> Dict[str, str]:
    """Classify a user agent into coarse browser, OS and device classes."""
    ua = ua or ""

    browser = "Unknown"
    if _EDGE.search(ua):
        browser = "Edge"
    elif _OPERA.search(ua):
        browser = "Opera"
    elif _FIREFOX.search(ua):
        browser = "Firefox"
    elif _CHROME.search(ua):
        browser = "Chrome"
    elif _SAFARI.search(ua):
        browser = "Safari"

    os_name = "Unknown"
    if _WINDOWS.search(ua):
        os_name = "Windows"
    elif _MACOS.search(ua):
        os_name = "macOS"
    elif _ANDROID.search(ua):
        os_name = "Android"
    elif _IOS.search(ua):
        os_name = "iOS"
    elif _LINUX.search(ua):
        os_name = "Linux"

    if _MOBILE.search(ua):
        if _ANDROID.search(ua):
            device = "Android"
        elif _IOS.search(ua):
            device = "iPhone"
        else:
            device = "Mobile"
    else:
        device = "PC"

    return {"browser": browser, "os": os_name, "device": device}


def only_pathname(value: Optional[str]) -> str:
    """Path component of a URL or path, without query string."""
    if not value:
        return "/"
    try:
        path = urlsplit(str(value)).path
    except ValueError:
        path = str(value).split("?")[0]
    return path or "/"


def client_ip(headers: Mapping[str, str], peer: Optional[str] = None) -> str:
    forwarded = (headers.get("x-forwarded-for") or "").split(",")[0].strip()
    if forwarded:
        return forwarded
    return headers.get("x-real-ip") or peer or "unknown"


def geo_from_headers(headers: Mapping[str, str]) -> GeoInfo:
    return GeoInfo(
        city=headers.get("x-vercel-ip-city") or "",
        region=headers.get("x-vercel-ip-country-region") or headers.get("x-vercel-ip-region") or "",
        country_code=(headers.get("x-vercel-ip-country") or "").upper(),
        asn=headers.get("x-vercel-ip-asn") or "",
        latitude=headers.get("x-vercel-ip-latitude") or "",
        longitude=headers.get("x-vercel-ip-longitude") or "",
    )


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def decode_event(
    headers: Mapping[str, str],
    body: Any = None,
    url_path: Optional[str] = None,
    peer: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Event:
    """
    Build an Event from request data.

    Args:
        headers: Request headers with lower-case names
        body: Parsed JSON body (anything that is not a dict is ignored)
        url_path: Request URL or path, used when the body declares no path
        peer: Socket peer address
        now: Arrival time (defaults to the current UTC time)

    Returns:
        Immutable Event
    """
    headers = {str(k).lower(): str(v) for k, v in dict(headers or {}).items()}
    body = body if isinstance(body, dict) else {}

    ua = headers.get("user-agent", "")
    ua_parsed = parse_user_agent(ua)

    language = body.get("language") or (headers.get("accept-language") or "").split(",")[0].strip() or "unknown"
    languages = body.get("languages") if isinstance(body.get("languages"), list) else None
    path = only_pathname(body.get("path") or url_path or "/")

    signals: Dict[str, Any] = {
        "browser": body.get("browser") or ua_parsed["browser"],
        "os": body.get("os") or ua_parsed["os"],
        "device": body.get("device") or ua_parsed["device"],
        "language": str(language),
        "languages": languages,
        "timezone": body.get("timezone") or None,
        "timezoneOffsetMin": body.get("timezoneOffsetMin"),
        "path": path,
        "ref": body.get("ref") or headers.get("referer") or "none",
    }
    for name in PASSTHROUGH_SIGNALS:
        signals[name] = body.get(name) or None

    identity = IdentitySeed(
        ip=client_ip(headers, peer),
        device=str(signals["device"]),
        browser=str(signals["browser"]),
        path=path,
        fp_hash=_optional_str(body.get("fpHash")),
        click_id=_optional_str(body.get("click_id")),
    )

    return Event(
        identity=identity,
        timestamp=now or datetime.now(timezone.utc),
        geo=geo_from_headers(headers),
        client_signals=signals,
        user_agent=ua,
        raw_headers=headers,
        raw_body=body,
    )
