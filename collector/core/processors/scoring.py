"""
Proxy/VPN likelihood scoring.

Contains the additive rule set that turns an event's declared locale,
its geo/ASN headers and its reverse-DNS hostname into a 0-100 score.
The rule set is pure; ``ScoringEngine`` adds the bounded rDNS lookup.
"""

from typing import List, Optional

import structlog

from collector.core.models.events import Event, GeoInfo, ScoreResult, ScoreTier
from collector.core.utils.metrics import SCORE_DISTRIBUTION

logger = structlog.get_logger(__name__)

REFERENCE_COUNTRY = "US"
REFERENCE_LANGUAGE = "en"

REFERENCE_TIMEZONES = frozenset([
    "America/Los_Angeles",
    "America/Denver",
    "America/Chicago",
    "America/New_York",
    "America/Phoenix",
    "America/Anchorage",
    "Pacific/Honolulu",
])

ENGLISH_DOMINANT_COUNTRIES = frozenset(["GB", "CA", "AU", "NZ", "IE"])

VPN_ASN_HINTS = (
    "m247", "ovh", "digitalocean", "linode", "choopa", "contabo", "hetzner",
    "leaseweb", "vultr", "azure", "amazon", "aws", "google", "gcp",
    "cloudflare", "warp", "mullvad", "proton", "surfshark", "windscribe",
    "airvpn", "privateinternetaccess", "hivelocity", "nocix", "colo",
)

VPN_RDNS_HINTS = (
    "vpn", "proxy", "m247", "ovh", "aws", "amazonaws", "compute", "google",
    "gcp", "cloud", "azure", "linode", "digitalocean", "mullvad", "proton",
    "surfshark", "windscribe", "airvpn", "piavpn", "leaseweb", "contabo",
    "choopa", "colo", "nocix",
)

TIMEZONE_MISMATCH_POINTS = 20
NON_EN_IN_REFERENCE_POINTS = 10
EN_OUTSIDE_DOMINANT_POINTS = 5
ASN_HINT_POINTS = 35
RDNS_HINT_POINTS = 35


def _clamp(value: int, low: int = 0, high: int = 100) -> int:
    return max(low, min(high, value))


def compute_score(event: Event, geo: Optional[GeoInfo] = None, hostname: str = "") -> ScoreResult:
    """
    Score an event against the proxy/VPN rule set.

    Args:
        event: Decoded beacon event
        geo: Geo/ASN facts (defaults to ``event.geo``)
        hostname: Reverse-DNS hostname, empty if unknown

    Returns:
        ScoreResult with reasons in rule evaluation order
    """
    geo = geo or event.geo
    country = (geo.country_code or "").upper()
    timezone_name = event.timezone_name
    language = event.language.lower()
    asn = geo.asn or ""
    hostname = hostname or ""

    score = 0
    reasons: List[str] = []

    if timezone_name and country:
        tz_in_reference = timezone_name in REFERENCE_TIMEZONES
        if (country != REFERENCE_COUNTRY and tz_in_reference) or (country == REFERENCE_COUNTRY and not tz_in_reference):
            score += TIMEZONE_MISMATCH_POINTS
            reasons.append("Timezone vs country mismatch")

    if language and country:
        speaks_reference = language.startswith(REFERENCE_LANGUAGE)
        if country == REFERENCE_COUNTRY and not speaks_reference:
            score += NON_EN_IN_REFERENCE_POINTS
            reasons.append("Non-EN language in US")
        if country != REFERENCE_COUNTRY and speaks_reference and country not in ENGLISH_DOMINANT_COUNTRIES:
            score += EN_OUTSIDE_DOMINANT_POINTS
            reasons.append("English outside EN-dominant country")

    asn_lower = asn.lower()
    if asn_lower and any(hint in asn_lower for hint in VPN_ASN_HINTS):
        score += ASN_HINT_POINTS
        reasons.append(f"ASN: {asn}")

    hostname_lower = hostname.lower()
    if hostname_lower and any(hint in hostname_lower for hint in VPN_RDNS_HINTS):
        score += RDNS_HINT_POINTS
        reasons.append(f"rDNS: {hostname}")

    score = _clamp(score)

    return ScoreResult(
        score=score,
        tier=ScoreTier.for_score(score),
        reasons=reasons,
        reverse_dns_hostname=hostname,
        asn=asn,
    )


class ScoringEngine:
    """Score events, resolving the client's reverse DNS under a deadline."""

    def __init__(self, resolver=None, rdns_timeout_ms: Optional[int] = None):
        """
        Args:
            resolver: Object exposing ``resolve(ip, timeout_ms) -> str``; None disables rDNS
            rdns_timeout_ms: Deadline passed to the resolver
        """
        self.resolver = resolver
        self.rdns_timeout_ms = rdns_timeout_ms

    def lookup_hostname(self, ip: str) -> str:
        if self.resolver is None:
            return ""
        try:
            return self.resolver.resolve(ip, self.rdns_timeout_ms) or ""
        except Exception as e:
            logger.warning("Reverse DNS resolver raised", ip=ip, error=str(e))
            return ""

    def score(self, event: Event, geo: Optional[GeoInfo] = None) -> ScoreResult:
        hostname = self.lookup_hostname(event.identity.ip)
        result = compute_score(event, geo, hostname)

        SCORE_DISTRIBUTION.observe(result.score)
        logger.debug("Event scored",
                    key=event.key,
                    score=result.score,
                    tier=result.tier.value,
                    reasons=result.reasons)
        return result
