from datetime import datetime, timezone
from sqlalchemy import func, Date, cast
from urllib.parse import urlparse, parse_qs
from typing import NamedTuple, Optional, Union
import hashlib
import ipaddress
import logging
import os
import geoip2.database
import geoip2.errors
from user_agents import parse

import config

logger = logging.getLogger("app.classifier")

LOCALHOST_MARKER = "127.0.0.1 (localhost)"

# Proxy headers, most trusted first
CLIENT_IP_HEADERS = ("x-real-ip", "x-forwarded-for", "cf-connecting-ip", "x-client-ip")

SEARCH_ENGINES = ("google", "bing", "yahoo", "duckduckgo", "baidu", "yandex", "ecosia")
SOCIAL_NETWORKS = (
    "facebook", "instagram", "twitter", "linkedin",
    "pinterest", "youtube", "reddit", "tiktok", "whatsapp", "telegram",
)
# Matched on the registrable domain, never as a bare host label
SOCIAL_DOMAINS = ("x.com", "fb.com", "fb.me", "t.co", "lnkd.in", "youtu.be")
WEBMAIL_HOSTS = ("outlook.live.com", "outlook.office.com", "outlook.office365.com")
PAID_CLICK_PARAMS = ("gclid", "msclkid", "fbclid", "dclid")
PAID_MEDIUMS = ("cpc", "ppc", "paid", "paidsearch", "paid_social", "display", "cpm")


class DeviceInfo(NamedTuple):
    type: str
    browser: str
    os: str


UNKNOWN_DEVICE = DeviceInfo("unknown", "Unknown", "Unknown")


def get_date_expr(column, dialect_name):
    """SQLAlchemy expression truncating a UTC timestamp column to its date"""
    if dialect_name == 'sqlite':
        return func.date(column)
    return cast(column, Date)


def hash_user_agent(user_agent: Optional[str]) -> str:
    return hashlib.sha256((user_agent or "").encode("utf-8")).hexdigest()


def normalize_ip(raw_ip: Optional[str]) -> str:
    """Unwrap IPv4-mapped IPv6 addresses and collapse loopback to one marker"""
    if not raw_ip:
        return "unknown"
    candidate = raw_ip.strip()
    try:
        address = ipaddress.ip_address(candidate)
    except ValueError:
        return candidate
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        address = address.ipv4_mapped
    if address.is_loopback:
        return LOCALHOST_MARKER
    return str(address)


def get_client_ip(headers, socket_host: Optional[str] = None) -> str:
    """Resolve the client IP from proxy headers, falling back to the socket peer"""
    for header in CLIENT_IP_HEADERS:
        value = headers.get(header)
        if not value:
            continue
        if header == "x-forwarded-for":
            # X-Forwarded-For can contain a chain; the first hop is the client
            value = value.split(",")[0]
        value = value.strip()
        if value:
            return normalize_ip(value)
    return normalize_ip(socket_host)


def get_location_from_ip(ip_address: str) -> dict:
    """Get coarse location data from IP address using GeoIP2"""
    geoip_path = config.GEOIP_DB_PATH
    if not geoip_path or not os.path.exists(geoip_path):
        return {}
    try:
        with geoip2.database.Reader(geoip_path) as reader:
            response = reader.city(ip_address)
    except (geoip2.errors.AddressNotFoundError, ValueError):
        return {}
    return {
        "country": response.country.name,
        "state": response.subdivisions.most_specific.name if response.subdivisions else None,
        "city": response.city.name,
        "timezone": response.location.time_zone,
    }


def _device_type_from_substrings(user_agent: str) -> str:
    ua = user_agent.lower()
    if "mobile" in ua or "android" in ua or "iphone" in ua:
        return "mobile"
    if "tablet" in ua or "ipad" in ua:
        return "tablet"
    return "desktop"


def classify_device(user_agent: Optional[str]) -> DeviceInfo:
    """Parse user agent string to extract device type, browser, and OS.

    Never raises: empty input or a parser failure yields UNKNOWN_DEVICE.
    """
    if not user_agent or user_agent == "Unknown":
        return UNKNOWN_DEVICE
    try:
        ua = parse(user_agent)
        if ua.is_tablet:
            device_type = "tablet"
        elif ua.is_mobile:
            device_type = "mobile"
        elif ua.is_pc:
            device_type = "desktop"
        else:
            device_type = _device_type_from_substrings(user_agent)
        browser = ua.browser.family
        os_name = ua.os.family
    except Exception:
        logger.debug("User agent parse failed: %r", user_agent, exc_info=True)
        return UNKNOWN_DEVICE
    return DeviceInfo(
        type=device_type,
        browser=browser if browser and browser != "Other" else "Unknown",
        os=os_name if os_name and os_name != "Other" else "Unknown",
    )


def is_bot_agent(user_agent: Optional[str]) -> bool:
    if not user_agent:
        return False
    lowered = user_agent.lower()
    if any(marker in lowered for marker in ("bot", "crawler", "spider", "slurp", "headless")):
        return True
    try:
        return parse(user_agent).is_bot
    except Exception:
        logger.debug("Bot check failed: %r", user_agent, exc_info=True)
        return False


def _host_labels(hostname: str):
    return hostname.split(".")


def _on_domain(hostname: str, domains) -> bool:
    return any(hostname == domain or hostname.endswith("." + domain) for domain in domains)


def _source_from_landing(landing_path: Optional[str]) -> Optional[str]:
    if not landing_path or "?" not in landing_path:
        return None
    params = parse_qs(urlparse(landing_path).query)
    if any(name in params for name in PAID_CLICK_PARAMS):
        return "paid"
    medium = (params.get("utm_medium") or [""])[0].lower()
    if medium in PAID_MEDIUMS:
        return "paid"
    if medium == "email":
        return "email"
    return None


def classify_referrer(referrer: Optional[str], landing_path: Optional[str] = None,
                      site_host: Optional[str] = None) -> str:
    """Classify a visit's traffic source from its referrer URL and landing URL.

    Empty, same-origin and unparseable referrers count as direct traffic.
    """
    campaign = _source_from_landing(landing_path)
    if campaign:
        return campaign

    if not referrer or referrer.strip().lower() == "direct":
        return "direct"

    try:
        parsed = urlparse(referrer.strip())
        hostname = (parsed.hostname or "").lower()
    except ValueError:
        return "direct"

    if not hostname:
        return "direct"
    if parsed.scheme not in ("http", "https"):
        return "other"

    site_host = (site_host or config.SITE_HOST or "").lower()
    if site_host and (hostname == site_host or hostname == "www." + site_host):
        return "direct"

    labels = _host_labels(hostname)
    if any(engine in labels for engine in SEARCH_ENGINES):
        return "organic"
    if _on_domain(hostname, SOCIAL_DOMAINS) or any(network in labels for network in SOCIAL_NETWORKS):
        return "social"
    if hostname in WEBMAIL_HOSTS or "mail" in hostname or "email" in hostname:
        return "email"
    return "referral"


def parse_language(accept_language: Optional[str]) -> str:
    if not accept_language:
        return "en"
    first = accept_language.split(",")[0].split(";")[0].strip().lower()
    return first or "en"


def utc_now() -> datetime:
    return datetime.utcnow()


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO timestamp into a naive UTC datetime; None when invalid"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
