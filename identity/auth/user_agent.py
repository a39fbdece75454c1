"""
Identity Backend - User-Agent Classification

Best-effort device, browser and OS detection from a raw User-Agent header.
Anything unrecognized is reported as "Unknown"; an absent header yields the
"unknown" device type.
"""

import re
from typing import Optional

from pydantic import BaseModel

UNKNOWN = "Unknown"

# Order matters: Edge and Opera also advertise Chrome, Chrome advertises Safari.
_BROWSERS = [
    ("Edge", re.compile(r"Edg(?:e|A|iOS)?/([\d.]+)")),
    ("Opera", re.compile(r"(?:OPR|Opera)/([\d.]+)")),
    ("Samsung Internet", re.compile(r"SamsungBrowser/([\d.]+)")),
    ("Chrome", re.compile(r"(?:Chrome|CriOS)/([\d.]+)")),
    ("Firefox", re.compile(r"(?:Firefox|FxiOS)/([\d.]+)")),
    ("Safari", re.compile(r"Version/([\d.]+).*Safari/")),
]

_OPERATING_SYSTEMS = [
    ("iOS", re.compile(r"(?:iPhone|CPU) OS ([\d_]+)")),
    ("Android", re.compile(r"Android ([\d.]+)")),
    ("Windows", re.compile(r"Windows NT ([\d.]+)")),
    ("Mac OS", re.compile(r"Mac OS X ([\d_.]+)")),
    ("Chrome OS", re.compile(r"CrOS \S+ ([\d.]+)")),
    ("Linux", re.compile(r"Linux()")),
]

_TABLET = re.compile(r"iPad|Tablet|PlayBook|Silk|Android(?!.*Mobile)", re.IGNORECASE)
_MOBILE = re.compile(r"Mobi|iPhone|iPod|Android.*Mobile|Windows Phone", re.IGNORECASE)

_VENDORS = [
    ("Apple", re.compile(r"iPhone|iPad|iPod|Macintosh")),
    ("Samsung", re.compile(r"SM-|Samsung", re.IGNORECASE)),
    ("Huawei", re.compile(r"Huawei|HUAWEI")),
    ("Xiaomi", re.compile(r"Xiaomi|Redmi|\bMi ")),
    ("Google", re.compile(r"Pixel")),
]


class DeviceInfo(BaseModel):
    type: str = "unknown"
    browser: str = UNKNOWN
    browser_version: str = UNKNOWN
    os: str = UNKNOWN
    os_version: str = UNKNOWN
    platform: str = UNKNOWN


def _match(table, user_agent: str):
    for name, pattern in table:
        found = pattern.search(user_agent)
        if found:
            version = found.group(1) if found.groups() else ""
            return name, version.replace("_", ".") or UNKNOWN
    return UNKNOWN, UNKNOWN


def parse_user_agent(user_agent: Optional[str]) -> DeviceInfo:
    """
    Classify a User-Agent string.

    Example:
        >>> parse_user_agent("Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) "
        ...                  "AppleWebKit/605.1.15 Version/17.1 Mobile/15E148 Safari/604.1").type
        'mobile'
    """
    if not user_agent or user_agent.strip().lower() == "unknown":
        return DeviceInfo()

    if _TABLET.search(user_agent):
        device_type = "tablet"
    elif _MOBILE.search(user_agent):
        device_type = "mobile"
    else:
        device_type = "desktop"

    browser, browser_version = _match(_BROWSERS, user_agent)
    os_name, os_version = _match(_OPERATING_SYSTEMS, user_agent)
    platform, _ = next(
        ((name, None) for name, pattern in _VENDORS if pattern.search(user_agent)),
        (UNKNOWN, None),
    )

    return DeviceInfo(
        type=device_type,
        browser=browser,
        browser_version=browser_version,
        os=os_name,
        os_version=os_version,
        platform=platform,
    )
