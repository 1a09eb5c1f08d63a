"""User-agent parsing for login session metadata."""

import re
from typing import Optional

from src.models.session import ClientMetadata

UNKNOWN = "Unknown"

_VERSION_PATTERNS = {
    "Edge": r"Edg/([\d.]+)",
    "Chrome": r"Chrome/([\d.]+)",
    "Safari": r"Version/([\d.]+)",
    "Firefox": r"Firefox/([\d.]+)",
    "Opera": r"(?:Opera|OPR)/([\d.]+)",
    "Internet Explorer": r"(?:MSIE |rv:)([\d.]+)",
}

_WINDOWS_VERSIONS = [
    ("Windows NT 10.0", "Windows 10"),
    ("Windows NT 11.0", "Windows 11"),
    ("Windows NT 6.3", "Windows 8.1"),
    ("Windows NT 6.2", "Windows 8"),
    ("Windows NT 6.1", "Windows 7"),
]


def detect_browser(user_agent: str) -> str:
    # Order matters: Edge and Opera also advertise Chrome, Chrome advertises Safari
    if "Edg/" in user_agent:
        return "Edge"
    if "OPR/" in user_agent or "Opera" in user_agent:
        return "Opera"
    if "Chrome/" in user_agent:
        return "Chrome"
    if "Safari/" in user_agent:
        return "Safari"
    if "Firefox/" in user_agent:
        return "Firefox"
    if "MSIE" in user_agent or "Trident/" in user_agent:
        return "Internet Explorer"
    return UNKNOWN


def detect_browser_version(user_agent: str, browser: str) -> str:
    pattern = _VERSION_PATTERNS.get(browser)
    if pattern is None:
        return UNKNOWN
    match = re.search(pattern, user_agent)
    return match.group(1) if match else UNKNOWN


def detect_operating_system(user_agent: str) -> str:
    for marker, name in _WINDOWS_VERSIONS:
        if marker in user_agent:
            return name

    # iOS user agents also contain "like Mac OS X"
    if "iPhone" in user_agent or "iPad" in user_agent:
        match = re.search(r"OS ([\d_]+)", user_agent)
        return f"iOS {match.group(1).replace('_', '.')}" if match else "iOS"

    if "Mac OS X" in user_agent:
        match = re.search(r"Mac OS X ([\d_]+)", user_agent)
        return f"Mac OS X {match.group(1).replace('_', '.')}" if match else "Mac OS X"

    if "Android" in user_agent:
        match = re.search(r"Android ([\d.]+)", user_agent)
        return f"Android {match.group(1)}" if match else "Android"

    if "Ubuntu" in user_agent:
        return "Ubuntu"
    if "Linux" in user_agent:
        return "Linux"
    return UNKNOWN


def detect_device(user_agent: str) -> str:
    for apple_device in ("iPhone", "iPad", "iPod"):
        if apple_device in user_agent:
            return apple_device

    match = re.search(r"Android.*?;\s*([^;]*?)\s+Build", user_agent)
    if match:
        return match.group(1)

    match = re.search(r"(SM-[A-Z0-9]+)", user_agent)
    if match:
        return match.group(1)

    if any(desktop in user_agent for desktop in ("Windows", "Macintosh", "Linux")):
        return "Desktop"
    return UNKNOWN


def detect_device_type(user_agent: str) -> str:
    if "iPad" in user_agent or "Tablet" in user_agent:
        return "Tablet"
    if any(mobile in user_agent for mobile in ("Mobile", "Android", "iPhone", "iPod")):
        return "Mobile"
    return "Desktop"


def parse_client_metadata(
    user_agent: Optional[str], ip_address: Optional[str] = None
) -> ClientMetadata:
    """Build session client metadata from the request's user agent and address."""
    if not user_agent:
        return ClientMetadata(ip_address=ip_address, user_agent=user_agent)

    browser = detect_browser(user_agent)
    return ClientMetadata(
        ip_address=ip_address,
        user_agent=user_agent,
        browser=browser,
        browser_version=detect_browser_version(user_agent, browser),
        operating_system=detect_operating_system(user_agent),
        device=detect_device(user_agent),
        device_type=detect_device_type(user_agent),
    )
