"""
User-Agent Classification

Best-effort regex sniffing of browser, OS and device type.

Each category is an ordered table of (label, pattern); the first match
wins. This is heuristic by nature and is tested against a fixed corpus.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

UNKNOWN = "unknown"

# Edge and Chrome UAs also carry "Safari/"; more specific tokens go first.
BROWSER_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("edge", re.compile(r"Edg(?:e|A|iOS)?/([0-9.]+)", re.I)),
    ("chrome", re.compile(r"(?:Chrome|CriOS)/([0-9.]+)", re.I)),
    ("firefox", re.compile(r"(?:Firefox|FxiOS)/([0-9.]+)", re.I)),
    ("safari", re.compile(r"Safari/([0-9.]+)", re.I)),
]

# Android UAs contain "Linux" and iOS UAs contain "like Mac OS X".
OS_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("windows", re.compile(r"Windows NT ([0-9.]+)", re.I)),
    ("android", re.compile(r"Android ([0-9.]+)", re.I)),
    ("ios", re.compile(r"(?:iPhone|iPad|iPod).*?OS ([0-9_]+)", re.I)),
    ("macos", re.compile(r"Mac OS X ([0-9_.]+)", re.I)),
    ("linux", re.compile(r"Linux", re.I)),
]

DEVICE_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("tablet", re.compile(r"iPad|Tablet", re.I)),
    ("mobile", re.compile(r"Mobile|Android|iPhone", re.I)),
    ("desktop", re.compile(r"Windows|Mac|Linux", re.I)),
]


@dataclass(frozen=True)
class DeviceInfo:
    """Classification result for one user-agent string."""
    browser: str = UNKNOWN
    browser_version: str = ""
    operating_system: str = UNKNOWN
    os_version: str = ""
    device_type: str = UNKNOWN
    user_agent: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "browser": self.browser,
            "browser_version": self.browser_version,
            "operating_system": self.operating_system,
            "os_version": self.os_version,
            "device_type": self.device_type,
            "user_agent": self.user_agent,
        }


def _first_match(
    table: List[Tuple[str, re.Pattern]],
    user_agent: str,
) -> Tuple[str, str]:
    for label, pattern in table:
        match = pattern.search(user_agent)
        if match:
            version = match.group(1) if match.groups() else ""
            return label, version or ""
    return UNKNOWN, ""


def parse_user_agent(user_agent: Optional[str]) -> DeviceInfo:
    """
    Classify a user-agent string.

    Args:
        user_agent: Raw header value, may be None or empty

    Returns:
        DeviceInfo; all fields unknown/empty when there is no UA
    """
    if not user_agent:
        return DeviceInfo()

    browser, browser_version = _first_match(BROWSER_PATTERNS, user_agent)
    operating_system, os_version = _first_match(OS_PATTERNS, user_agent)
    device_type, _ = _first_match(DEVICE_PATTERNS, user_agent)

    return DeviceInfo(
        browser=browser,
        browser_version=browser_version,
        operating_system=operating_system,
        os_version=os_version.replace("_", "."),
        device_type=device_type,
        user_agent=user_agent,
    )
