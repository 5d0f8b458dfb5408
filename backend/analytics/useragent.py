"""User-agent classification into a device class and a browser family."""
from __future__ import annotations

import re
from typing import NamedTuple, Optional

# Tablet patterns are checked first: tablet user agents frequently also carry
# generic mobile tokens such as "android" or "mobile".
_TABLET_RE = re.compile(r"tablet|ipad|playbook|silk", re.IGNORECASE)
_MOBILE_RE = re.compile(
    r"mobile|iphone|ipod|android|blackberry|opera mini|iemobile", re.IGNORECASE
)

# Order matters: Edge and Opera user agents also contain "chrome", and Chrome
# user agents also contain "safari".
_BROWSER_TOKENS = (
    ("firefox", "Firefox"),
    ("edg", "Edge"),
    ("opr", "Opera"),
    ("opera", "Opera"),
    ("chrome", "Chrome"),
    ("crios", "Chrome"),
    ("safari", "Safari"),
)


class UserAgentInfo(NamedTuple):
    device: str
    browser: str


def device_type(user_agent: str) -> str:
    if _TABLET_RE.search(user_agent):
        return "tablet"
    if _MOBILE_RE.search(user_agent):
        return "mobile"
    return "desktop"


def browser_name(user_agent: str) -> str:
    ua = user_agent.lower()
    for token, name in _BROWSER_TOKENS:
        if token in ua:
            return name
    return "Other"


def classify(user_agent: Optional[str]) -> UserAgentInfo:
    """Classify a raw ``User-Agent`` header. Never fails; unknown input is a desktop "Other"."""
    user_agent = user_agent or ""
    return UserAgentInfo(device=device_type(user_agent), browser=browser_name(user_agent))
