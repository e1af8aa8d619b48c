"""
Client classification.

Some mobile browsers (iOS Safari in particular) silently drop background
network sessions and occasionally fail a request that would succeed a moment
later. Those clients get retries during identity resolution and a session
continuity watchdog; everyone else fails fast and is never monitored.
"""

import re
from typing import Optional

CLIENT_CLASS_HEADER = "x-client-class"

UNRELIABLE_CLIENT_HINTS = frozenset({"unreliable", "ios-safari"})

_IOS_DEVICE = re.compile(r"iPad|iPhone|iPod")
_SAFARI = re.compile(r"Safari")
_OTHER_IOS_BROWSER = re.compile(r"Chrome|CriOS|FxiOS")


def is_ios(user_agent: Optional[str]) -> bool:
    """Any browser on an iOS device."""
    return bool(user_agent) and bool(_IOS_DEVICE.search(user_agent))


def is_ios_safari(user_agent: Optional[str]) -> bool:
    """Safari proper on iOS; Chrome and Firefox for iOS are excluded."""
    if not is_ios(user_agent):
        return False
    return bool(_SAFARI.search(user_agent)) and not _OTHER_IOS_BROWSER.search(user_agent)


def is_unreliable_client(
    user_agent: Optional[str],
    client_hint: Optional[str] = None,
) -> bool:
    """
    Whether the caller belongs to a client class known to drop requests.

    An explicit client-class hint wins over user-agent sniffing, but only in
    the unreliable direction: a hint can never exempt an iOS Safari client.
    """
    if client_hint and client_hint.strip().lower() in UNRELIABLE_CLIENT_HINTS:
        return True
    return is_ios_safari(user_agent)
