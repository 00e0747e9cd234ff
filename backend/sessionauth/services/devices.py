from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from user_agents import parse as parse_user_agent

# What the parser reports when it can't identify a family.
_UNKNOWN = {"", "other", "generic smartphone", "generic feature phone", "generic tablet"}


def _clean(value: Optional[str], limit: int = 100) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if value.lower() in _UNKNOWN:
        return None
    return value[:limit]


@dataclass(frozen=True)
class DeviceInfo:
    """Observed client fingerprint for one request."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_type: Optional[str] = None
    device_name: Optional[str] = None
    browser: Optional[str] = None
    os: Optional[str] = None

    @classmethod
    def from_client(cls, ip_address: Optional[str], user_agent: Optional[str]) -> "DeviceInfo":
        ua = (user_agent or "").strip()[:512] or None
        if ua is None:
            return cls(ip_address=ip_address)

        parsed = parse_user_agent(ua)
        if parsed.is_tablet:
            device_type = "tablet"
        elif parsed.is_mobile:
            device_type = "mobile"
        else:
            device_type = None

        return cls(
            ip_address=ip_address,
            user_agent=ua,
            device_type=device_type,
            device_name=_clean(parsed.device.model),
            browser=_clean(parsed.browser.family),
            os=_clean(parsed.os.family),
        )
