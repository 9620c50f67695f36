"""Client fingerprint analysis from the User-Agent descriptor.

``analyze_descriptor()`` never raises: a missing or blank descriptor yields
``ClientFingerprint(present=False)`` and anything ``user_agents`` cannot make
sense of falls through to the conservative defaults (desktop, non-browser).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from user_agents import parse as parse_user_agent

from app.constants import DEFAULT_SCRIPTED_SIGNATURES

DEVICE_DESKTOP = "desktop"
DEVICE_MOBILE = "mobile"
DEVICE_OTHER = "other"

# Engine tokens every mainstream browser still sends.
_BROWSER_ENGINE_TOKENS: tuple[str, ...] = ("mozilla/", "opera/")

# Consoles, TVs, wearables and embedded devices.
_NON_STANDARD_DEVICE_TOKENS: tuple[str, ...] = (
    "playstation",
    "xbox",
    "nintendo",
    "smarttv",
    "smart-tv",
    "tizen",
    "web0s",
    "webos",
    "appletv",
    "crkey",
    "roku",
    "watch",
    "wearable",
)


@dataclass(frozen=True)
class ClientFingerprint:
    present: bool
    device_class: str = DEVICE_DESKTOP
    is_browser: bool = False
    is_scripted: bool = False
    browser_family: Optional[str] = None


class FingerprintAnalyzer:
    """Classify descriptors against a configurable automation signature list."""

    def __init__(self, scripted_signatures: Iterable[str] = DEFAULT_SCRIPTED_SIGNATURES) -> None:
        self._signatures: tuple[str, ...] = tuple(
            signature.lower() for signature in scripted_signatures if signature
        )

    def analyze_descriptor(self, descriptor: Optional[str]) -> ClientFingerprint:
        if descriptor is None or not descriptor.strip():
            return ClientFingerprint(present=False)

        lowered = descriptor.lower()
        agent = parse_user_agent(descriptor)

        return ClientFingerprint(
            present=True,
            device_class=self._device_class(agent, lowered),
            is_browser=(
                agent.browser.family != "Other"
                and not agent.is_bot
                and any(token in lowered for token in _BROWSER_ENGINE_TOKENS)
            ),
            is_scripted=any(signature in lowered for signature in self._signatures),
            browser_family=agent.browser.family,
        )

    @staticmethod
    def _device_class(agent, lowered: str) -> str:
        if agent.is_mobile:
            return DEVICE_MOBILE
        if agent.is_tablet or any(token in lowered for token in _NON_STANDARD_DEVICE_TOKENS):
            return DEVICE_OTHER
        # Unrecognised devices (bots and CLI tools included) count as desktop.
        return DEVICE_DESKTOP
