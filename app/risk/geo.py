"""Geo/network classification of client addresses.

Resolves an origin address to a coarse trust tuple:

  known_location    the address resolved to a country in the geo database
  high_risk_region  the resolved country is on the configured deny-list
  is_private_range  RFC1918 (10/8, 172.16/12, 192.168/16) or loopback

Region lookups go through a ``GeoResolver``. The production resolver wraps a
local MaxMind mmdb file (geoip2); lookups are in-memory and never touch the
network. A failed lookup is a signal (``known_location=False``), never an error:
``classify_origin()`` does not raise for any input.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Protocol, Sequence, Union

import geoip2.database
import geoip2.errors

from app.utils.logger import get_logger

logger = get_logger(__name__)

_IPV4_MAPPED_PREFIX = "::ffff:"

_PRIVATE_NETWORKS: tuple[Union[ipaddress.IPv4Network, ipaddress.IPv6Network], ...] = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
)

_LOOPBACK_ADDRESSES: frozenset[str] = frozenset({"127.0.0.1", "::1"})


# ─── Address helpers ──────────────────────────────────────────────────────────


def normalize_address(address: Optional[str]) -> str:
    """Strip whitespace and the IPv4-mapped-IPv6 ``::ffff:`` prefix."""
    if not address:
        return ""
    address = address.strip()
    if address.lower().startswith(_IPV4_MAPPED_PREFIX):
        return address[len(_IPV4_MAPPED_PREFIX):]
    return address


def _parse(address: str) -> Optional[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]]:
    try:
        return ipaddress.ip_address(address)
    except ValueError:
        return None


def is_private_address(address: str) -> bool:
    """True for RFC1918 ranges and the loopback addresses.

    Uses CIDR containment; anything unparseable is treated as public.
    """
    if address in _LOOPBACK_ADDRESSES:
        return True
    parsed = _parse(address)
    if parsed is None:
        return False
    return any(
        parsed.version == network.version and parsed in network
        for network in _PRIVATE_NETWORKS
    )


# ─── Resolvers ────────────────────────────────────────────────────────────────


class GeoResolver(Protocol):
    """Anything that maps an address to an ISO country code (or None)."""

    def country_for(self, address: str) -> Optional[str]:
        ...


class StaticGeoResolver:
    """Resolve addresses from a fixed CIDR → country table.

    Used for internal networks that no public geo database knows about, and
    as a deterministic stand-in for the mmdb reader in tests.
    """

    def __init__(self, table: Mapping[str, str]) -> None:
        self._entries: list[tuple[Union[ipaddress.IPv4Network, ipaddress.IPv6Network], str]] = []
        for cidr, country in table.items():
            self._entries.append((ipaddress.ip_network(cidr, strict=False), country.upper()))

    def country_for(self, address: str) -> Optional[str]:
        parsed = _parse(address)
        if parsed is None:
            return None
        for network, country in self._entries:
            if parsed.version == network.version and parsed in network:
                return country
        return None


class MaxMindGeoResolver:
    """Resolve addresses with a local GeoIP2/GeoLite2 Country or City database."""

    def __init__(self, reader: geoip2.database.Reader) -> None:
        self._reader = reader
        self._is_city_db = "City" in reader.metadata().database_type

    @classmethod
    def open(cls, path: str) -> Optional["MaxMindGeoResolver"]:
        """Open an mmdb file; returns None (and logs) if it cannot be read."""
        try:
            reader = geoip2.database.Reader(path)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "geoip_database_unavailable",
                path=path,
                error=str(exc),
            )
            return None
        logger.info(
            "geoip_database_loaded",
            path=path,
            database_type=reader.metadata().database_type,
        )
        return cls(reader)

    def country_for(self, address: str) -> Optional[str]:
        try:
            if self._is_city_db:
                response = self._reader.city(address)
            else:
                response = self._reader.country(address)
        except (geoip2.errors.AddressNotFoundError, ValueError):
            return None
        return response.country.iso_code

    def close(self) -> None:
        self._reader.close()


class ChainedGeoResolver:
    """Try each resolver in order; the first non-None answer wins."""

    def __init__(self, resolvers: Iterable[GeoResolver]) -> None:
        self._resolvers: Sequence[GeoResolver] = tuple(resolvers)

    def country_for(self, address: str) -> Optional[str]:
        for resolver in self._resolvers:
            country = resolver.country_for(address)
            if country:
                return country
        return None

    def close(self) -> None:
        for resolver in self._resolvers:
            close = getattr(resolver, "close", None)
            if close is not None:
                close()


# ─── Classifier ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class OriginTrust:
    """Trust tuple for one origin address."""

    known_location: bool
    high_risk_region: bool
    is_private_range: bool
    country: Optional[str] = None


class GeoClassifier:
    """Pure classifier: address in, ``OriginTrust`` out."""

    def __init__(self, resolver: GeoResolver, high_risk_regions: Iterable[str]) -> None:
        self._resolver = resolver
        self._high_risk_regions: frozenset[str] = frozenset(
            code.upper() for code in high_risk_regions
        )

    def classify_origin(self, address: str) -> OriginTrust:
        address = normalize_address(address)
        try:
            country = self._resolver.country_for(address) if address else None
        except Exception as exc:  # noqa: BLE001
            # Absent geo data is a risk signal, not a request failure.
            logger.debug("geo_lookup_failed", error=str(exc), error_type=type(exc).__name__)
            country = None

        return OriginTrust(
            known_location=country is not None,
            high_risk_region=country is not None and country.upper() in self._high_risk_regions,
            is_private_range=is_private_address(address),
            country=country,
        )
