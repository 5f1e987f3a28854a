"""
Catalog of well-known device variables.

Each entry names a variable templates commonly rely on, with its type, an
example value, a normalizer, and whether it is required (always, or only
when other variables make it so). Normalizers raise ``ValueError`` with a
message fit for the API caller, the same way the request schemas do.
"""

import re
from dataclasses import dataclass
from ipaddress import IPv4Address, IPv4Network, IPv6Address, AddressValueError, NetmaskValueError
from typing import Callable, Mapping, Optional

HOSTNAME_RE = re.compile(
    r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?(?:\.[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?)*$"
)
TIMEZONE_RE = re.compile(r"^[A-Za-z]+(?:/[A-Za-z0-9_\-+]+)+$")
IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

VALID_WAN_PROTOS = ("dhcp", "static", "pppoe")
VALID_WIFI_BANDS = ("2g", "5g", "6g")
VALID_WIFI_ENCRYPTIONS = ("psk2", "psk-mixed", "sae")


@dataclass(frozen=True)
class VarDef:
    key: str
    type: str  # string | bool | int | list | ipv4 | ipv6
    example: str
    normalize: Callable[[str], str]
    required: bool = False
    requires: Optional[Callable[[Mapping[str, str]], bool]] = None

    def is_required(self, values: Mapping[str, str]) -> bool:
        if self.required:
            return True
        return self.requires is not None and self.requires(values)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "type": self.type,
            "example": self.example,
            "required": self.required,
            "conditional": self.requires is not None,
        }


# ── Normalizers ──────────────────────────────────────────────────────

def _strip(value: str) -> str:
    return value.strip()


def _hostname(value: str) -> str:
    s = value.strip().lower()
    if not s or len(s) > 253 or not HOSTNAME_RE.match(s):
        raise ValueError(
            f"Invalid hostname '{value}'. Use letters, digits and hyphens, "
            "dot-separated labels of at most 63 characters"
        )
    return s


def _timezone(value: str) -> str:
    s = value.strip()
    if not s or len(s) > 128 or not TIMEZONE_RE.match(s):
        raise ValueError(f"Invalid timezone '{value}'. Expected Area/City, e.g. Europe/Rome")
    return s


def _bool(value: str) -> str:
    s = value.strip().lower()
    if s in ("1", "true", "yes", "on"):
        return "1"
    if s in ("0", "false", "no", "off"):
        return "0"
    raise ValueError(f"Invalid boolean '{value}'. Use 1/0, true/false, yes/no or on/off")


def _int_range(low: int, high: int, allow_auto: bool = False) -> Callable[[str], str]:
    def normalize(value: str) -> str:
        s = value.strip().lower()
        if allow_auto and s in ("", "auto"):
            return "auto"
        try:
            n = int(s)
        except ValueError:
            raise ValueError(f"Invalid integer '{value}'")
        if n < low or n > high:
            raise ValueError(f"Integer {n} out of range [{low}..{high}]")
        return str(n)
    return normalize


def _ipv4(value: str) -> str:
    try:
        return str(IPv4Address(value.strip()))
    except AddressValueError:
        raise ValueError(f"Invalid IPv4 address '{value}'")


def _ipv6(value: str) -> str:
    try:
        return str(IPv6Address(value.strip()))
    except AddressValueError:
        raise ValueError(f"Invalid IPv6 address '{value}'")


def _netmask(value: str) -> str:
    """Accept a dotted mask or a prefix length and return the dotted mask."""
    s = value.strip().lstrip("/")
    try:
        return str(IPv4Network(f"0.0.0.0/{s}").netmask)
    except (AddressValueError, NetmaskValueError, ValueError):
        raise ValueError(f"Invalid netmask '{value}'. Use 255.255.255.0 or a prefix length like 24")


def _list(value: str) -> str:
    parts = [p.strip() for p in re.split(r"[,\r\n]", value)]
    parts = [p for p in parts if p]
    if not parts:
        raise ValueError("List must contain at least one item")
    return ",".join(parts)


def _choice(key: str, allowed: tuple[str, ...]) -> Callable[[str], str]:
    def normalize(value: str) -> str:
        s = value.strip().lower()
        if s not in allowed:
            raise ValueError(f"{key} must be one of: {'|'.join(allowed)}")
        return s
    return normalize


def _country(value: str) -> str:
    s = value.strip().upper()
    if len(s) != 2 or not s.isalpha():
        raise ValueError("Country must be an ISO 3166-1 alpha-2 code, e.g. IT")
    return s


def _ssid(value: str) -> str:
    s = value.strip()
    if not s:
        raise ValueError("SSID cannot be empty")
    if len(s.encode("utf-8")) > 32:
        raise ValueError("SSID is limited to 32 bytes")
    return s


def _psk(value: str) -> str:
    s = value.strip()
    if not 8 <= len(s) <= 63:
        raise ValueError("Wi-Fi passphrase must be 8..63 characters")
    return s


def _static_wan(values: Mapping[str, str]) -> bool:
    return values.get("wan_proto") == "static"


def _ipv6_enabled(values: Mapping[str, str]) -> bool:
    return values.get("ipv6_enable") == "1"


CATALOG: list[VarDef] = [
    # System
    VarDef("hostname", "string", "branch-ap-01", _hostname, required=True),
    VarDef("timezone", "string", "Europe/Rome", _timezone),
    # Uplink
    VarDef("wan_proto", "string", "dhcp|static|pppoe", _choice("wan_proto", VALID_WAN_PROTOS), required=True),
    VarDef("wan_iface", "string", "eth0", _strip),
    VarDef("ipv4_address", "ipv4", "10.100.0.2", _ipv4, requires=_static_wan),
    VarDef("ipv4_netmask", "ipv4", "255.255.255.0", _netmask, requires=_static_wan),
    VarDef("ipv4_gateway", "ipv4", "10.100.0.1", _ipv4, requires=_static_wan),
    VarDef("dns_servers", "list", "1.1.1.1,8.8.8.8", _list),
    # IPv6
    VarDef("ipv6_enable", "bool", "1", _bool),
    VarDef("ipv6_address", "ipv6", "2001:db8::2", _ipv6, requires=_ipv6_enabled),
    VarDef("ipv6_prefixlen", "int", "64", _int_range(0, 128)),
    VarDef("ipv6_gateway", "ipv6", "fe80::1", _ipv6),
    VarDef("dns6_servers", "list", "2606:4700:4700::1111", _list),
    # LAN / VLAN
    VarDef("lan_iface", "string", "br-lan", _strip),
    VarDef("lan_vlan_id", "int", "1", _int_range(1, 4094)),
    VarDef("mgmt_vlan_id", "int", "10", _int_range(1, 4094)),
    # Services
    VarDef("ntp_servers", "list", "pool.ntp.org,time.cloudflare.com", _list),
    VarDef("syslog_server", "string", "10.0.0.10", _strip),
    VarDef("ssh_authorized_keys", "list", "ssh-ed25519 AAAA...", _list),
    # Wi-Fi
    VarDef("wifi_country", "string", "IT", _country),
    VarDef("wifi_band", "string", "2g|5g|6g", _choice("wifi_band", VALID_WIFI_BANDS)),
    VarDef("wifi_channel", "int", "auto|1..196", _int_range(1, 196, allow_auto=True)),
    VarDef("wifi_htmode", "string", "HT20|VHT40|HE80", _strip),
    VarDef("wifi_ssid", "string", "CorpWiFi", _ssid),
    VarDef("wifi_encryption", "string", "psk2|psk-mixed|sae", _choice("wifi_encryption", VALID_WIFI_ENCRYPTIONS)),
    VarDef("wifi_psk", "string", "********", _psk),
]

_BY_KEY = {d.key: d for d in CATALOG}


def get_def(key: str) -> Optional[VarDef]:
    return _BY_KEY.get(key)


def normalize(key: str, value: str, strict: bool = False) -> str:
    """
    Validate one variable and return its stored form.

    Catalog keys go through their normalizer. Other keys must be plain
    identifiers and are stored as given, unless ``strict`` rejects them.
    """
    if not isinstance(key, str) or not IDENTIFIER_RE.match(key):
        raise ValueError(
            f"Invalid variable name '{key}'. "
            "Use letters, digits and underscores, not starting with a digit"
        )
    if value is None:
        raise ValueError("Value is required")
    value = str(value)

    definition = _BY_KEY.get(key)
    if definition is None:
        if strict:
            raise ValueError(f"Unknown variable '{key}'")
        return value
    return definition.normalize(value)


def missing_required(values: Mapping[str, str]) -> list[str]:
    """Catalog keys that ``values`` needs but lacks, in catalog order."""
    missing = []
    for definition in CATALOG:
        if definition.is_required(values) and not str(values.get(definition.key, "")).strip():
            missing.append(definition.key)
    return missing
