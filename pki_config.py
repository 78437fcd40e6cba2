import enum
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pki_errors import ConfigCorrupt, IOFailure
from pki_paths import config_path
from pki_subject import SUBJECT_FIELDS, Subject
from pki_utils import write_text_atomic

logger = logging.getLogger(__name__)

DEFAULT_KEY_SIZE = 2048
DEFAULT_VALID_DAYS = 3650
DEFAULT_EC_CURVE = "secp384r1"
DEFAULT_ED_CURVE = "ED25519"
DEFAULT_PORT = 1194
DEFAULT_PROTO = "udp"
PROTOCOLS = ("udp", "tcp")

_KNOWN_KEYS = {
    "algorithm",
    "keysize",
    "validdays",
    "serial",
    "eccurve",
    "suffix",
    "server",
    "port",
    "proto",
    "redirect",
    "dns",
    *SUBJECT_FIELDS,
}


class Algorithm(enum.IntEnum):
    RSA = 0
    ECDSA = 1
    EdDSA = 2

    @classmethod
    def from_name(cls, name: str) -> "Algorithm":
        for member in cls:
            if member.name.lower() == name.lower():
                return member
        raise ValueError(f"Unknown algorithm '{name}'")


def default_curve(algorithm: Algorithm) -> str:
    if algorithm == Algorithm.EdDSA:
        return DEFAULT_ED_CURVE
    return DEFAULT_EC_CURVE


def validate_port(port: int) -> int:
    if not 0 < port < 65535:
        raise ValueError(f"Port {port} is out of range")
    return port


@dataclass
class NetworkSettings:
    server: str = ""
    port: int = DEFAULT_PORT
    proto: str = DEFAULT_PROTO
    redirect: bool = True
    dns: list[str] = field(default_factory=list)


@dataclass
class PKIConfig:
    # serial is the value the next certificate gets, extra keeps unknown keys
    subject: Subject
    network: NetworkSettings = field(default_factory=NetworkSettings)
    algorithm: Algorithm = Algorithm.RSA
    key_size: int = DEFAULT_KEY_SIZE
    ec_curve: str = DEFAULT_EC_CURVE
    valid_days: int = DEFAULT_VALID_DAYS
    serial: int = 0
    suffix: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data.update(self.subject.to_dict())
        data.update(
            {
                "algorithm": int(self.algorithm),
                "keysize": self.key_size,
                "validdays": self.valid_days,
                "serial": self.serial,
                "eccurve": self.ec_curve,
                "suffix": self.suffix,
                "server": self.network.server,
                "port": self.network.port,
                "proto": self.network.proto,
                "redirect": self.network.redirect,
                "dns": list(self.network.dns),
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PKIConfig":
        subject = Subject.from_dict(data)
        if subject is None:
            raise ConfigCorrupt("Failed to load subject from config")
        if "serial" not in data:
            raise ConfigCorrupt("Failed to load serial from config")

        try:
            algorithm = Algorithm(int(data.get("algorithm", Algorithm.RSA)))
        except (TypeError, ValueError):
            algorithm = Algorithm.RSA

        try:
            serial = int(data["serial"])
            key_size = int(data.get("keysize", DEFAULT_KEY_SIZE))
            valid_days = int(data.get("validdays", DEFAULT_VALID_DAYS))
            port = validate_port(int(data.get("port", DEFAULT_PORT)))
        except (TypeError, ValueError) as exc:
            raise ConfigCorrupt(f"Invalid numeric value in config: {exc}") from exc
        if serial < 0:
            raise ConfigCorrupt("Serial in config is negative")

        proto = str(data.get("proto", DEFAULT_PROTO)).lower()
        if proto not in PROTOCOLS:
            raise ConfigCorrupt(f"Unknown protocol '{proto}' in config")

        dns = data.get("dns") or []
        if not isinstance(dns, list) or not all(isinstance(entry, str) for entry in dns):
            raise ConfigCorrupt("DNS entries in config must be a list of strings")

        redirect = data.get("redirect", True)
        if not isinstance(redirect, bool):
            raise ConfigCorrupt("redirect in config must be true or false")

        curve = data.get("eccurve") or default_curve(algorithm)
        network = NetworkSettings(
            server=str(data.get("server") or ""),
            port=port,
            proto=proto,
            redirect=redirect,
            dns=list(dns),
        )
        return cls(
            subject=subject,
            network=network,
            algorithm=algorithm,
            key_size=key_size,
            ec_curve=str(curve),
            valid_days=valid_days,
            serial=serial,
            suffix=str(data.get("suffix") or ""),
            extra={key: value for key, value in data.items() if key not in _KNOWN_KEYS},
        )


def load_config(root: Path) -> PKIConfig | None:
    path = config_path(root)
    if not path.exists():
        return None
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise IOFailure(f"Failed to read config at {path}: {exc}") from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigCorrupt(f"Failed to load config at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigCorrupt(f"Failed to load config at {path}: not a JSON object")
    return PKIConfig.from_dict(data)


def save_config(root: Path, config: PKIConfig) -> None:
    path = config_path(root)
    write_text_atomic(path, json.dumps(config.to_dict(), indent=2) + "\n")
    logger.debug("Saved config to %s (serial=%d)", path, config.serial)


def next_serial(config: PKIConfig) -> int:
    serial = config.serial
    config.serial += 1
    return serial
