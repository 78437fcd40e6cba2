import os
from pathlib import Path

DEFAULT_PKI_DIR = Path(os.environ.get("OPENVPN_PKI_DIR", "."))

CA_NAME = "ca"
SERVER_NAME = "server"
BUNDLE_SUFFIX = ".visz"


def config_path(root: Path) -> Path:
    return root / "config.conf"


def pki_dir(root: Path) -> Path:
    return root / "pki"


def cert_path(root: Path, name: str) -> Path:
    return pki_dir(root) / f"{name}.crt"


def key_path(root: Path, name: str) -> Path:
    return pki_dir(root) / f"{name}.key"


def ca_cert_path(root: Path) -> Path:
    return cert_path(root, CA_NAME)


def ca_key_path(root: Path) -> Path:
    return key_path(root, CA_NAME)


def crl_path(root: Path) -> Path:
    return pki_dir(root) / "crl.crt"


def dh_path(root: Path) -> Path:
    return pki_dir(root) / "dh.pem"


def server_dir(root: Path) -> Path:
    return root / SERVER_NAME


def clients_dir(root: Path) -> Path:
    return root / "clients"


def bundle_path(root: Path, name: str) -> Path:
    return clients_dir(root) / f"{name}{BUNDLE_SUFFIX}"
