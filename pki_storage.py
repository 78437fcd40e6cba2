from pathlib import Path
from typing import Any

from cryptography import x509

from pki_ca import load_crl
from pki_errors import BackendFailure
from pki_paths import CA_NAME, bundle_path, crl_path, pki_dir


def get_crl_info(root: Path) -> dict[str, Any]:
    path = crl_path(root)
    info = {"path": str(path), "last_update": "-", "next_update": "-", "entries": []}
    try:
        crl = load_crl(path.read_text(encoding="utf-8"))
    except (OSError, BackendFailure):
        return info
    next_update = crl.next_update_utc
    info["last_update"] = crl.last_update_utc.isoformat()
    info["next_update"] = next_update.isoformat() if next_update else "-"
    info["entries"] = [
        {"serial": str(entry.serial_number), "revoked_at": entry.revocation_date_utc.isoformat()}
        for entry in crl
    ]
    return info


def list_issued(root: Path) -> list[dict[str, str | bool]]:
    directory = pki_dir(root)
    if not directory.exists():
        return []
    entries = []
    for cert_file in sorted(directory.glob("*.crt")):
        name = cert_file.stem
        if name == CA_NAME or cert_file == crl_path(root):
            continue
        try:
            cert = x509.load_pem_x509_certificate(cert_file.read_bytes())
        except (OSError, ValueError):
            serial = "-"
            expires = "-"
        else:
            serial = str(cert.serial_number)
            expires = cert.not_valid_after_utc.isoformat()
        entries.append(
            {
                "name": name,
                "serial": serial,
                "expires": expires,
                "key": (directory / f"{name}.key").exists(),
                "bundle": bundle_path(root, name).exists(),
            }
        )
    return entries
