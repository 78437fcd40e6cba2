from dataclasses import dataclass
from pathlib import Path

import pytest

from pki_certificates import Identity
from pki_config import Algorithm, NetworkSettings
from pki_lifecycle import PKIManager
from pki_subject import Subject


@dataclass
class FakeCert:
    common_name: str
    serial: int


class FakeBackend:
    """Stand-in for CryptoBackend that records every call and writes plain text PEMs."""

    def __init__(self):
        self.calls = []
        self.serials = []
        self.fail_on = set()

    def _record(self, name, *args):
        self.calls.append((name, args))
        if name in self.fail_on:
            from pki_errors import BackendFailure

            raise BackendFailure(f"{name} failed")

    def create_ca(self, subject, algorithm, key_size, curve, valid_days, serial):
        self._record("create_ca", subject, algorithm, key_size, curve, valid_days, serial)
        self.serials.append(serial)
        return Identity(cert=FakeCert(subject.common_name, serial), key=f"key-{serial}", subject=subject)

    def create_dh_params(self, key_size):
        self._record("create_dh_params", key_size)
        return f"DH PARAMETERS {key_size}\n"

    def issue_identity(self, subject, issuer, algorithm, key_size, curve, valid_days, serial, is_server):
        self._record("issue_identity", subject, algorithm, serial, is_server)
        self.serials.append(serial)
        return Identity(cert=FakeCert(subject.common_name, serial), key=f"key-{serial}", subject=subject)

    def update_crl(self, issuer, algorithm, crl_pem, cert_pem, valid_days):
        self._record("update_crl", crl_pem, cert_pem)
        return (crl_pem or "CRL\n") + cert_pem

    def encode_cert_pem(self, cert):
        return f"CERT {cert.common_name} {cert.serial}\n"

    def encode_key_pem(self, key):
        return f"KEY {key}\n"

    def load_identity(self, cert_pem, key_pem):
        _, common_name, serial = cert_pem.split()
        return Identity(
            cert=FakeCert(common_name, int(serial)),
            key=key_pem.split()[1],
            subject=Subject(common_name=common_name),
        )


@pytest.fixture
def subject():
    return Subject(common_name="vpn.example.com", country="DE", organisation="Example")


@pytest.fixture
def network():
    return NetworkSettings(
        server="vpn.example.com", port=1194, proto="udp", redirect=True, dns=["1.1.1.1", "1.0.0.1"]
    )


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def make_manager(tmp_path: Path, fake_backend, subject, network):
    def factory(algorithm=Algorithm.ECDSA, with_ca=True, backend=None, **kwargs):
        manager = PKIManager(tmp_path / "pki-root", backend=backend or fake_backend)
        manager.initialize(subject, network, algorithm=algorithm, **kwargs)
        if with_ca:
            manager.create_ca()
        return manager

    return factory
