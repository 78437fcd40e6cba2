from cryptography import x509

import pki_ca
import pki_certificates
from pki_certificates import Identity, PrivateKey
from pki_config import Algorithm
from pki_subject import Subject


class CryptoBackend:
    """Cryptographic operations the lifecycle manager depends on.

    Every method raises ``BackendFailure`` when the underlying library or the
    openssl binary rejects the request. Tests substitute their own object with
    the same methods.
    """

    def create_ca(
        self,
        subject: Subject,
        algorithm: Algorithm,
        key_size: int,
        curve: str,
        valid_days: int,
        serial: int,
    ) -> Identity:
        return pki_ca.create_ca(subject, algorithm, key_size, curve, valid_days, serial)

    def create_dh_params(self, key_size: int) -> str:
        return pki_ca.create_dh_params(key_size)

    def issue_identity(
        self,
        subject: Subject,
        issuer: Identity,
        algorithm: Algorithm,
        key_size: int,
        curve: str,
        valid_days: int,
        serial: int,
        is_server: bool,
    ) -> Identity:
        return pki_certificates.issue_identity(
            subject, issuer, algorithm, key_size, curve, valid_days, serial, is_server
        )

    def update_crl(
        self,
        issuer: Identity,
        algorithm: Algorithm,
        crl_pem: str | None,
        cert_pem: str,
        valid_days: int,
    ) -> str:
        return pki_ca.update_crl(issuer, algorithm, crl_pem, cert_pem, valid_days)

    def encode_cert_pem(self, cert: x509.Certificate) -> str:
        return pki_certificates.encode_cert_pem(cert)

    def encode_key_pem(self, key: PrivateKey) -> str:
        return pki_certificates.encode_key_pem(key)

    def load_identity(self, cert_pem: str, key_pem: str) -> Identity:
        return pki_certificates.load_identity(cert_pem, key_pem)
