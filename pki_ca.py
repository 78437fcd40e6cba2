import datetime
import logging
import subprocess

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from pki_certificates import (
    BACKEND_ERRORS,
    Identity,
    certificate_serial,
    generate_private_key,
    signing_hash,
    validity_window,
)
from pki_config import Algorithm
from pki_errors import BackendFailure
from pki_subject import Subject
from pki_utils import run_openssl_capture

logger = logging.getLogger(__name__)


def create_ca(
    subject: Subject,
    algorithm: Algorithm,
    key_size: int,
    curve: str,
    valid_days: int,
    serial: int,
) -> Identity:
    key = generate_private_key(algorithm, key_size, curve)
    not_before, not_after = validity_window(valid_days)
    try:
        name = subject.to_x509_name()
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(certificate_serial(serial))
            .not_valid_before(not_before)
            .not_valid_after(not_after)
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=True,
                    crl_sign=True,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
            .sign(key, signing_hash(algorithm))
        )
    except BACKEND_ERRORS as exc:
        raise BackendFailure(f"Failed to create CA: {exc}") from exc
    return Identity(cert=cert, key=key, subject=subject)


def create_dh_params(key_size: int) -> str:
    try:
        return run_openssl_capture(["dhparam", str(key_size)])
    except (OSError, subprocess.CalledProcessError) as exc:
        raise BackendFailure(f"Failed to generate DH params: {exc}") from exc


def load_crl(crl_pem: str) -> x509.CertificateRevocationList:
    try:
        return x509.load_pem_x509_crl(crl_pem.encode("utf-8"))
    except BACKEND_ERRORS as exc:
        raise BackendFailure(f"Failed to parse existing CRL: {exc}") from exc


def update_crl(
    issuer: Identity,
    algorithm: Algorithm,
    crl_pem: str | None,
    cert_pem: str,
    valid_days: int,
) -> str:
    """Return a freshly signed CRL holding every entry of ``crl_pem`` plus ``cert_pem``."""
    try:
        cert = x509.load_pem_x509_certificate(cert_pem.encode("utf-8"))
    except BACKEND_ERRORS as exc:
        raise BackendFailure(f"Failed to parse certificate to revoke: {exc}") from exc
    if cert.issuer != issuer.cert.subject:
        raise BackendFailure("Certificate was not issued by this CA")

    now = datetime.datetime.now(tz=datetime.timezone.utc)
    builder = (
        x509.CertificateRevocationListBuilder()
        .issuer_name(issuer.cert.subject)
        .last_update(now)
        .next_update(now + datetime.timedelta(days=valid_days))
    )

    seen = set()
    if crl_pem:
        existing = load_crl(crl_pem)
        if existing.issuer != issuer.cert.subject:
            raise BackendFailure("Existing CRL was issued by a different CA")
        for revoked in existing:
            seen.add(revoked.serial_number)
            builder = builder.add_revoked_certificate(revoked)

    if cert.serial_number in seen:
        logger.info("Serial %d is already listed in the CRL", cert.serial_number)
    else:
        try:
            entry = (
                x509.RevokedCertificateBuilder()
                .serial_number(cert.serial_number)
                .revocation_date(now)
                .build()
            )
        except BACKEND_ERRORS as exc:
            raise BackendFailure(f"Failed to build CRL entry: {exc}") from exc
        builder = builder.add_revoked_certificate(entry)

    try:
        crl = builder.sign(issuer.key, signing_hash(algorithm))
    except BACKEND_ERRORS as exc:
        raise BackendFailure(f"Failed to create CRL: {exc}") from exc
    return crl.public_bytes(serialization.Encoding.PEM).decode("ascii")
