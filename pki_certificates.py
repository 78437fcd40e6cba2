import datetime
from dataclasses import dataclass
from typing import Union

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID

from pki_config import Algorithm
from pki_errors import BackendFailure
from pki_subject import Subject

PrivateKey = Union[
    rsa.RSAPrivateKey,
    ec.EllipticCurvePrivateKey,
    ed25519.Ed25519PrivateKey,
    ed448.Ed448PrivateKey,
]

# X.509 serials must be positive, the config counter starts at zero.
SERIAL_OFFSET = 1000

EC_CURVES = {
    "prime256v1": ec.SECP256R1,
    "secp256r1": ec.SECP256R1,
    "secp384r1": ec.SECP384R1,
    "secp521r1": ec.SECP521R1,
}

BACKEND_ERRORS = (ValueError, TypeError, UnsupportedAlgorithm)


@dataclass
class Identity:
    cert: x509.Certificate
    key: PrivateKey
    subject: Subject


def generate_private_key(algorithm: Algorithm, key_size: int, curve: str) -> PrivateKey:
    if algorithm == Algorithm.RSA:
        try:
            return rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        except ValueError as exc:
            raise BackendFailure(f"Failed to generate RSA key: {exc}") from exc
    if algorithm == Algorithm.ECDSA:
        curve_cls = EC_CURVES.get(curve.lower())
        if curve_cls is None:
            raise BackendFailure(f"Unsupported EC curve '{curve}'")
        return ec.generate_private_key(curve_cls())
    if curve.upper() == "ED448":
        return ed448.Ed448PrivateKey.generate()
    if curve.upper() == "ED25519":
        return ed25519.Ed25519PrivateKey.generate()
    raise BackendFailure(f"Unsupported EdDSA curve '{curve}'")


def signing_hash(algorithm: Algorithm) -> hashes.HashAlgorithm | None:
    if algorithm == Algorithm.EdDSA:
        return None
    return hashes.SHA256()


def certificate_serial(serial: int) -> int:
    return SERIAL_OFFSET + serial


def validity_window(valid_days: int) -> tuple[datetime.datetime, datetime.datetime]:
    start = datetime.datetime.now(tz=datetime.timezone.utc)
    return start, start + datetime.timedelta(days=valid_days)


def leaf_key_usage(algorithm: Algorithm) -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature=True,
        content_commitment=False,
        key_encipherment=algorithm == Algorithm.RSA,
        data_encipherment=False,
        key_agreement=algorithm == Algorithm.ECDSA,
        key_cert_sign=False,
        crl_sign=False,
        encipher_only=False,
        decipher_only=False,
    )


def issue_identity(
    subject: Subject,
    issuer: Identity,
    algorithm: Algorithm,
    key_size: int,
    curve: str,
    valid_days: int,
    serial: int,
    is_server: bool,
) -> Identity:
    """Create a key pair for ``subject`` and sign its certificate with ``issuer``."""
    key = generate_private_key(algorithm, key_size, curve)
    not_before, not_after = validity_window(valid_days)
    usage = ExtendedKeyUsageOID.SERVER_AUTH if is_server else ExtendedKeyUsageOID.CLIENT_AUTH
    try:
        issuer_ski = issuer.cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
        builder = (
            x509.CertificateBuilder()
            .subject_name(subject.to_x509_name())
            .issuer_name(issuer.cert.subject)
            .public_key(key.public_key())
            .serial_number(certificate_serial(serial))
            .not_valid_before(not_before)
            .not_valid_after(not_after)
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(leaf_key_usage(algorithm), critical=True)
            .add_extension(x509.ExtendedKeyUsage([usage]), critical=False)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(issuer_ski.value),
                critical=False,
            )
        )
        cert = builder.sign(issuer.key, signing_hash(algorithm))
    except x509.ExtensionNotFound as exc:
        raise BackendFailure("Issuer certificate has no subject key identifier") from exc
    except BACKEND_ERRORS as exc:
        raise BackendFailure(f"Failed to sign certificate for {subject.common_name}: {exc}") from exc
    return Identity(cert=cert, key=key, subject=subject)


def encode_cert_pem(cert: x509.Certificate) -> str:
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


def encode_key_pem(key: PrivateKey) -> str:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def _public_der(public_key) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )


def load_identity(cert_pem: str, key_pem: str) -> Identity:
    try:
        cert = x509.load_pem_x509_certificate(cert_pem.encode("utf-8"))
        key = serialization.load_pem_private_key(key_pem.encode("utf-8"), password=None)
    except BACKEND_ERRORS as exc:
        raise BackendFailure(f"Failed to load identity: {exc}") from exc
    if _public_der(cert.public_key()) != _public_der(key.public_key()):
        raise BackendFailure("Certificate and private key do not belong together")
    return Identity(cert=cert, key=key, subject=Subject.from_x509_name(cert.subject))
