import enum
import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from pki_backend import CryptoBackend
from pki_certificates import Identity
from pki_config import (
    DEFAULT_KEY_SIZE,
    DEFAULT_VALID_DAYS,
    Algorithm,
    NetworkSettings,
    PKIConfig,
    default_curve,
    load_config,
    next_serial,
    save_config,
)
from pki_errors import (
    AlreadyExists,
    ConfigNotFound,
    IOFailure,
    MissingPrerequisite,
    ValidationFailure,
)
from pki_bundle import write_bundle
from pki_openvpn import build_client_config, build_server_config, server_file_names
from pki_paths import (
    CA_NAME,
    SERVER_NAME,
    bundle_path,
    ca_cert_path,
    ca_key_path,
    cert_path,
    clients_dir,
    config_path,
    crl_path,
    dh_path,
    key_path,
    pki_dir,
    server_dir,
)
from pki_prompt import Prompter
from pki_subject import Subject
from pki_utils import read_text, safe_name, write_text_atomic

logger = logging.getLogger(__name__)

RESERVED_NAMES = {CA_NAME, SERVER_NAME, "crl", "dh"}
DEFAULT_CLIENT_NAME = "client1"
CLIENT_CONFIG_NAME = "config.conf"


class PKIState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    CONFIGURED = "configured"
    CA_ISSUED = "ca-issued"
    OPERATIONAL = "operational"


@dataclass
class RevocationResult:
    name: str
    crl_path: Path
    warnings: list[str] = field(default_factory=list)


def _copy(source: Path, destination: Path, label: str) -> None:
    try:
        shutil.copyfile(source, destination)
    except OSError as exc:
        raise IOFailure(f"Failed to copy {label}: {exc}") from exc


class PKIManager:
    def __init__(
        self,
        root: Path,
        backend: CryptoBackend | None = None,
        prompter: Prompter | None = None,
    ) -> None:
        self.root = Path(root)
        self.backend = backend or CryptoBackend()
        self.prompter = prompter
        self.config: PKIConfig | None = None
        self.issuer: Identity | None = None

    def load(self) -> bool:
        self.config = load_config(self.root)
        self.issuer = None
        if self.config is None:
            return False
        if ca_cert_path(self.root).exists() and ca_key_path(self.root).exists():
            self.issuer = self.backend.load_identity(
                read_text(ca_cert_path(self.root)), read_text(ca_key_path(self.root))
            )
        return True

    @property
    def state(self) -> PKIState:
        if self.config is None:
            return PKIState.UNINITIALIZED
        if self.issuer is None:
            return PKIState.CONFIGURED
        if self.has_identity(SERVER_NAME):
            return PKIState.OPERATIONAL
        return PKIState.CA_ISSUED

    def require_config(self) -> PKIConfig:
        if self.config is None and not self.load():
            raise ConfigNotFound(f"No PKI configuration found in {self.root}. Run init first.")
        return self.config

    def require_issuer(self) -> Identity:
        self.require_config()
        if self.issuer is None or not ca_cert_path(self.root).exists():
            raise MissingPrerequisite("Missing CA. Please regenerate config.")
        return self.issuer

    def has_identity(self, name: str) -> bool:
        return cert_path(self.root, name).exists() and key_path(self.root, name).exists()

    def server_identity_exists(self) -> bool:
        return self.has_identity(SERVER_NAME)

    def initialize(
        self,
        subject: Subject,
        network: NetworkSettings,
        algorithm: Algorithm = Algorithm.RSA,
        key_size: int = DEFAULT_KEY_SIZE,
        ec_curve: str | None = None,
        valid_days: int = DEFAULT_VALID_DAYS,
        suffix: str = "",
    ) -> PKIConfig:
        if config_path(self.root).exists():
            raise AlreadyExists(
                f"Config already exists in {self.root}, please choose a different directory."
            )
        config = PKIConfig(
            subject=subject,
            network=network,
            algorithm=algorithm,
            key_size=key_size,
            ec_curve=ec_curve or default_curve(algorithm),
            valid_days=valid_days,
            serial=0,
            suffix=suffix or "",
        )
        self.root.mkdir(parents=True, exist_ok=True)
        save_config(self.root, config)
        self.config = config
        self.issuer = None
        logger.info("Initialized PKI directory %s (%s)", self.root, algorithm.name)
        return config

    def _save_identity(self, identity: Identity, name: str) -> None:
        cert_pem = self.backend.encode_cert_pem(identity.cert)
        key_pem = self.backend.encode_key_pem(identity.key)
        write_text_atomic(cert_path(self.root, name), cert_pem)
        write_text_atomic(key_path(self.root, name), key_pem, mode=0o600)

    def create_ca(self) -> Identity:
        config = self.require_config()
        if ca_cert_path(self.root).exists() or ca_key_path(self.root).exists():
            raise AlreadyExists(f"A CA already exists in {pki_dir(self.root)}.")
        serial = next_serial(config)
        identity = self.backend.create_ca(
            config.subject,
            config.algorithm,
            config.key_size,
            config.ec_curve,
            config.valid_days,
            serial,
        )
        save_config(self.root, config)
        self._save_identity(identity, CA_NAME)
        self.issuer = identity
        logger.info("Created CA %s with serial %d", config.subject.common_name, serial)
        return identity

    def create_dh(self) -> Path | None:
        config = self.require_config()
        if config.algorithm != Algorithm.RSA:
            return None
        path = dh_path(self.root)
        if path.exists():
            logger.debug("DH parameters already present at %s", path)
            return path
        logger.info("Creating DH parameters, this will take a while...")
        dh_pem = self.backend.create_dh_params(config.key_size)
        write_text_atomic(path, dh_pem)
        return path

    def _issue(self, common_name: str, name: str, is_server: bool) -> Identity:
        config = self.require_config()
        issuer = self.require_issuer()
        serial = next_serial(config)
        identity = self.backend.issue_identity(
            config.subject.with_common_name(common_name),
            issuer,
            config.algorithm,
            config.key_size,
            config.ec_curve,
            config.valid_days,
            serial,
            is_server,
        )
        save_config(self.root, config)
        self._save_identity(identity, name)
        logger.info("Issued certificate %s with serial %d", common_name, serial)
        return identity

    def issue_server_identity(self) -> bool:
        """Issue the server identity unless it is already on disk."""
        self.require_issuer()
        if self.server_identity_exists():
            logger.debug("Server identity already present, skipping issuance")
            return False
        self._issue(SERVER_NAME, SERVER_NAME, is_server=True)
        return True

    def client_file_name(self, name: str) -> str:
        if not name or not name.strip():
            raise ValidationFailure("Common name must not be blank.")
        file_name = safe_name(name)
        if file_name.lower() in RESERVED_NAMES or name.strip().lower() in RESERVED_NAMES:
            raise ValidationFailure(f"'{name}' is reserved and cannot be used for a client.")
        return file_name

    def issue_client_identity(self, name: str) -> Identity:
        file_name = self.client_file_name(name)
        return self._issue(name.strip(), file_name, is_server=False)

    def _ask_name(self, question: str, default: str | None) -> str:
        if self.prompter is None:
            raise ValidationFailure("A common name is required.")
        answer = self.prompter.ask(question)
        if not answer:
            if default is None:
                raise ValidationFailure("A common name is required.")
            return default
        return answer

    def _ask_client_name(self) -> tuple[str, str]:
        if self.prompter is None:
            raise ValidationFailure("A common name is required.")
        while True:
            name = self._ask_name(
                "Common Name, eindeutig, z. B. ein Benutzername [client1]:", DEFAULT_CLIENT_NAME
            ).strip()
            try:
                return name, self.client_file_name(name)
            except ValidationFailure as exc:
                self.prompter.say(str(exc))

    def revoke(self, name: str | None = None) -> RevocationResult:
        if not name or not name.strip():
            name = self._ask_name("Common Name des zu widerrufenden Zertifikats:", None)
        name = name.strip()
        if name.lower() == CA_NAME or safe_name(name).lower() == CA_NAME:
            raise ValidationFailure("The CA certificate cannot be revoked.")

        config = self.require_config()
        if not pki_dir(self.root).is_dir():
            raise MissingPrerequisite("There are no certificates to revoke.")
        file_name = safe_name(name)
        target = cert_path(self.root, file_name)
        if not target.exists():
            raise MissingPrerequisite(f"Certificate '{name}' not found.")
        issuer = self.require_issuer()

        cert_pem = read_text(target)
        crl_file = crl_path(self.root)
        if crl_file.exists():
            crl_pem = read_text(crl_file)
            logger.info("Existing CRL found and will be appended to")
        else:
            crl_pem = None
            logger.info("No existing CRL found, a new CRL will be created")

        new_crl = self.backend.update_crl(
            issuer, config.algorithm, crl_pem, cert_pem, config.valid_days
        )
        write_text_atomic(crl_file, new_crl)

        result = RevocationResult(name=name, crl_path=crl_file)
        for leftover in (
            target,
            key_path(self.root, file_name),
            bundle_path(self.root, file_name),
        ):
            try:
                leftover.unlink(missing_ok=True)
            except OSError as exc:
                message = f"Failed to remove revoked PKI data {leftover}: {exc}"
                logger.warning(message)
                result.warnings.append(message)
        logger.info("Revoked %s, CRL saved to %s", name, crl_file)
        return result

    def generate_server_config(self) -> Path:
        config = self.require_config()
        self.require_issuer()
        if config.algorithm == Algorithm.RSA and not dh_path(self.root).exists():
            raise MissingPrerequisite("Missing DH parameters. Please regenerate config.")
        self.issue_server_identity()

        names = server_file_names(config.suffix)
        crl_present = crl_path(self.root).exists()
        text = build_server_config(config, crl_present)

        output = server_dir(self.root)
        try:
            if output.exists():
                shutil.rmtree(output)
            output.mkdir(parents=True)
        except OSError as exc:
            raise IOFailure(f"Failed to make directory for server configuration: {exc}") from exc

        write_text_atomic(output / names["conf"], text)
        _copy(ca_cert_path(self.root), output / names["ca"], "CA")
        _copy(cert_path(self.root, SERVER_NAME), output / names["cert"], "certificate")
        _copy(key_path(self.root, SERVER_NAME), output / names["key"], "key")
        if config.algorithm == Algorithm.RSA:
            _copy(dh_path(self.root), output / names["dh"], "DH parameters")
        if crl_present:
            _copy(crl_path(self.root), output / names["crl"], "CRL")
        logger.info("Generated server configuration at %s", output)
        return output

    def generate_client_bundle(self, name: str | None = None, reissue: bool = False) -> Path:
        config = self.require_config()
        self.require_issuer()
        if not config.network.server:
            raise MissingPrerequisite("No server address configured. Please regenerate config.")
        if name and name.strip():
            name = name.strip()
            file_name = self.client_file_name(name)
        else:
            name, file_name = self._ask_client_name()
        if reissue or not self.has_identity(file_name):
            self.issue_client_identity(name)

        try:
            clients_dir(self.root).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise IOFailure(f"Failed to make clients directory: {exc}") from exc

        target = bundle_path(self.root, file_name)
        try:
            workspace = tempfile.TemporaryDirectory(
                prefix=".bundle-", dir=self.root, ignore_cleanup_errors=True
            )
        except OSError as exc:
            raise IOFailure(f"Failed to make working directory: {exc}") from exc
        with workspace as tmp:
            staging = Path(tmp) / file_name
            staging.mkdir()
            _copy(ca_cert_path(self.root), staging / "ca.crt", "CA")
            _copy(cert_path(self.root, file_name), staging / f"{file_name}.crt", "certificate")
            _copy(key_path(self.root, file_name), staging / f"{file_name}.key", "key")
            write_text_atomic(staging / CLIENT_CONFIG_NAME, build_client_config(config, file_name))
            write_bundle(staging, file_name, target)
        logger.info("Packaged client %s into %s", name, target)
        return target
