import json
import tarfile
from pathlib import Path

import pytest

from pki_config import Algorithm, load_config
from pki_errors import (
    AlreadyExists,
    BackendFailure,
    ConfigNotFound,
    MissingPrerequisite,
    ValidationFailure,
)
from pki_lifecycle import PKIManager, PKIState
from pki_paths import bundle_path, cert_path, config_path, crl_path, dh_path, key_path, server_dir
from pki_prompt import Prompter


def scripted(*answers):
    replies = iter(answers)
    return Prompter(reader=lambda question: next(replies), writer=lambda message: None)


def test_state_machine(tmp_path, fake_backend, subject, network):
    manager = PKIManager(tmp_path, backend=fake_backend)
    assert manager.state == PKIState.UNINITIALIZED
    manager.initialize(subject, network, algorithm=Algorithm.ECDSA)
    assert manager.state == PKIState.CONFIGURED
    manager.create_ca()
    assert manager.state == PKIState.CA_ISSUED
    manager.issue_server_identity()
    assert manager.state == PKIState.OPERATIONAL


def test_initialize_refuses_existing_config(make_manager, subject, network):
    manager = make_manager(with_ca=False)
    with pytest.raises(AlreadyExists):
        manager.initialize(subject, network)


def test_initialize_starts_serial_at_zero(make_manager):
    manager = make_manager(with_ca=False)
    assert load_config(manager.root).serial == 0


def test_create_ca_advances_and_persists_serial(make_manager, fake_backend):
    manager = make_manager()
    assert fake_backend.serials == [0]
    assert load_config(manager.root).serial == 1
    assert cert_path(manager.root, "ca").read_text() == "CERT vpn.example.com 0\n"
    assert key_path(manager.root, "ca").stat().st_mode & 0o777 == 0o600


def test_second_ca_is_rejected(make_manager):
    manager = make_manager()
    with pytest.raises(AlreadyExists):
        manager.create_ca()


def test_operations_without_config_fail(tmp_path, fake_backend):
    manager = PKIManager(tmp_path, backend=fake_backend)
    with pytest.raises(ConfigNotFound):
        manager.create_ca()
    with pytest.raises(ConfigNotFound):
        manager.generate_client_bundle("alice")


def test_issuance_requires_ca(make_manager):
    manager = make_manager(with_ca=False)
    with pytest.raises(MissingPrerequisite):
        manager.issue_client_identity("alice")
    with pytest.raises(MissingPrerequisite):
        manager.issue_server_identity()


def test_serials_never_repeat_across_revocations(make_manager, fake_backend):
    manager = make_manager()
    manager.issue_server_identity()
    manager.issue_client_identity("alice")
    manager.revoke("alice")
    manager.issue_client_identity("bob")
    manager.issue_client_identity("alice")
    manager.revoke("bob")
    manager.issue_client_identity("carol")

    assert fake_backend.serials == [0, 1, 2, 3, 4, 5]
    assert load_config(manager.root).serial == 6


def test_server_identity_is_skipped_when_present(make_manager, fake_backend):
    manager = make_manager()
    assert manager.issue_server_identity() is True
    assert manager.issue_server_identity() is False
    issued = [call for call in fake_backend.calls if call[0] == "issue_identity"]
    assert len(issued) == 1
    assert issued[0][1][0].common_name == "server"
    assert issued[0][1][3] is True


def test_server_identity_guard_only_checks_files(make_manager, fake_backend):
    manager = make_manager()
    cert_path(manager.root, "server").write_text("CERT server 99\n")
    key_path(manager.root, "server").write_text("KEY key-99\n")
    assert manager.server_identity_exists()
    manager.generate_server_config()
    assert not [call for call in fake_backend.calls if call[0] == "issue_identity"]


def test_client_identity_overwrites_same_name(make_manager):
    manager = make_manager()
    manager.issue_client_identity("alice")
    manager.issue_client_identity("alice")
    assert cert_path(manager.root, "alice").read_text() == "CERT alice 2\n"


@pytest.mark.parametrize("name", ["", "   ", "ca", "server", "CRL", "dh", "../"])
def test_invalid_client_names(make_manager, name):
    manager = make_manager()
    with pytest.raises(ValidationFailure):
        manager.issue_client_identity(name)


def test_client_name_is_sanitised(make_manager):
    manager = make_manager()
    manager.issue_client_identity("alice smith")
    assert cert_path(manager.root, "alice_smith").exists()


def test_backend_failure_leaves_no_identity(make_manager, fake_backend):
    manager = make_manager()
    fake_backend.fail_on.add("issue_identity")
    with pytest.raises(BackendFailure):
        manager.issue_client_identity("alice")
    assert not cert_path(manager.root, "alice").exists()
    assert load_config(manager.root).serial == 1


def test_rsa_server_config_requires_dh(make_manager):
    manager = make_manager(algorithm=Algorithm.RSA)
    with pytest.raises(MissingPrerequisite):
        manager.generate_server_config()
    assert not server_dir(manager.root).exists()


def test_eddsa_server_config_needs_no_dh(make_manager):
    manager = make_manager(algorithm=Algorithm.EdDSA)
    assert manager.create_dh() is None
    output = manager.generate_server_config()
    assert not dh_path(manager.root).exists()
    assert sorted(path.name for path in output.iterdir()) == [
        "ca.crt",
        "server.conf",
        "server.crt",
        "server.key",
    ]


def test_rsa_server_config_copies_dh(make_manager, fake_backend):
    manager = make_manager(algorithm=Algorithm.RSA, suffix="-home")
    assert manager.create_dh() == dh_path(manager.root)
    assert manager.create_dh() == dh_path(manager.root)
    assert [call for call in fake_backend.calls if call[0] == "create_dh_params"] == [
        ("create_dh_params", (2048,))
    ]

    output = manager.generate_server_config()
    assert (output / "dh-home.pem").read_text() == "DH PARAMETERS 2048\n"
    assert "dh dh-home.pem" in (output / "server-home.conf").read_text().splitlines()


def test_server_directory_is_recreated(make_manager):
    manager = make_manager()
    output = manager.generate_server_config()
    (output / "stale.txt").write_text("left over")
    manager.generate_server_config()
    assert not (output / "stale.txt").exists()


def test_server_config_references_crl_after_revocation(make_manager):
    manager = make_manager()
    manager.issue_client_identity("alice")
    manager.revoke("alice")
    output = manager.generate_server_config()
    assert (output / "crl.crt").read_text() == crl_path(manager.root).read_text()
    assert "crl-verify crl.crt" in (output / "server.conf").read_text().splitlines()


def test_revoking_the_ca_always_fails(tmp_path, fake_backend, make_manager):
    with pytest.raises(ValidationFailure):
        PKIManager(tmp_path / "empty", backend=fake_backend).revoke("ca")
    manager = make_manager()
    with pytest.raises(ValidationFailure):
        manager.revoke("ca")
    assert cert_path(manager.root, "ca").exists()


def test_revoking_unknown_name_keeps_crl(make_manager):
    manager = make_manager()
    manager.issue_client_identity("alice")
    manager.revoke("alice")
    before = crl_path(manager.root).read_text()

    with pytest.raises(MissingPrerequisite):
        manager.revoke("mallory")
    assert crl_path(manager.root).read_text() == before


def test_revoking_without_crl_does_not_create_one(make_manager):
    manager = make_manager()
    with pytest.raises(MissingPrerequisite):
        manager.revoke("mallory")
    assert not crl_path(manager.root).exists()


def test_revocation_feeds_previous_crl(make_manager, fake_backend):
    manager = make_manager()
    manager.issue_client_identity("alice")
    manager.issue_client_identity("bob")
    manager.revoke("alice")
    manager.revoke("bob")

    crl_calls = [call[1] for call in fake_backend.calls if call[0] == "update_crl"]
    assert crl_calls[0] == (None, "CERT alice 1\n")
    assert crl_calls[1] == ("CRL\nCERT alice 1\n", "CERT bob 2\n")
    assert crl_path(manager.root).read_text() == "CRL\nCERT alice 1\nCERT bob 2\n"


def test_revocation_removes_identity_and_bundle(make_manager):
    manager = make_manager()
    bundle = manager.generate_client_bundle("alice")
    assert bundle.exists()

    result = manager.revoke("alice")
    assert result.warnings == []
    assert result.crl_path == crl_path(manager.root)
    assert not cert_path(manager.root, "alice").exists()
    assert not key_path(manager.root, "alice").exists()
    assert not bundle_path(manager.root, "alice").exists()


def test_revocation_cleanup_failures_are_warnings(make_manager, monkeypatch):
    manager = make_manager()
    manager.issue_client_identity("alice")
    original_unlink = Path.unlink

    def flaky_unlink(self, missing_ok=False):
        if self.suffix == ".key":
            raise PermissionError("read-only")
        return original_unlink(self, missing_ok=missing_ok)

    monkeypatch.setattr(Path, "unlink", flaky_unlink)
    result = manager.revoke("alice")

    assert len(result.warnings) == 1
    assert "alice.key" in result.warnings[0]
    assert crl_path(manager.root).exists()
    assert not cert_path(manager.root, "alice").exists()


def test_revoke_asks_for_missing_name(make_manager):
    manager = make_manager()
    manager.issue_client_identity("alice")
    manager.prompter = scripted("alice")
    assert manager.revoke().name == "alice"


def test_revoke_with_blank_answer_fails(make_manager):
    manager = make_manager()
    manager.prompter = scripted("")
    with pytest.raises(ValidationFailure):
        manager.revoke()


def test_bundle_contents(make_manager):
    manager = make_manager()
    bundle = manager.generate_client_bundle("alice")
    assert bundle == manager.root / "clients" / "alice.visz"

    with tarfile.open(bundle, "r:gz") as archive:
        names = sorted(archive.getnames())
        config = archive.extractfile("alice/config.conf").read().decode()
    assert names == ["alice", "alice/alice.crt", "alice/alice.key", "alice/ca.crt", "alice/config.conf"]
    assert "remote vpn.example.com 1194 udp" in config.splitlines()
    assert not list(manager.root.glob(".bundle-*"))


def test_bundle_twice_overwrites_without_residue(make_manager, fake_backend):
    manager = make_manager()
    manager.generate_client_bundle("alice")
    manager.generate_client_bundle("alice")

    assert [path.name for path in (manager.root / "clients").iterdir()] == ["alice.visz"]
    assert not list(manager.root.glob(".bundle-*"))
    assert len([call for call in fake_backend.calls if call[0] == "issue_identity"]) == 1


def test_bundle_reissue_creates_new_identity(make_manager):
    manager = make_manager()
    manager.generate_client_bundle("alice")
    manager.generate_client_bundle("alice", reissue=True)
    assert cert_path(manager.root, "alice").read_text() == "CERT alice 2\n"


def test_bundle_default_name_from_prompt(make_manager):
    manager = make_manager()
    manager.prompter = scripted("")
    assert manager.generate_client_bundle().name == "client1.visz"


def test_bundle_prompt_repeats_on_rejected_name(make_manager, fake_backend):
    manager = make_manager()
    said = []
    replies = iter(["ca", "../", "alice"])
    manager.prompter = Prompter(reader=lambda question: next(replies), writer=said.append)
    assert manager.generate_client_bundle().name == "alice.visz"
    assert len(said) == 2
    assert "reserved" in said[0]
    issued = [args[0].common_name for name, args in fake_backend.calls if name == "issue_identity"]
    assert issued == ["alice"]


def test_bundle_rejects_reserved_name_from_caller(make_manager):
    manager = make_manager()
    manager.prompter = scripted("alice")
    with pytest.raises(ValidationFailure):
        manager.generate_client_bundle("server")


def test_bundle_requires_server_address(make_manager, tmp_path):
    manager = make_manager()
    data = json.loads(config_path(manager.root).read_text())
    data["server"] = ""
    config_path(manager.root).write_text(json.dumps(data))
    manager.load()
    with pytest.raises(MissingPrerequisite):
        manager.generate_client_bundle("alice")


def test_load_restores_issuer(make_manager, fake_backend):
    manager = make_manager()
    reopened = PKIManager(manager.root, backend=fake_backend)
    assert reopened.load() is True
    assert reopened.issuer.cert.common_name == "vpn.example.com"
    assert reopened.state == PKIState.CA_ISSUED
