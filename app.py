from __future__ import annotations

import logging
from pathlib import Path

import click

from pki_config import DEFAULT_KEY_SIZE, DEFAULT_PORT, DEFAULT_VALID_DAYS, Algorithm, NetworkSettings
from pki_errors import AlreadyExists, PKIError
from pki_lifecycle import PKIManager
from pki_paths import DEFAULT_PKI_DIR, config_path
from pki_prompt import Prompter, collect_settings, parse_dns_list
from pki_storage import get_crl_info, list_issued
from pki_subject import Subject

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def fail(exc: PKIError) -> click.ClickException:
    return click.ClickException(str(exc))


@click.group()
@click.option(
    "--dir",
    "root",
    type=click.Path(file_okay=False, path_type=Path),
    default=DEFAULT_PKI_DIR,
    envvar="OPENVPN_PKI_DIR",
    show_default=True,
    help="PKI-Verzeichnis (oder OPENVPN_PKI_DIR).",
)
@click.option("--verbose", "-v", is_flag=True, help="Debug-Ausgaben aktivieren.")
@click.pass_context
def cli(ctx: click.Context, root: Path, verbose: bool) -> None:
    """Verwaltet CA, Server- und Client-Zertifikate für OpenVPN."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)
    ctx.obj = PKIManager(root, prompter=Prompter())


@cli.command()
@click.option(
    "--algorithm",
    type=click.Choice(["rsa", "ecdsa", "eddsa"], case_sensitive=False),
    default="rsa",
    show_default=True,
)
@click.option("--keysize", type=int, default=DEFAULT_KEY_SIZE, show_default=True)
@click.option("--curve", default=None, help="secp384r1 (ECDSA) bzw. ED25519 (EdDSA).")
@click.option("--validdays", type=int, default=DEFAULT_VALID_DAYS, show_default=True)
@click.option("--suffix", default="", help="Anhang für die Dateinamen der Serverkonfiguration.")
@click.option("--defaults", "unattended", is_flag=True, help="Ohne Rückfragen mit den Optionen anlegen.")
@click.option("--server", default="", help="Serveradresse, z. B. vpn.example.com.")
@click.option("--port", type=click.IntRange(1, 65534), default=DEFAULT_PORT, show_default=True)
@click.option("--proto", type=click.Choice(["udp", "tcp"]), default="udp", show_default=True)
@click.option("--dns", multiple=True, help="DNS-Server für Clients, mehrfach angebbar.")
@click.option("--redirect/--no-redirect", default=True, show_default=True)
@click.option("--common-name", default=None, help="Common Name der CA (Standard: Serveradresse).")
@click.option("--country", default=None, help="2-stelliger ISO-Ländercode.")
@click.option("--state", default=None)
@click.option("--locality", default=None)
@click.option("--organisation", default=None)
@click.option("--organisational-unit", default=None)
@click.option("--email", default=None)
@click.pass_obj
def init(
    manager: PKIManager,
    algorithm: str,
    keysize: int,
    curve: str | None,
    validdays: int,
    suffix: str,
    unattended: bool,
    server: str,
    port: int,
    proto: str,
    dns: tuple[str, ...],
    redirect: bool,
    common_name: str | None,
    **fields: str | None,
) -> None:
    """Neues PKI-Verzeichnis mit CA und Serverkonfiguration anlegen."""
    key_alg = Algorithm.from_name(algorithm)
    if config_path(manager.root).exists():
        raise fail(AlreadyExists("Konfiguration existiert bereits, bitte ein anderes Verzeichnis wählen."))

    if unattended:
        if not server:
            raise click.UsageError("--server ist bei --defaults erforderlich.")
        try:
            servers = parse_dns_list(",".join(dns))
        except ValueError as exc:
            raise click.BadParameter(str(exc), param_hint="--dns") from exc
        if fields["country"] and len(fields["country"]) != 2:
            raise click.BadParameter("Der Ländercode muss genau zwei Zeichen lang sein.", param_hint="--country")
        subject = Subject(common_name=common_name or server, **fields)
        network = NetworkSettings(server=server, port=port, proto=proto, redirect=redirect, dns=servers)
    else:
        settings = collect_settings(manager.prompter, key_alg)
        if settings is None:
            raise click.Abort()
        subject, network = settings

    try:
        manager.initialize(
            subject,
            network,
            algorithm=key_alg,
            key_size=keysize,
            ec_curve=curve,
            valid_days=validdays,
            suffix=suffix,
        )
        manager.create_ca()
        if key_alg == Algorithm.RSA:
            click.echo("Erzeuge DH-Parameter. Das kann eine Weile dauern...")
        manager.create_dh()
        output = manager.generate_server_config()
    except PKIError as exc:
        raise fail(exc) from exc
    click.echo(f"Serverkonfiguration erfolgreich unter {output} erzeugt.")


@cli.command()
@click.pass_obj
def server(manager: PKIManager) -> None:
    """Serverkonfiguration neu erzeugen."""
    try:
        output = manager.generate_server_config()
    except PKIError as exc:
        raise fail(exc) from exc
    click.echo(f"Serverkonfiguration erfolgreich unter {output} erzeugt.")


@cli.command()
@click.argument("name", required=False)
@click.option("--reissue", is_flag=True, help="Vorhandenes Zertifikat durch ein neues ersetzen.")
@click.pass_obj
def client(manager: PKIManager, name: str | None, reissue: bool) -> None:
    """Client-Zertifikat ausstellen und als .visz-Paket ablegen."""
    try:
        bundle = manager.generate_client_bundle(name, reissue=reissue)
    except PKIError as exc:
        raise fail(exc) from exc
    click.echo(f"Client-Paket erfolgreich unter {bundle} erzeugt.")


@cli.command()
@click.argument("name", required=False)
@click.option(
    "--regenerate/--no-regenerate",
    default=None,
    help="Serverkonfiguration danach neu erzeugen (sonst Rückfrage).",
)
@click.pass_obj
def revoke(manager: PKIManager, name: str | None, regenerate: bool | None) -> None:
    """Zertifikat widerrufen und die CRL aktualisieren."""
    try:
        result = manager.revoke(name)
    except PKIError as exc:
        raise fail(exc) from exc
    for warning in result.warnings:
        click.echo(f"WARNUNG: {warning}", err=True)
    click.echo()
    click.echo(f'"{result.name}" wurde widerrufen. Die CRL liegt unter "{result.crl_path}".')
    click.echo("Bitte die CRL-Datei aufbewahren, sie wird bei späteren Widerrufen fortgeschrieben.")
    click.echo()

    if regenerate is None:
        regenerate = manager.prompter.ask_yes_no("Serverkonfiguration neu erzeugen? [Y/n]:")
    if not regenerate:
        return
    try:
        output = manager.generate_server_config()
    except PKIError as exc:
        raise fail(exc) from exc
    click.echo(f"Serverkonfiguration erfolgreich unter {output} erzeugt.")


@cli.command("list")
@click.pass_obj
def list_command(manager: PKIManager) -> None:
    """Ausgestellte Zertifikate und CRL anzeigen."""
    try:
        manager.require_config()
    except PKIError as exc:
        raise fail(exc) from exc
    click.echo(f"Status: {manager.state.value}")
    issued = list_issued(manager.root)
    if not issued:
        click.echo("Keine Zertifikate ausgestellt.")
    for entry in issued:
        bundle = " (Paket)" if entry["bundle"] else ""
        click.echo(f"{entry['name']}\tSerial {entry['serial']}\tgültig bis {entry['expires']}{bundle}")

    info = get_crl_info(manager.root)
    click.echo(f"CRL: {info['path']} (letzte Aktualisierung {info['last_update']}, nächste {info['next_update']})")
    for entry in info["entries"]:
        click.echo(f"  widerrufen: Serial {entry['serial']} am {entry['revoked_at']}")


if __name__ == "__main__":
    cli()
