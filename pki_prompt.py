import ipaddress
from typing import Callable

import click

from pki_config import DEFAULT_PORT, Algorithm, NetworkSettings, validate_port
from pki_subject import Subject

BLANK = "."

CLOUDFLARE_DNS = ["1.1.1.1", "1.0.0.1"]
GOOGLE_DNS = ["8.8.8.8", "8.8.4.4"]
OPEN_DNS = ["208.67.222.222", "208.67.220.220"]
LOCAL_DNS = "10.8.0.1"
DNS_PRESETS = {
    "1": ("CloudFlare", CLOUDFLARE_DNS),
    "2": ("Google", GOOGLE_DNS),
    "3": ("OpenDNS", OPEN_DNS),
    "4": ("Lokaler Server", [LOCAL_DNS]),
}

DEFAULT_COUNTRY = "DE"
DEFAULT_STATE = "Berlin"
DEFAULT_LOCALITY = "Berlin"
DEFAULT_ORGANISATION = "OpenVPN PKI"
DEFAULT_ORGANISATIONAL_UNIT = "IT"
DEFAULT_EMAIL = "admin@example.com"


def _click_reader(question: str) -> str:
    return click.prompt(question, default="", show_default=False, prompt_suffix=" ")


class Prompter:
    """Line based question/answer loop.

    ``reader`` receives the question and returns one line of input, ``writer``
    prints feedback. Both default to click so the CLI works interactively.
    """

    def __init__(
        self,
        reader: Callable[[str], str] | None = None,
        writer: Callable[[str], None] | None = None,
    ) -> None:
        self.reader = reader or _click_reader
        self.writer = writer or click.echo

    def say(self, message: str = "") -> None:
        self.writer(message)

    def ask(self, question: str, allow_blank: bool = False, has_default: bool = True) -> str:
        """Return the answer, or ``""`` when the default was accepted.

        An empty line is only accepted with ``has_default``. The ``.`` sentinel
        (leave the field blank) is only accepted with ``allow_blank``.
        """
        while True:
            answer = self.reader(question).strip()
            if not answer and not has_default:
                self.say("Dieses Feld darf nicht leer bleiben.")
                continue
            if answer == BLANK and not allow_blank:
                self.say("Dieses Feld darf nicht leer bleiben.")
                continue
            return answer

    def ask_yes_no(self, question: str, default: bool = True) -> bool:
        while True:
            answer = self.ask(question).lower()
            if not answer:
                return default
            if answer in ("y", "j"):
                return True
            if answer == "n":
                return False
            self.say("Ungültige Eingabe, bitte erneut versuchen.")

    def ask_field(self, question: str, default: str) -> str | None:
        answer = self.ask(f"{question} [{default}]:", allow_blank=True)
        if not answer:
            return default
        if answer == BLANK:
            return None
        return answer


def ask_port(prompter: Prompter) -> int:
    while True:
        answer = prompter.ask(f"Server-Port [{DEFAULT_PORT}]:")
        if not answer:
            return DEFAULT_PORT
        try:
            return validate_port(int(answer))
        except ValueError:
            prompter.say("Ungültige Eingabe, bitte erneut versuchen.")


def ask_proto(prompter: Prompter) -> str:
    while True:
        answer = prompter.ask("Protokoll, 1=UDP, 2=TCP [UDP]:")
        if answer in ("", "1"):
            return "udp"
        if answer == "2":
            return "tcp"
        prompter.say("Ungültige Eingabe, bitte erneut versuchen.")


def parse_dns_list(value: str) -> list[str]:
    servers = []
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ipaddress.ip_address(part)
        except ValueError:
            raise ValueError(f"{part} ist keine gültige IP-Adresse.") from None
        servers.append(part)
    return servers


def ask_dns(prompter: Prompter, redirect: bool) -> list[str]:
    default_choice = "1" if redirect else "4"
    prompter.say("Bitte DNS-Server wählen, die an Clients verteilt werden:")
    for choice, (label, servers) in DNS_PRESETS.items():
        prompter.say(f"\t{choice} - {label} ({' & '.join(servers)})")
    prompter.say("\t5 - Eigene")
    prompter.say("\t6 - Keine")
    choices = {choice: servers for choice, (_label, servers) in DNS_PRESETS.items()}
    choices.update({"6": [], BLANK: []})
    while True:
        answer = prompter.ask(f"Bitte eine Option wählen [{default_choice}]:", allow_blank=True)
        answer = answer or default_choice
        if answer in choices:
            return list(choices[answer])
        if answer == "5":
            break
        prompter.say(f"{answer} ist keine gültige Auswahl")

    while True:
        answer = prompter.ask("Eigene DNS-Server, mehrere durch Komma getrennt:", has_default=False)
        try:
            servers = parse_dns_list(answer)
        except ValueError as exc:
            prompter.say(str(exc))
            continue
        if servers:
            return servers


def ask_subject(prompter: Prompter, address: str) -> Subject:
    if prompter.ask_yes_no("Anonyme Standardwerte für die Zertifikatsdaten verwenden? [Y/n]:"):
        return Subject(common_name=address)
    common_name = prompter.ask(f"Common Name, z. B. der Servername [{address}]:") or address
    while True:
        country = prompter.ask_field("Land, 2-stelliger ISO-Code", DEFAULT_COUNTRY)
        if country is None or len(country) == 2:
            break
        prompter.say("Der Ländercode muss genau zwei Zeichen lang sein.")
    return Subject(
        common_name=common_name,
        country=country,
        state=prompter.ask_field("Bundesland oder Provinz", DEFAULT_STATE),
        locality=prompter.ask_field("Ort, z. B. eine Stadt", DEFAULT_LOCALITY),
        organisation=prompter.ask_field("Organisation", DEFAULT_ORGANISATION),
        organisational_unit=prompter.ask_field(
            "Organisationseinheit, z. B. Abteilung", DEFAULT_ORGANISATIONAL_UNIT
        ),
        email=prompter.ask_field("E-Mail-Adresse", DEFAULT_EMAIL),
    )


def collect_settings(
    prompter: Prompter, algorithm: Algorithm
) -> tuple[Subject, NetworkSettings] | None:
    """Run the interactive setup. Returns ``None`` if the operator backs out."""
    prompter.say("Bitte die folgenden Angaben ausfüllen, sie werden in die Zertifikate übernommen.")
    prompter.say("Werte in eckigen Klammern sind Vorgaben und werden mit Enter übernommen.")
    prompter.say("Manche Felder dürfen leer bleiben. Dafür nur einen '.' eingeben.")
    prompter.say("---")

    if algorithm == Algorithm.EdDSA:
        prompter.say("WICHTIG: Die EdDSA-Unterstützung ist experimentell.")
        prompter.say("EdDSA benötigt Viscosity 1.8.2+, OpenVPN 2.4.7+ und OpenSSL 1.1.1+ auf dem Server.")
        if not prompter.ask_yes_no("Fortfahren? [Y/n]:"):
            return None

    address = prompter.ask("Serveradresse, z. B. vpn.example.com:", has_default=False)
    port = ask_port(prompter)
    proto = ask_proto(prompter)
    redirect = prompter.ask_yes_no("Gesamten Datenverkehr über das VPN leiten? [Y/n]:")
    dns = ask_dns(prompter, redirect)
    subject = ask_subject(prompter, address)
    network = NetworkSettings(server=address, port=port, proto=proto, redirect=redirect, dns=dns)
    return subject, network
