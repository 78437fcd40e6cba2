from dataclasses import dataclass, replace
from typing import Any

from cryptography import x509
from cryptography.x509.oid import NameOID

# config.conf key -> (Subject attribute, X.509 OID)
SUBJECT_FIELDS = {
    "commonname": ("common_name", NameOID.COMMON_NAME),
    "country": ("country", NameOID.COUNTRY_NAME),
    "state": ("state", NameOID.STATE_OR_PROVINCE_NAME),
    "locality": ("locality", NameOID.LOCALITY_NAME),
    "organisation": ("organisation", NameOID.ORGANIZATION_NAME),
    "organisationunit": ("organisational_unit", NameOID.ORGANIZATIONAL_UNIT_NAME),
    "email": ("email", NameOID.EMAIL_ADDRESS),
}


@dataclass(frozen=True)
class Subject:
    """Distinguished name of a certificate. ``None`` marks a field left blank."""

    common_name: str
    country: str | None = None
    state: str | None = None
    locality: str | None = None
    organisation: str | None = None
    organisational_unit: str | None = None
    email: str | None = None

    def with_common_name(self, common_name: str) -> "Subject":
        return replace(self, common_name=common_name)

    def to_dict(self) -> dict[str, str]:
        data = {}
        for key, (attr, _oid) in SUBJECT_FIELDS.items():
            value = getattr(self, attr)
            if value:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Subject | None":
        common_name = data.get("commonname")
        if not isinstance(common_name, str) or not common_name.strip():
            return None
        values = {}
        for key, (attr, _oid) in SUBJECT_FIELDS.items():
            value = data.get(key)
            if isinstance(value, str) and value:
                values[attr] = value
        return cls(**values)

    def to_x509_name(self) -> x509.Name:
        attributes = []
        for attr, oid in SUBJECT_FIELDS.values():
            value = getattr(self, attr)
            if value:
                attributes.append(x509.NameAttribute(oid, value))
        return x509.Name(attributes)

    @classmethod
    def from_x509_name(cls, name: x509.Name) -> "Subject":
        values = {}
        for attr, oid in SUBJECT_FIELDS.values():
            found = name.get_attributes_for_oid(oid)
            if found:
                values[attr] = str(found[0].value)
        values.setdefault("common_name", "")
        return cls(**values)
