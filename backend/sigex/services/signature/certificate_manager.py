"""
Certificate Management Helpers

X.509 parsing shared by the CA providers and the lifecycle manager.
"""
from typing import Optional, Tuple
from datetime import datetime

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from ...core.exceptions import ValidationError

# Short attribute labels used when rendering distinguished names
_NAME_LABELS = {
    x509.NameOID.COMMON_NAME: "CN",
    x509.NameOID.ORGANIZATION_NAME: "O",
    x509.NameOID.ORGANIZATIONAL_UNIT_NAME: "OU",
    x509.NameOID.COUNTRY_NAME: "C",
    x509.NameOID.LOCALITY_NAME: "L",
    x509.NameOID.STATE_OR_PROVINCE_NAME: "ST",
    x509.NameOID.EMAIL_ADDRESS: "E",
    x509.NameOID.SERIAL_NUMBER: "SERIALNUMBER",
    x509.NameOID.TITLE: "T",
}


def _naive_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=None) if value.tzinfo else value


class CertificateManager:
    """Helpers for X.509 certificates"""

    @staticmethod
    def load_certificate(certificate_pem: str) -> x509.Certificate:
        try:
            return x509.load_pem_x509_certificate(certificate_pem.encode())
        except ValueError as e:
            raise ValidationError(f"Invalid certificate PEM: {e}")

    @staticmethod
    def serial_hex(certificate: x509.Certificate) -> str:
        """Serial number as upper-case hex, the form stored on Certificate"""
        return format(certificate.serial_number, "X")

    @staticmethod
    def validity_window(certificate: x509.Certificate) -> Tuple[datetime, datetime]:
        """(not_valid_before, not_valid_after) as naive UTC datetimes"""
        return (
            _naive_utc(certificate.not_valid_before_utc),
            _naive_utc(certificate.not_valid_after_utc)
        )

    @staticmethod
    def format_name(name: x509.Name) -> str:
        """Render an X.509 Name as 'CN=..., O=..., C=...'"""
        return ", ".join(
            f"{_NAME_LABELS.get(attribute.oid, attribute.oid.dotted_string)}={attribute.value}"
            for attribute in name
        )

    @staticmethod
    def common_name(name: x509.Name) -> Optional[str]:
        values = name.get_attributes_for_oid(x509.NameOID.COMMON_NAME)
        return values[0].value if values else None

    @staticmethod
    def public_key_pem(public_key) -> str:
        return public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo
        ).decode()
