"""
Test Configuration and Fixtures

Services run on the in-memory store and blob storage; external CAs are
reached through httpx.MockTransport.
"""

import logging
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import BestAvailableEncryption, Encoding, NoEncryption, pkcs12
from cryptography.x509.oid import NameOID

from sigex.core.config import Settings
from sigex.models import SubjectIdentity, TipoDocumento
from sigex.services.container import build_services
from sigex.services.storage import InMemoryBlobStorage
from sigex.store import InMemoryStore


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

GOVERNMENT_ISSUER = "CA Gubernamental Argentina"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        STORE_BACKEND="memory",
        KEY_ENCRYPTION_SECRET="test-secret",
        CA_RETRY_BACKOFF_SECONDS=0.0,
        CA_MAX_RETRIES=2,
        TRUSTED_GOVERNMENT_ISSUERS=[GOVERNMENT_ISSUER],
        GOVERNMENT_CA_URL=None,
        COMMERCIAL_CA_URL=None
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def blob_storage() -> InMemoryBlobStorage:
    return InMemoryBlobStorage()


@pytest.fixture
async def services(settings, store, blob_storage):
    container = build_services(settings, store=store, blob_storage=blob_storage)
    yield container
    await container.close()


# Builders

def build_pkcs12(
    common_name: str = "Maria Gonzalez",
    issuer_name: str = GOVERNMENT_ISSUER,
    passphrase: str = "secreto",
    key=None,
    not_before: datetime = None,
    not_after: datetime = None,
    email: str = "maria.gonzalez@sanjuan.gob.ar"
) -> bytes:
    """PKCS#12 container with a certificate issued by ``issuer_name``"""
    key = key or rsa.generate_private_key(public_exponent=65537, key_size=2048)
    now = datetime.now(timezone.utc)
    subject = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        x509.NameAttribute(NameOID.EMAIL_ADDRESS, email),
        x509.NameAttribute(NameOID.COUNTRY_NAME, "AR"),
    ])
    issuer = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, issuer_name),
        x509.NameAttribute(NameOID.COUNTRY_NAME, "AR"),
    ])
    certificate = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before or now - timedelta(days=1))
        .not_valid_after(not_after or now + timedelta(days=730))
        .sign(key, hashes.SHA256())
    )
    encryption = BestAvailableEncryption(passphrase.encode()) if passphrase else NoEncryption()
    return pkcs12.serialize_key_and_certificates(
        name=common_name.encode(),
        key=key,
        cert=certificate,
        cas=None,
        encryption_algorithm=encryption
    )


def issue_certificate_from_csr(csr_pem: str, issuer_name: str = GOVERNMENT_ISSUER, days: int = 730) -> str:
    """What a remote CA does with a CSR: certify its public key"""
    csr = x509.load_pem_x509_csr(csr_pem.encode())
    ca_key = ec.generate_private_key(ec.SECP256R1())
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(csr.subject)
        .issuer_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, issuer_name)]))
        .public_key(csr.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=1))
        .not_valid_after(now + timedelta(days=days))
        .sign(ca_key, hashes.SHA256())
    )
    return certificate.public_bytes(Encoding.PEM).decode()


@pytest.fixture
def subject() -> SubjectIdentity:
    return SubjectIdentity(
        nombre="Juan Perez",
        email="juan.perez@sanjuan.gob.ar",
        dni="30123456",
        cuil="20-30123456-7",
        organizacion="Gobierno de San Juan",
        cargo="Director"
    )


@pytest.fixture
def internal_certificate_factory(services, subject):
    async def factory(owner_id: str = "jperez"):
        return await services.lifecycle.request_certificate(
            provider="internal",
            subject=subject,
            certificate_type="internal",
            owner_id=owner_id
        )
    return factory


@pytest.fixture
async def internal_certificate(internal_certificate_factory):
    return await internal_certificate_factory()


@pytest.fixture
async def government_certificate(services):
    return await services.lifecycle.import_pkcs12(
        build_pkcs12(),
        "secreto",
        owner_id="mgonzalez",
        certificate_type="official_government"
    )


@pytest.fixture
async def oficinas(services):
    """Mesa de entradas, legales (manual reception) and despacho (automatic reception)"""
    mesa = await services.workflow.crear_oficina("mesa", "Mesa de Entradas")
    legales = await services.workflow.crear_oficina("LEG", "Asesoria Legal")
    despacho = await services.workflow.crear_oficina("DESP", "Despacho", recepcion_automatica=True)
    return {"mesa": mesa, "legales": legales, "despacho": despacho}


@pytest.fixture
async def expediente(services, oficinas):
    return await services.workflow.crear_expediente(
        titulo="Licitacion de obra publica",
        oficina_id=oficinas["mesa"].oficina_id,
        usuario="jperez"
    )


@pytest.fixture
def add_document(services):
    async def add(expediente_id: str, nombre: str = "nota.pdf", content: bytes = None,
                  tipo: TipoDocumento = TipoDocumento.NO_OFICIAL, usuario: str = "jperez"):
        return await services.workflow.add_document(
            expediente_id,
            nombre,
            content if content is not None else f"contenido de {nombre}".encode(),
            tipo,
            usuario
        )
    return add


@pytest.fixture
def pkcs12_builder():
    return build_pkcs12


@pytest.fixture
def csr_issuer():
    return issue_certificate_from_csr
