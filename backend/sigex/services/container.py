"""
Service container.

Built once at startup (or per test) and attached to ``app.state.services``.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from ..core.config import Settings
from ..store.base import DurableStore
from ..store.memory import InMemoryStore
from .ca.registry import CertificateAuthorityRegistry, build_default_registry
from .certificates.key_vault import PrivateKeyVault
from .certificates.lifecycle import CertificateLifecycleManager
from .signature.signature_verifier import SignatureVerifier
from .signature.signing_engine import SigningEngine
from .storage import BlobStorage, InMemoryBlobStorage, LocalBlobStorage
from .workflow.expediente_workflow import ExpedienteWorkflowEngine

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    store: DurableStore
    blob_storage: BlobStorage
    registry: CertificateAuthorityRegistry
    vault: PrivateKeyVault
    lifecycle: CertificateLifecycleManager
    signing: SigningEngine
    verifier: SignatureVerifier
    workflow: ExpedienteWorkflowEngine

    async def close(self):
        await self.registry.aclose()
        await self.store.close()


def build_services(
    settings: Settings,
    store: Optional[DurableStore] = None,
    blob_storage: Optional[BlobStorage] = None,
    registry: Optional[CertificateAuthorityRegistry] = None
) -> ServiceContainer:
    """Wire the services; missing collaborators fall back to the configured defaults"""
    if store is None:
        store = InMemoryStore()
    if blob_storage is None:
        if settings.STORE_BACKEND == "memory":
            blob_storage = InMemoryBlobStorage()
        else:
            blob_storage = LocalBlobStorage(settings.DOCUMENT_STORAGE_PATH)
    if registry is None:
        registry = build_default_registry(settings)

    vault = PrivateKeyVault(settings.KEY_ENCRYPTION_SECRET)
    lifecycle = CertificateLifecycleManager(
        registry,
        store,
        vault,
        expiry_warning_days=settings.CERT_EXPIRY_WARNING_DAYS,
        trusted_government_issuers=settings.TRUSTED_GOVERNMENT_ISSUERS
    )

    logger.info(
        f"Services built: store={type(store).__name__}, blobs={type(blob_storage).__name__}, "
        f"providers={[a.provider_id for a in registry.authorities()]}"
    )
    return ServiceContainer(
        settings=settings,
        store=store,
        blob_storage=blob_storage,
        registry=registry,
        vault=vault,
        lifecycle=lifecycle,
        signing=SigningEngine(store, lifecycle, vault, blob_storage),
        verifier=SignatureVerifier(lifecycle),
        workflow=ExpedienteWorkflowEngine(
            store,
            blob_storage,
            rejected_is_terminal=settings.REJECTED_IS_TERMINAL,
            max_document_size_mb=settings.MAX_DOCUMENT_SIZE_MB
        )
    )
