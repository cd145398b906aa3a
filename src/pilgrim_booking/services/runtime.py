from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import text

from pilgrim_booking.config.settings import Settings, settings as default_settings
from pilgrim_booking.db.engine import get_session
from pilgrim_booking.services.collaborators import ActorContext, LocalObjectStore, LoggingReceiptDispatcher
from pilgrim_booking.services.documents import DocumentService
from pilgrim_booking.services.drafts import JsonFileDraftStore
from pilgrim_booking.services.field_governance import FieldGovernanceCache, FieldGovernanceRegistry
from pilgrim_booking.services.lifecycle import BookingLifecycleService
from pilgrim_booking.services.wizard import BookingWizard


@dataclass(frozen=True)
class DBPingResult:
    ok: bool
    message: str


def ping_db() -> DBPingResult:
    """
    What it does:
    - Executes a lightweight SELECT 1 against the configured database.

    Behavior:
    - Returns ok=True if the query succeeds; otherwise ok=False with the exception text.
    """
    try:
        with get_session() as session:
            session.execute(text("SELECT 1"))
        return DBPingResult(ok=True, message="DB OK")
    except Exception as e:
        return DBPingResult(ok=False, message=f"DB error: {e}")


def field_governance_cache(cfg: Settings = default_settings) -> FieldGovernanceCache:
    """Snapshot cache that reads overrides in its own short session on each refresh."""

    def load():
        with get_session() as session:
            return FieldGovernanceRegistry(session).snapshot()

    return FieldGovernanceCache(load, ttl_seconds=cfg.field_config_refresh_seconds)


def document_service(cfg: Settings = default_settings) -> DocumentService:
    return DocumentService(LocalObjectStore(cfg.upload_dir), ttl_seconds=cfg.signed_url_ttl_seconds)


def lifecycle_service(cfg: Settings = default_settings) -> BookingLifecycleService:
    return BookingLifecycleService(
        receipts=LoggingReceiptDispatcher(),
        reference_prefix=cfg.booking_reference_prefix,
    )


def open_wizard(
    *,
    actor: ActorContext,
    package_id: str,
    fields_cache: FieldGovernanceCache,
    cfg: Settings = default_settings,
    owner_user_id: str | None = None,
) -> BookingWizard:
    """
    What it does:
    - Builds a BookingWizard wired to the local draft directory and upload store.

    Behavior:
    - The wizard receives the cache's current governance snapshot; a wizard that is
      already open keeps the snapshot it started with.
    """
    return BookingWizard(
        actor=actor,
        package_id=package_id,
        fields=fields_cache.current(),
        drafts=JsonFileDraftStore(cfg.draft_dir),
        lifecycle=lifecycle_service(cfg),
        documents=document_service(cfg),
        autosave_seconds=cfg.draft_autosave_seconds,
        owner_user_id=owner_user_id,
    )
