"""
Ops Kernel API — FastAPI endpoints.

Exposes the tenant sessions over REST for:
- Session start/stop per tenant board
- Alert state, dismissal and handling
- Lifecycle transitions (including the reservation arrival gesture)
- Push-channel ingest from an upstream change feed
- Audio activation
- Delivery-gap inspection
"""

from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from ops_kernel.audio.gate import TonePlayer
from ops_kernel.errors import (
    InvalidTransition,
    MissingReason,
    StoreUnavailable,
    UnknownRecord,
)
from ops_kernel.ledger.store import KeyValueStore, SentLedger
from ops_kernel.logging import get_logger, setup_logging
from ops_kernel.models.alert import AlertBoard
from ops_kernel.models.config import EngineConfig
from ops_kernel.models.record import (
    ChangeEvent,
    ChangeKind,
    OperationalRecord,
    RecordKind,
    TransitionContext,
)
from ops_kernel.notifications.dispatcher import NotificationTransport, RecordingTransport
from ops_kernel.records.store import InMemoryRecordStore, RecordStore
from ops_kernel.session.tenant import SessionRegistry, TenantSession
from ops_kernel.settings import Settings, get_settings

logger = get_logger(__name__)


# --- Request/Response Models ---

class SessionStartRequest(BaseModel):
    board: AlertBoard = AlertBoard.ORDERS
    chime: Optional[str] = None


class TransitionRequest(BaseModel):
    target_status: str
    reason: Optional[str] = None
    note: Optional[str] = None
    actor: Optional[str] = None


class ChangeEventRequest(BaseModel):
    kind: ChangeKind
    record_id: str
    record_kind: RecordKind
    status: str
    created_at: Optional[datetime] = None
    flags: dict = {}
    properties: dict = {}


class TableAssignRequest(BaseModel):
    table_id: str


# --- Application Factory ---

def create_app(
    record_store: Optional[RecordStore] = None,
    ledger: Optional[SentLedger] = None,
    kv_store: Optional[KeyValueStore] = None,
    transport: Optional[NotificationTransport] = None,
    tone_player_factory: Optional[Callable[[str], TonePlayer]] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = settings or get_settings()

    app = FastAPI(
        title="Ops Kernel API",
        description="Live order, kitchen and reservation alerting",
        version="0.1.0",
    )

    rs = record_store or InMemoryRecordStore()
    sl = ledger or SentLedger(settings.ledger_db_path)
    kv = kv_store or KeyValueStore(settings.ledger_db_path)
    tp = transport or RecordingTransport()
    board_configs: dict = {}

    def build_session(tenant_id: str) -> TenantSession:
        config = board_configs.get(tenant_id) or EngineConfig(
            device_id=settings.device_id,
            poll_interval_seconds=settings.poll_interval_seconds,
            tone_interval_seconds=settings.tone_interval_seconds,
        )
        return TenantSession(
            tenant_id=tenant_id,
            record_store=rs,
            ledger=sl,
            kv_store=kv,
            transport=tp,
            tone_player=tone_player_factory(tenant_id) if tone_player_factory else None,
            config=config,
        )

    registry = SessionRegistry(build_session)

    app.state.record_store = rs
    app.state.ledger = sl
    app.state.kv_store = kv
    app.state.transport = tp
    app.state.registry = registry

    @app.on_event("startup")
    async def configure_logging():
        setup_logging(settings)

    @app.on_event("shutdown")
    async def shutdown_sessions():
        await registry.stop_all()

    def session_or_404(tenant_id: str) -> TenantSession:
        session = registry.get(tenant_id)
        if session is None or not session.started:
            raise HTTPException(404, "No active session for tenant")
        return session

    # === SESSIONS ===

    @app.post("/tenants/{tenant_id}/sessions")
    async def start_session(tenant_id: str, req: SessionStartRequest):
        """Start (or restart) the tenant's board session."""
        await registry.stop(tenant_id)
        board_configs[tenant_id] = EngineConfig(
            board=req.board,
            chime=req.chime or ("kitchen" if req.board == AlertBoard.KITCHEN else "order"),
            device_id=settings.device_id,
            poll_interval_seconds=settings.poll_interval_seconds,
            tone_interval_seconds=settings.tone_interval_seconds,
        )
        try:
            session = await registry.start(tenant_id)
        except StoreUnavailable as e:
            await registry.stop(tenant_id)
            raise HTTPException(503, f"Record store unavailable: {e}")
        return {
            "tenant_id": tenant_id,
            "board": req.board.value,
            "records": len(session.snapshot),
            "alert": session.alert_snapshot().model_dump(mode="json"),
        }

    @app.delete("/tenants/{tenant_id}/sessions")
    async def stop_session(tenant_id: str):
        if not await registry.stop(tenant_id):
            raise HTTPException(404, "No active session for tenant")
        return {"status": "stopped"}

    # === RECORDS ===

    @app.get("/tenants/{tenant_id}/records")
    async def list_records(tenant_id: str, status: Optional[str] = None):
        session = session_or_404(tenant_id)
        records = session.snapshot.all()
        if status:
            records = [r for r in records if r.status == status.strip().lower()]
        return [r.model_dump(mode="json") for r in records]

    @app.post("/tenants/{tenant_id}/events")
    async def ingest_event(tenant_id: str, req: ChangeEventRequest):
        """Push-channel ingest: one insert/update/delete from the change feed."""
        session = session_or_404(tenant_id)
        try:
            record = OperationalRecord(
                id=req.record_id,
                tenant_id=tenant_id,
                kind=req.record_kind,
                status=req.status,
                created_at=req.created_at or datetime.utcnow(),
                flags=req.flags,
                properties=req.properties,
            )
        except ValueError as e:
            raise HTTPException(422, str(e))
        result = session.reconciler.apply_event(ChangeEvent(kind=req.kind, record=record))
        if result is None:
            raise HTTPException(409, "Event dropped")
        return result.model_dump(mode="json")

    @app.post("/tenants/{tenant_id}/records/{record_id}/transition")
    async def transition(tenant_id: str, record_id: str, req: TransitionRequest):
        session = session_or_404(tenant_id)
        try:
            context = TransitionContext(reason=req.reason, note=req.note, actor=req.actor)
        except ValueError as e:
            raise HTTPException(422, str(e))
        try:
            outcome = await session.transition_status(record_id, req.target_status, context)
        except UnknownRecord as e:
            raise HTTPException(404, str(e))
        except MissingReason as e:
            raise HTTPException(422, str(e))
        except InvalidTransition as e:
            raise HTTPException(409, str(e))
        except StoreUnavailable as e:
            raise HTTPException(503, str(e))
        return outcome.model_dump(mode="json")

    @app.post("/tenants/{tenant_id}/records/{record_id}/occupy")
    async def occupy(tenant_id: str, record_id: str):
        session = session_or_404(tenant_id)
        try:
            record = await session.mark_occupied(record_id)
        except UnknownRecord as e:
            raise HTTPException(404, str(e))
        except InvalidTransition as e:
            raise HTTPException(409, str(e))
        except StoreUnavailable as e:
            raise HTTPException(503, str(e))
        return record.model_dump(mode="json")

    @app.post("/tenants/{tenant_id}/records/{record_id}/release")
    async def release(tenant_id: str, record_id: str):
        session = session_or_404(tenant_id)
        try:
            outcome = await session.release_table(record_id)
        except UnknownRecord as e:
            raise HTTPException(404, str(e))
        except InvalidTransition as e:
            raise HTTPException(409, str(e))
        except StoreUnavailable as e:
            raise HTTPException(503, str(e))
        return outcome.model_dump(mode="json")

    @app.post("/tenants/{tenant_id}/records/{record_id}/table")
    async def assign_table(tenant_id: str, record_id: str, req: TableAssignRequest):
        session = session_or_404(tenant_id)
        try:
            record = await session.assign_table(record_id, req.table_id)
        except UnknownRecord as e:
            raise HTTPException(404, str(e))
        except StoreUnavailable as e:
            raise HTTPException(503, str(e))
        return record.model_dump(mode="json")

    # === ALERTS ===

    @app.get("/tenants/{tenant_id}/alert")
    async def get_alert(tenant_id: str):
        return session_or_404(tenant_id).alert_snapshot().model_dump(mode="json")

    @app.post("/tenants/{tenant_id}/alert/dismiss")
    async def dismiss_alert(tenant_id: str):
        session = session_or_404(tenant_id)
        session.dismiss()
        return session.alert_snapshot().model_dump(mode="json")

    @app.post("/tenants/{tenant_id}/records/{record_id}/handle")
    async def handle_record(tenant_id: str, record_id: str):
        session = session_or_404(tenant_id)
        handled = session.handle_record(record_id)
        return {
            "handled": handled,
            "alert": session.alert_snapshot().model_dump(mode="json"),
        }

    # === AUDIO ===

    @app.post("/tenants/{tenant_id}/audio/activate")
    async def activate_audio(tenant_id: str):
        session = session_or_404(tenant_id)
        return {"activated": session.activate_audio()}

    @app.get("/tenants/{tenant_id}/audio")
    async def audio_status(tenant_id: str):
        session = session_or_404(tenant_id)
        return {
            "activated": session.audio.is_activated(),
            "sound_enabled": session.audio.sound_enabled,
            "repeating": session.audio.repeating,
        }

    # === NOTIFICATIONS ===

    @app.get("/tenants/{tenant_id}/notifications/gaps")
    async def delivery_gaps(tenant_id: str):
        session = session_or_404(tenant_id)
        return [e.model_dump(mode="json") for e in session.dispatcher.delivery_gaps()]

    return app
