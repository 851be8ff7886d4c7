"""FastAPI web API for the business card scanner.

Services are built once per app (see ``cardscan.services.container``) and
handed to endpoints through ``Depends(get_services)``; tests pass their own
``Services`` to ``create_app``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field, ValidationError

from cardscan.config import settings, validate_config
from cardscan.models import (
    CamelModel,
    Contact,
    ContactDraft,
    ContactUpdate,
    Event,
    EventCreate,
    EventUpdate,
    LeadCategory,
    LeadCategoryCreate,
    LeadCategoryUpdate,
)
from cardscan.services.auth_service import (
    AccountStorageError,
    AuthResult,
    EmailAlreadyRegistered,
    InvalidCredentials,
    LoginRequest,
    MeResult,
    RegisterRequest,
    UserList,
)
from cardscan.services.capture import ContactValidationError, new_contact_from_draft
from cardscan.services.container import Services, build_services
from cardscan.services.event_registry import SentinelEventError
from cardscan.services.export_service import export_filename

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

VERSION = "0.1.0"


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

_bearer_scheme = HTTPBearer(auto_error=False)


def verify_api_key(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
):
    """Require a valid Bearer token when CARDSCAN_API_KEY is set."""
    expected = settings.cardscan_api_key
    if not expected:
        return  # auth disabled – no key configured
    if not credentials or credentials.credentials != expected:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")


def get_services(request: Request) -> Services:
    return request.app.state.services


def bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> str | None:
    return credentials.credentials if credentials else None


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------

class HealthResponse(BaseModel):
    status: str
    version: str
    storage_backend: str
    llm_provider: str
    llm_configured: bool


class ScanRequest(CamelModel):
    image_base64: str = Field(..., min_length=1, description="Base64-encoded card photo")


class ScanResponse(CamelModel):
    draft: ContactDraft
    suggested_event_id: Optional[str] = None


class SheetsExportRequest(CamelModel):
    event_ids: list[str] = Field(default_factory=list)


def _contact_or_404(services: Services, contact_id: str) -> Contact:
    contact = services.contacts.get(contact_id)
    if contact is None:
        raise HTTPException(status_code=404, detail="Contact not found")
    return contact


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------

contacts_router = APIRouter(prefix="/contacts", tags=["contacts"], dependencies=[Depends(verify_api_key)])


@contacts_router.get("", response_model=list[Contact])
async def list_contacts(services: Services = Depends(get_services)):
    return await services.contacts.list()


@contacts_router.post("", response_model=Contact, status_code=201)
async def create_contact(draft: ContactDraft, services: Services = Depends(get_services)):
    """Validate, enrich (best effort) and store a new contact."""
    try:
        contact = new_contact_from_draft(draft)
    except ContactValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return await services.contacts.add(contact)


@contacts_router.delete("")
async def clear_contacts(services: Services = Depends(get_services)):
    ok = await services.contacts.clear_all()
    return {"cleared": ok}


@contacts_router.post("/refetch", response_model=list[Contact])
async def refetch_contacts(services: Services = Depends(get_services)):
    return await services.contacts.refetch()


@contacts_router.get("/{contact_id}", response_model=Contact)
async def get_contact(contact_id: str, services: Services = Depends(get_services)):
    await services.contacts.ensure_loaded()
    return _contact_or_404(services, contact_id)


@contacts_router.patch("/{contact_id}", response_model=Contact)
async def update_contact(
    contact_id: str,
    update: ContactUpdate,
    services: Services = Depends(get_services),
):
    updated = await services.contacts.update(contact_id, update.changes())
    if updated is None:
        raise HTTPException(status_code=404, detail="Contact not found")
    return updated


@contacts_router.delete("/{contact_id}")
async def delete_contact(contact_id: str, services: Services = Depends(get_services)):
    if not await services.contacts.delete(contact_id):
        raise HTTPException(status_code=404, detail="Contact not found")
    return {"deleted": True}


@contacts_router.get("/{contact_id}/event", response_model=Event)
async def get_contact_event(contact_id: str, services: Services = Depends(get_services)):
    await services.contacts.ensure_loaded()
    await services.events.ensure_loaded()
    contact = _contact_or_404(services, contact_id)
    return services.events.get_by_id(contact.event_id)


@contacts_router.get("/{contact_id}/categories", response_model=list[LeadCategory])
async def get_contact_categories(contact_id: str, services: Services = Depends(get_services)):
    await services.contacts.ensure_loaded()
    await services.categories.ensure_loaded()
    contact = _contact_or_404(services, contact_id)
    return services.categories.get_categories_for_card(contact.category_ids)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

events_router = APIRouter(prefix="/events", tags=["events"], dependencies=[Depends(verify_api_key)])


@events_router.get("", response_model=list[Event])
async def list_events(services: Services = Depends(get_services)):
    return await services.events.list()


@events_router.post("", response_model=Event, status_code=201)
async def create_event(fields: EventCreate, services: Services = Depends(get_services)):
    return await services.events.add(fields)


@events_router.get("/{event_id}", response_model=Event)
async def get_event(event_id: str, services: Services = Depends(get_services)):
    """Unknown or deleted ids resolve to the Non-Categorized event."""
    await services.events.ensure_loaded()
    return services.events.get_by_id(event_id)


@events_router.get("/{event_id}/contacts", response_model=list[Contact])
async def get_event_contacts(event_id: str, services: Services = Depends(get_services)):
    await services.events.ensure_loaded()
    await services.contacts.ensure_loaded()
    return services.contacts.contacts_for_events({event_id}, services.events.resolve_event_id)


@events_router.patch("/{event_id}", response_model=Event)
async def update_event(event_id: str, update: EventUpdate, services: Services = Depends(get_services)):
    try:
        updated = await services.events.update(event_id, update.changes())
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    if updated is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return updated


@events_router.delete("/{event_id}")
async def delete_event(event_id: str, services: Services = Depends(get_services)):
    try:
        deleted = await services.events.delete(event_id)
    except SentinelEventError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    if not deleted:
        raise HTTPException(status_code=404, detail="Event not found")
    return {"deleted": True}


# ---------------------------------------------------------------------------
# Lead categories
# ---------------------------------------------------------------------------

categories_router = APIRouter(
    prefix="/categories", tags=["categories"], dependencies=[Depends(verify_api_key)],
)


@categories_router.get("", response_model=list[LeadCategory])
async def list_categories(services: Services = Depends(get_services)):
    return await services.categories.list()


@categories_router.post("", response_model=LeadCategory, status_code=201)
async def create_category(fields: LeadCategoryCreate, services: Services = Depends(get_services)):
    return await services.categories.add(fields)


@categories_router.patch("/{category_id}", response_model=LeadCategory)
async def update_category(
    category_id: str,
    update: LeadCategoryUpdate,
    services: Services = Depends(get_services),
):
    try:
        updated = await services.categories.update(category_id, update.changes())
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    if updated is None:
        raise HTTPException(status_code=404, detail="Category not found")
    return updated


@categories_router.delete("/{category_id}")
async def delete_category(category_id: str, services: Services = Depends(get_services)):
    if not await services.categories.delete(category_id):
        raise HTTPException(status_code=404, detail="Category not found")
    return {"deleted": True}


# ---------------------------------------------------------------------------
# Export / scan
# ---------------------------------------------------------------------------

export_router = APIRouter(prefix="/export", tags=["export"], dependencies=[Depends(verify_api_key)])


async def _exportable(services: Services) -> list[Contact]:
    await services.events.ensure_loaded()
    return await services.contacts.list()


@export_router.get("/csv", response_class=PlainTextResponse)
async def export_csv(
    event_id: Optional[list[str]] = Query(None, description="Restrict to these events"),
    services: Services = Depends(get_services),
):
    contacts = await _exportable(services)
    return PlainTextResponse(
        services.exporter.to_csv(contacts, event_id or []),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


@export_router.get("/json")
async def export_json(
    event_id: Optional[list[str]] = Query(None, description="Restrict to these events"),
    services: Services = Depends(get_services),
):
    contacts = await _exportable(services)
    return Response(services.exporter.to_json(contacts, event_id or []), media_type="application/json")


@export_router.post("/sheets")
async def export_sheets(request: SheetsExportRequest, services: Services = Depends(get_services)):
    contacts = await _exportable(services)
    rows = services.exporter.sheet_rows(contacts, request.event_ids)
    if not rows:
        raise HTTPException(status_code=422, detail="There are no cards to export.")
    sent = await services.exporter.push_to_sheet(rows)
    return {"sent": sent, "rows": len(rows)}


scan_router = APIRouter(tags=["scan"], dependencies=[Depends(verify_api_key)])


@scan_router.post("/scan", response_model=ScanResponse)
async def scan_card(request: ScanRequest, services: Services = Depends(get_services)):
    """Read a card photo into editable fields; nothing is stored."""
    draft = await services.scanner.extract(request.image_base64)
    if draft is None:
        raise HTTPException(status_code=422, detail="Could not extract data from the image")
    await services.events.ensure_loaded()
    recent = services.events.most_recent_user_event()
    return ScanResponse(draft=draft, suggested_event_id=recent.id if recent else None)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

auth_router = APIRouter(prefix="/auth", tags=["auth"])


@auth_router.post("/register", response_model=AuthResult)
async def register(request: RegisterRequest, services: Services = Depends(get_services)):
    try:
        return await services.auth.register(
            request.first_name, request.last_name, request.email, request.password,
        )
    except EmailAlreadyRegistered as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except AccountStorageError as exc:
        raise HTTPException(status_code=503, detail=str(exc))


@auth_router.post("/login", response_model=AuthResult)
async def login(request: LoginRequest, services: Services = Depends(get_services)):
    try:
        return await services.auth.login(request.email, request.password)
    except InvalidCredentials as exc:
        raise HTTPException(status_code=401, detail=str(exc))
    except AccountStorageError as exc:
        raise HTTPException(status_code=503, detail=str(exc))


@auth_router.get("/me", response_model=MeResult)
async def me(token: str | None = Depends(bearer_token), services: Services = Depends(get_services)):
    return await services.auth.get_me(token)


@auth_router.post("/logout")
async def logout(token: str | None = Depends(bearer_token), services: Services = Depends(get_services)):
    return await services.auth.logout(token)


@auth_router.get("/users", response_model=UserList, dependencies=[Depends(verify_api_key)])
async def list_users(services: Services = Depends(get_services)):
    """Admin listing; guarded by the API key rather than a user role."""
    return await services.auth.get_all_users()


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(services: Services | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        validate_config()
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services()
        logger.info("Loading contacts, events and categories...")
        await app.state.services.load_all()
        logger.info("Card scanner API ready")
        yield

    app = FastAPI(
        title="Business Card Scanner",
        version=VERSION,
        description="Capture, enrich, organise and export business card contacts.",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    def health_check():
        """Health check – verifies the service is running and shows config status."""
        llm_configured = bool(
            settings.openai_api_key if settings.llm_provider == "openai" else settings.llm_endpoint
        )
        return HealthResponse(
            status="ok",
            version=VERSION,
            storage_backend=settings.storage_backend,
            llm_provider=settings.llm_provider,
            llm_configured=llm_configured,
        )

    for router in (contacts_router, events_router, categories_router, export_router, scan_router, auth_router):
        app.include_router(router)
    return app


app = create_app()
