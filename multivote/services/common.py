"""
Plumbing shared by every service: logging, error rendering, lifespan,
session dependency and the per-process domain components.

Components are built lazily from the process-wide store and cached; tests
swap them through ``app.dependency_overrides`` or call ``reset_components``
after replacing the store.
"""
import logging
import os
from contextlib import asynccontextmanager
from functools import lru_cache

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from multivote.access import Principal, load_principal
from multivote.catalog import Catalog
from multivote.elections import ElectionAdmin
from multivote.errors import MultivoteError, Unauthorized
from multivote.ledger import VoteLedger
from multivote.lifecycle import allowed_actions, capabilities
from multivote.models import ElectionInstance
from multivote.otp import OtpEngine
from multivote.results import ResultsAggregator
from multivote.schemas import HealthResponse, InstanceOut
from multivote.store import get_store

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


# ── Lifespan ─────────────────────────────────────────────────────────────────

def make_lifespan(service: str, on_startup=None):
    @asynccontextmanager
    async def lifespan(application: FastAPI):
        store = get_store()
        await store.open()
        if on_startup is not None:
            await on_startup(store)
        logger.info(f"{service} service ready ({type(store).__name__})")
        yield
        await store.close()

    return lifespan


def create_app(service: str, title: str, description: str, on_startup=None) -> FastAPI:
    configure_logging()
    application = FastAPI(title=title, description=description,
                          lifespan=make_lifespan(service, on_startup))

    @application.exception_handler(MultivoteError)
    async def multivote_error_handler(request: Request, exc: MultivoteError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @application.get("/health", response_model=HealthResponse)
    async def health():
        return {"status": "healthy", "service": service}

    return application


# ── Components ───────────────────────────────────────────────────────────────

@lru_cache
def otp_engine() -> OtpEngine:
    return OtpEngine(get_store())


@lru_cache
def vote_ledger() -> VoteLedger:
    return VoteLedger(get_store())


@lru_cache
def results_aggregator() -> ResultsAggregator:
    return ResultsAggregator(get_store())


@lru_cache
def catalog() -> Catalog:
    return Catalog(get_store())


@lru_cache
def election_admin() -> ElectionAdmin:
    return ElectionAdmin(get_store())


def store():
    return get_store()


def reset_components() -> None:
    for factory in (otp_engine, vote_ledger, results_aggregator, catalog, election_admin):
        factory.cache_clear()


# ── Session ──────────────────────────────────────────────────────────────────

bearer = HTTPBearer(auto_error=False)


async def current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> Principal:
    if credentials is None:
        raise Unauthorized()
    return await load_principal(get_store(), credentials.credentials)


# ── Renderers ────────────────────────────────────────────────────────────────

def instance_out(instance: ElectionInstance) -> InstanceOut:
    caps = capabilities(instance.status)
    return InstanceOut(
        **instance.model_dump(include=set(InstanceOut.model_fields)),
        allowed_actions=[a.value for a in allowed_actions(instance.status)],
        can_edit_structure=caps.can_edit_categories,
        can_vote=caps.can_vote,
    )
