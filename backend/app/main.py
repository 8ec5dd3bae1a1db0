import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from app import settings
from app.routers import appointments, auth, availability, notifications, providers
from app.services.email_sender import email_sender
from app.services.errors import SchedulingError
from app.services.schedule_store import schedule_store
from app.services.slot_advisor import slot_advisor

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="SlotWise API", version="0.1.0")

cors_origins = settings.CORS_ORIGINS
allow_any_origin = len(cors_origins) == 1 and cors_origins[0] == "*"

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    # Browsers reject wildcard CORS with credentials enabled.
    allow_credentials=not allow_any_origin,
    allow_methods=["*"],
    allow_headers=["*"],
)

trusted_hosts = settings.TRUSTED_HOSTS
if not (len(trusted_hosts) == 1 and trusted_hosts[0] == "*"):
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=trusted_hosts)

app.include_router(providers.router)
app.include_router(availability.router)
app.include_router(appointments.router)
app.include_router(auth.router)
app.include_router(notifications.router)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/ready")
def ready():
    try:
        provider_count = len(schedule_store.list_providers())
        store_ok = True
    except SchedulingError:
        logger.exception("Readiness check could not reach the schedule store")
        provider_count = 0
        store_ok = False
    return {
        "status": "ready" if store_ok else "degraded",
        "store": "ok" if store_ok else "unavailable",
        "providers": provider_count,
        "slot_advisor_mode": "openai" if slot_advisor.llm_available else "heuristic",
        "email_enabled": email_sender.enabled,
        "timezone": settings.DEFAULT_TIMEZONE,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
