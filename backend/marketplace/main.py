import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from marketplace import config
from marketplace.routers import auth, bookings, business, profile, services

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Local Services Marketplace API", version="0.1.0")

allow_any_origin = len(config.CORS_ORIGINS) == 1 and config.CORS_ORIGINS[0] == "*"

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    # Browsers reject wildcard CORS with credentials enabled.
    allow_credentials=not allow_any_origin,
    allow_methods=["*"],
    allow_headers=["*"],
)

if not (len(config.TRUSTED_HOSTS) == 1 and config.TRUSTED_HOSTS[0] == "*"):
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=config.TRUSTED_HOSTS)

app.include_router(services.router, prefix="/services")
app.include_router(bookings.router)
app.include_router(business.router)
app.include_router(profile.router)
app.include_router(auth.router)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/ready")
def ready():
    return {
        "status": "ready",
        "workday": f"{config.WORKDAY_START.strftime('%H:%M')}-{config.WORKDAY_END.strftime('%H:%M')}",
        "slot_step_minutes": config.SLOT_STEP_MINUTES,
        "payment_collector_configured": bool(config.PAYMENT_COLLECTOR_USER_ID),
    }
