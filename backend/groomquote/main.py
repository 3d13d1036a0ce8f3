from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from groomquote.config import settings
from groomquote.routers import auth, chat, notifications, payments, quotes, reviews, statistics
from groomquote.services.market_store import market_store
from groomquote.services.push_sender import push_sender


app = FastAPI(title="GroomQuote API", version="0.1.0")

allow_any_origin = len(settings.cors_origins) == 1 and settings.cors_origins[0] == "*"

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    # Browsers reject wildcard CORS with credentials enabled.
    allow_credentials=not allow_any_origin,
    allow_methods=["*"],
    allow_headers=["*"],
)

if not (len(settings.trusted_hosts) == 1 and settings.trusted_hosts[0] == "*"):
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_hosts)

app.include_router(auth.router)
app.include_router(quotes.router)
app.include_router(payments.router)
app.include_router(reviews.router)
app.include_router(notifications.router)
app.include_router(statistics.router)
app.include_router(chat.router)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/ready")
def ready():
    return {
        "status": "ready",
        "database": market_store.db_path,
        "push_enabled": push_sender.enabled,
        "auth_required": settings.auth_required,
    }
