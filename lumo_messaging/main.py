from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.staticfiles import StaticFiles
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import logging

from .config import get_settings
from .db import close_store
from .errors import MessagingError, messaging_error_handler
from .middleware.rate_limit import limiter
from .routers import conversations, messages, users, websocket
from .service import close_messaging

settings = get_settings()

# Configurar logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Arrancando {settings.app_name} (env={settings.env}, store={settings.store_backend})")
    yield
    await close_messaging()
    await close_store()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(MessagingError, messaging_error_handler)
app.mount("/media", StaticFiles(directory=settings.media_dir), name="media")

# Configuración de CORS según entorno
if settings.env == "dev":
    cors_origins = [
        "http://localhost:8081",
        "http://127.0.0.1:8081",
    ]
    cors_regex = r"https?://(localhost|127\.0\.0\.1)(:\d+)?"
    cors_headers = ["Authorization", "Content-Type", "Accept", "Origin", "X-Requested-With"]
else:
    # Producción: solo la app configurada
    frontend_url = settings.frontend_base_url
    cors_origins = [frontend_url] if frontend_url else []
    cors_regex = None
    cors_headers = ["Authorization", "Content-Type", "Accept"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_origin_regex=cors_regex,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=cors_headers,
    expose_headers=["Content-Type"],
)


@app.get("/health")
async def health():
    return {"status": "ok", "env": settings.env, "store_backend": settings.store_backend}


# Routers
app.include_router(users.router, prefix="/users", tags=["users"])
app.include_router(conversations.router, prefix="/conversations", tags=["conversations"])
app.include_router(messages.router, prefix="/conversations", tags=["messages"])
app.include_router(websocket.router, tags=["websocket"])

# Endpoint de desarrollo (solo en dev)
if settings.env == "dev":
    from .routers import dev
    app.include_router(dev.router, prefix="/dev", tags=["dev"])
