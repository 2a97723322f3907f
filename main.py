"""API Gateway principal - Punto de entrada de la aplicación"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
import logging
from contextlib import asynccontextmanager

from app.core.config import settings
from shared.database.connection import init_db, close_db
from shared.cache.redis_client import init_redis, close_redis
from shared.errors import (
    AuthorizationError,
    AvailabilityError,
    ConflictError,
    DomainError,
    GatewayError,
    NotFoundError,
    ValidationError,
)
from shared.utils.rate_limiter import limiter, rate_limit_exceeded_handler

# Configurar logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle events de la aplicación"""
    # Startup
    logger.info("Iniciando aplicación...")
    await init_db()
    await init_redis()
    logger.info("Aplicación iniciada")
    yield
    # Shutdown
    logger.info("Cerrando aplicación...")
    await close_db()
    await close_redis()
    logger.info("Aplicación cerrada")


# Crear aplicación FastAPI
app = FastAPI(
    title="Ticketeria API",
    description="Motor de órdenes, pagos y reembolsos para venta de tickets",
    version="1.0.0",
    lifespan=lifespan
)

# En desarrollo, permitir todos los orígenes para facilitar testing
if settings.APP_ENV == "development":
    logger.info("Modo desarrollo: CORS configurado para permitir todos los orígenes")
    allow_origins = ["*"]
    allow_credentials = False  # No se puede usar credentials con allow_origins=["*"]
else:
    allow_origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]
    allow_credentials = True
    logger.info(f"CORS origins configurados: {allow_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=allow_credentials,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
    max_age=3600,  # Cache preflight requests por 1 hora
)

# Configurar rate limiting DESPUÉS de CORS
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


def _error_response(status_code: int, exc: DomainError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code.value, "detail": exc.message},
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return _error_response(400, exc)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error_response(404, exc)


@app.exception_handler(AvailabilityError)
async def availability_error_handler(request: Request, exc: AvailabilityError):
    return _error_response(409, exc)


@app.exception_handler(ConflictError)
async def conflict_error_handler(request: Request, exc: ConflictError):
    return _error_response(409, exc)


@app.exception_handler(AuthorizationError)
async def authorization_error_handler(request: Request, exc: AuthorizationError):
    logger.warning(f"Acceso denegado en {request.url.path}: {exc.detail}")
    return _error_response(403, exc)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    return _error_response(502, exc)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    logger.error(f"Error de dominio no mapeado en {request.url.path}: {exc}")
    return _error_response(400, exc)


# Incluir routers de cada servicio
from services.ticket_purchase.routes.orders import router as orders_router
from services.ticket_purchase.routes.webhooks import router as webhooks_router
from services.refunds.routes.refunds import router as refunds_router
from services.event_management.routes.events import router as events_router
from services.ticket_validation.routes.validation import router as validation_router
from services.admin.routes.admin import router as admin_router

app.include_router(orders_router, prefix="/api/v1/orders", tags=["orders"])
app.include_router(webhooks_router, prefix="/api/v1/webhooks", tags=["webhooks"])
app.include_router(refunds_router, prefix="/api/v1/refunds", tags=["refunds"])
app.include_router(events_router, prefix="/api/v1/events", tags=["events"])
app.include_router(validation_router, prefix="/api/v1/tickets", tags=["tickets"])
app.include_router(admin_router, prefix="/api/v1/admin", tags=["admin"])


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "ok", "service": "ticketeria-api"}


@app.get("/ready")
async def ready():
    """Ready check endpoint - verifica conexiones"""
    from sqlalchemy import text
    from shared.database.connection import get_session_maker
    from shared.cache.redis_client import get_redis

    try:
        async with get_session_maker()() as session:
            await session.execute(text("SELECT 1"))

        redis = await get_redis()
        await redis.ping()

        return {"status": "ready", "database": "connected", "redis": "connected"}
    except Exception as e:
        logger.error(f"Ready check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "not ready", "error": str(e)})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.APP_DEBUG
    )
