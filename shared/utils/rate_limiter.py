"""
Rate limiting usando slowapi + Redis
Compartido entre instancias de la API para proteger creación de órdenes y webhooks
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request, Response
from starlette.responses import JSONResponse
import hashlib
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)


def get_real_client_ip(request: Request) -> str:
    """
    Obtener IP real del cliente considerando proxies/load balancers.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # La primera IP es la del cliente
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return get_remote_address(request)


def get_user_identifier(request: Request) -> str:
    """
    Identificador para rate limiting: IP + hash del token si está autenticado.
    """
    ip = get_real_client_ip(request)

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token_hash = hashlib.md5(auth_header.encode()).hexdigest()[:8]
        return f"{ip}:{token_hash}"

    return ip


limiter = Limiter(
    key_func=get_user_identifier,
    storage_uri=settings.REDIS_URL,
    strategy="fixed-window",
    headers_enabled=False,  # Incompatible con response_model de FastAPI
    enabled=settings.RATE_LIMIT_ENABLED,
)
logger.info(
    f"Rate limiter inicializado con Redis: "
    f"{settings.REDIS_URL.split('@')[-1] if '@' in settings.REDIS_URL else settings.REDIS_URL}"
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """
    Handler para rate limit exceeded con información de reintento.
    """
    retry_after = exc.detail.split(" ")[-1] if exc.detail else "60"

    logger.warning(
        f"Rate limit exceeded - IP: {get_real_client_ip(request)}, "
        f"Path: {request.url.path}, "
        f"Retry-After: {retry_after}"
    )

    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "detail": "Demasiadas solicitudes. Por favor espera antes de intentar nuevamente.",
            "retry_after_seconds": int(retry_after) if retry_after.isdigit() else 60,
        },
        headers={"Retry-After": str(retry_after)},
    )


RATE_LIMITS = {
    # Creación de órdenes: restrictivo, compite por inventario
    "order": "10/minute",

    # Webhooks del proveedor de pagos
    "webhook": "100/minute",

    # Reembolsos y cancelaciones
    "refund": "20/minute",

    # Check-in desde scanners
    "validation": "60/minute",

    # Consultas
    "public": "60/minute",

    # Operaciones de organizador/admin
    "admin": "120/minute",
}
