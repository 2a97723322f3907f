"""Integración con ASAAS para reembolsos - Async con httpx"""
from decimal import Decimal
from typing import Dict, Optional, Protocol
import logging

import httpx

from app.core.config import settings
from shared.errors import GatewayError
from shared.utils.circuit_breaker import CircuitBreaker, CircuitOpenError

logger = logging.getLogger(__name__)

ASAAS_URLS = {
    "sandbox": "https://sandbox.asaas.com/api/v3",
    "production": "https://api.asaas.com/v3",
}


class PaymentGateway(Protocol):
    async def refund(self, transaction_id: str, amount: Decimal, description: str) -> Dict:
        ...


class AsaasGateway:
    """
    Cliente ASAAS para reembolsos.

    ASAAS revierte proporcionalmente los splits al reembolsar desde la cuenta
    raíz. Cualquier fallo (timeout, HTTP, circuito abierto) se traduce a
    GatewayError.
    """

    def __init__(self, api_key: Optional[str] = None, environment: Optional[str] = None,
                 breaker: Optional[CircuitBreaker] = None):
        self.api_key = api_key if api_key is not None else settings.ASAAS_API_KEY
        self.environment = environment or settings.ASAAS_ENVIRONMENT
        self.base_url = ASAAS_URLS.get(self.environment, ASAAS_URLS["sandbox"])
        self.breaker = breaker or CircuitBreaker(
            "asaas",
            failure_threshold=settings.GATEWAY_FAILURE_THRESHOLD,
            recovery_timeout=settings.GATEWAY_RECOVERY_SECONDS,
            expected_exception=httpx.HTTPError,
        )

        if not self.api_key:
            logger.warning("ASAAS_API_KEY no configurado. Los reembolsos fallarán.")
        logger.info(f"AsaasGateway inicializado ({self.environment}): {self.base_url}")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Content-Type": "application/json", "access_token": self.api_key},
            timeout=settings.ASAAS_TIMEOUT_SECONDS,
        )

    async def _post_refund(self, transaction_id: str, payload: Dict) -> Dict:
        async with self._client() as client:
            response = await client.post(f"/payments/{transaction_id}/refund", json=payload)
            response.raise_for_status()
            return response.json()

    async def refund(self, transaction_id: str, amount: Decimal, description: str) -> Dict:
        """
        Reembolsar (total o parcialmente) un pago.

        Args:
            transaction_id: ID del pago en ASAAS
            amount: Monto a reembolsar (tickets + tasa si corresponde)
            description: Motivo visible en el panel de ASAAS
        """
        if not self.api_key:
            raise GatewayError("Gateway de pagos no configurado")

        payload = {"value": float(amount), "description": description or "Reembolso solicitado"}
        logger.info(f"Solicitando reembolso ASAAS para pago {transaction_id}: R$ {amount}")

        try:
            data = await self.breaker.call(self._post_refund, transaction_id, payload)
        except CircuitOpenError as e:
            logger.error(f"Reembolso ASAAS no intentado: {e}")
            raise GatewayError("Gateway de pagos no disponible temporalmente")
        except httpx.TimeoutException as e:
            logger.error(f"Timeout en reembolso ASAAS {transaction_id}: {e}", exc_info=True)
            raise GatewayError("Timeout al comunicarse con el gateway de pagos")
        except httpx.HTTPStatusError as e:
            logger.error(
                f"ASAAS respondió {e.response.status_code} al reembolsar {transaction_id}: {e.response.text}",
                exc_info=True,
            )
            raise GatewayError(f"El gateway rechazó el reembolso (HTTP {e.response.status_code})")
        except httpx.RequestError as e:
            logger.error(f"Error de conexión con ASAAS: {e}", exc_info=True)
            raise GatewayError("Error de conexión con el gateway de pagos")

        logger.info(f"Reembolso ASAAS exitoso para pago {transaction_id}")
        return data
