"""Flujo de reembolsos: solicitud, aprobación con el gateway, rechazo y cancelación"""
from decimal import Decimal
from typing import List, Optional, Tuple
import logging
import uuid

from sqlalchemy import select, update, func, exists
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.refunds.services.refund_determination import determine_refund
from services.ticket_purchase.services.asaas_service import AsaasGateway, PaymentGateway
from services.ticket_purchase.services.order_state_machine import (
    OrderEvent, TERMINAL_STATES, apply_transition, next_state,
)
from services.ticket_purchase.services.pricing_service import round2, ZERO
from shared.database.models import (
    Event, Order, OrderItem, OrderStatus, Payment, PaymentStatus, Refund, RefundStatus,
    RefundType, TicketInstance, TicketInstanceStatus, UserRole,
)
from shared.errors import (
    AuthorizationError, ConflictError, DuplicateRefundError, GatewayError,
    InvalidTransitionError, NotFoundError, ValidationError,
)
from shared.utils.clock import utcnow
from shared.utils.ids import as_uuid

logger = logging.getLogger(__name__)

# Reembolsos que comprometen monto (no rechazados ni cancelados)
COMMITTED_REFUND_STATUSES = (RefundStatus.PENDING, RefundStatus.PROCESSING, RefundStatus.COMPLETED)
OPEN_REFUND_STATUSES = (RefundStatus.PENDING, RefundStatus.PROCESSING)
REFUNDABLE_ORDER_STATUSES = (OrderStatus.CONFIRMED, OrderStatus.COMPLETED, OrderStatus.PARTIAL_REFUND)
REFUNDABLE_PAYMENT_STATUSES = (PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED)


def refund_total(refund: Refund) -> Decimal:
    """Monto de tickets más la tasa si se devuelve"""
    fee = refund.platform_fee_amount if refund.platform_fee_refunded and refund.platform_fee_amount else ZERO
    return round2(Decimal(refund.amount) + Decimal(fee))


class RefundService:
    """Solicitudes de reembolso y su máquina de estados PENDING -> PROCESSING -> COMPLETED"""

    def __init__(self, gateway: Optional[PaymentGateway] = None):
        self.gateway = gateway or AsaasGateway()

    async def _get_refund(self, db: AsyncSession, refund_id) -> Refund:
        result = await db.execute(
            select(Refund)
            .where(Refund.id == as_uuid(refund_id))
            .execution_options(populate_existing=True)
        )
        refund = result.scalar_one_or_none()
        if not refund:
            raise NotFoundError(f"Reembolso {refund_id} no encontrado")
        return refund

    async def _get_order_and_event(self, db: AsyncSession, order_id, lock: bool = False) -> Tuple[Order, Event]:
        stmt = (
            select(Order, Event)
            .join(Event, Order.event_id == Event.id)
            .where(Order.id == as_uuid(order_id))
            .execution_options(populate_existing=True)
        )
        if lock:
            # SELECT ... FOR UPDATE de la orden: serializa solicitudes y aprobaciones
            stmt = stmt.with_for_update(of=Order)
        result = await db.execute(stmt)
        row = result.first()
        if not row:
            raise NotFoundError(f"Orden {order_id} no encontrada")
        return row[0], row[1]

    async def _refunded_so_far(self, db: AsyncSession, order_id) -> Tuple[Decimal, Decimal]:
        """(montos de tickets, tasas) ya comprometidos en reembolsos de la orden"""
        result = await db.execute(
            select(Refund).where(
                Refund.order_id == order_id,
                Refund.status.in_(COMMITTED_REFUND_STATUSES),
            )
        )
        tickets, fees = ZERO, ZERO
        for refund in result.scalars().all():
            tickets += Decimal(refund.amount)
            if refund.platform_fee_refunded and refund.platform_fee_amount:
                fees += Decimal(refund.platform_fee_amount)
        return tickets, fees

    def _ensure_organizer_or_admin(self, event: Event, caller_id, role: str):
        if role == UserRole.ADMIN:
            return
        if role == UserRole.ORGANIZER and event.organizer_id == as_uuid(caller_id):
            return
        raise AuthorizationError(f"Usuario {caller_id} no administra el evento {event.id}")

    async def _resolve_payment(self, db: AsyncSession, order: Order, payment_id) -> Optional[Payment]:
        if payment_id is not None:
            payment = await db.get(Payment, as_uuid(payment_id))
            if not payment:
                raise NotFoundError(f"Pago {payment_id} no encontrado")
            if payment.order_id != order.id:
                raise ValidationError("El pago no pertenece a la orden")
        else:
            payment = await db.scalar(select(Payment).where(Payment.order_id == order.id))
            if payment is None:
                return None

        if payment.status not in REFUNDABLE_PAYMENT_STATUSES:
            raise ConflictError("El pago no está completado")
        return payment

    async def _amounts_for_ticket(
        self,
        db: AsyncSession,
        order: Order,
        ticket_instance_id,
        remaining_tickets: Decimal,
        remaining_fees: Decimal,
    ) -> Tuple[TicketInstance, Decimal, Decimal]:
        result = await db.execute(
            select(TicketInstance, OrderItem)
            .join(OrderItem, TicketInstance.order_item_id == OrderItem.id)
            .where(TicketInstance.id == as_uuid(ticket_instance_id))
        )
        row = result.first()
        if not row:
            raise NotFoundError(f"Ticket {ticket_instance_id} no encontrado")
        ticket, item = row
        if item.order_id != order.id:
            raise ValidationError("El ticket no pertenece a la orden")
        if ticket.status == TicketInstanceStatus.REFUNDED:
            raise ConflictError("El ticket ya fue reembolsado")

        open_refund = await db.scalar(
            select(Refund.id).where(
                Refund.ticket_instance_id == ticket.id,
                Refund.status.in_(OPEN_REFUND_STATUSES),
            )
        )
        if open_refund:
            raise DuplicateRefundError("Ya existe una solicitud de reembolso para este ticket")

        remaining_tickets = max(remaining_tickets, ZERO)
        remaining_fees = max(remaining_fees, ZERO)

        # El último ticket sin reembolso se lleva el resto y absorbe el redondeo
        if not await self._has_other_refundable_tickets(db, order, ticket.id):
            return ticket, remaining_tickets, remaining_fees

        subtotal = Decimal(order.subtotal)
        if subtotal <= 0:
            return ticket, ZERO, ZERO

        # Proporción del ticket sobre el subtotal, aplicada al neto y a la tasa
        share = Decimal(item.unit_price) / subtotal
        ticket_amount = round2((subtotal - Decimal(order.discount)) * share)
        fee_amount = round2(Decimal(order.service_fee) * share)
        return ticket, min(ticket_amount, remaining_tickets), min(fee_amount, remaining_fees)

    async def _has_other_refundable_tickets(self, db: AsyncSession, order: Order, ticket_pk) -> bool:
        """Otros tickets de la orden sin reembolso completado ni solicitud vigente"""
        committed = exists().where(
            Refund.ticket_instance_id == TicketInstance.id,
            Refund.status.in_(COMMITTED_REFUND_STATUSES),
        )
        count = await db.scalar(
            select(func.count(TicketInstance.id))
            .join(OrderItem, TicketInstance.order_item_id == OrderItem.id)
            .where(
                OrderItem.order_id == order.id,
                TicketInstance.id != ticket_pk,
                TicketInstance.status != TicketInstanceStatus.REFUNDED,
                ~committed,
            )
        )
        return count > 0

    async def create_refund(
        self,
        db: AsyncSession,
        order_id,
        reason: str,
        requester_id,
        role: str,
        ticket_instance_id=None,
        payment_id=None,
        notes: Optional[str] = None,
    ) -> Refund:
        """
        Solicitar un reembolso de la orden completa o de un ticket.

        Solo el comprador o un admin pueden solicitarlo.
        """
        if not reason or not reason.strip():
            raise ValidationError("El motivo del reembolso es obligatorio")

        order, event = await self._get_order_and_event(db, order_id, lock=True)
        if order.buyer_id != as_uuid(requester_id) and role != UserRole.ADMIN:
            raise AuthorizationError(f"Usuario {requester_id} no puede reembolsar la orden {order.id}")

        if order.status in TERMINAL_STATES:
            raise ConflictError(f"La orden está {order.status.value} y no admite reembolsos")
        if order.status not in REFUNDABLE_ORDER_STATUSES:
            raise ConflictError("La orden aún no fue pagada")

        refunded_tickets, refunded_fees = await self._refunded_so_far(db, order.id)
        remaining_tickets = round2(Decimal(order.subtotal) - Decimal(order.discount) - refunded_tickets)
        remaining_fees = round2(Decimal(order.service_fee) - refunded_fees)

        ticket = None
        if ticket_instance_id is not None:
            ticket, ticket_amount, fee_amount = await self._amounts_for_ticket(
                db, order, ticket_instance_id, remaining_tickets, remaining_fees
            )
        else:
            open_full = await db.scalar(
                select(Refund.id).where(
                    Refund.order_id == order.id,
                    Refund.ticket_instance_id.is_(None),
                    Refund.status.in_(COMMITTED_REFUND_STATUSES),
                )
            )
            if open_full:
                raise DuplicateRefundError("Ya existe una solicitud de reembolso para esta orden")
            ticket_amount = max(remaining_tickets, ZERO)
            fee_amount = max(remaining_fees, ZERO)

        if ticket_amount + fee_amount <= 0:
            raise ConflictError("No queda monto por reembolsar en esta orden")

        payment = await self._resolve_payment(db, order, payment_id)
        calculation = determine_refund(order.created_at, event, ticket_amount, fee_amount)

        refund = Refund(
            id=uuid.uuid4(),
            order_id=order.id,
            payment_id=payment.id if payment else None,
            ticket_instance_id=ticket.id if ticket else None,
            amount=calculation.ticket_amount,
            platform_fee_amount=calculation.platform_fee_amount if calculation.platform_fee_refunded else None,
            platform_fee_refunded=calculation.platform_fee_refunded,
            refund_type=calculation.refund_type,
            status=RefundStatus.PENDING,
            reason=reason.strip(),
            notes=notes,
            requested_by=as_uuid(requester_id),
        )
        db.add(refund)
        try:
            await db.commit()
        except IntegrityError:
            # Otra solicitud concurrente ganó el índice único de reembolsos vigentes
            await db.rollback()
            raise DuplicateRefundError("Ya existe una solicitud de reembolso vigente para esta orden o ticket")

        logger.info(
            f"Reembolso {refund.id} solicitado para orden {order.order_number}: "
            f"{calculation.refund_type.value}, total={calculation.total_refund_amount}"
        )
        return refund

    async def _set_refund_status(self, db: AsyncSession, refund: Refund, source: RefundStatus,
                                 target: RefundStatus, **values) -> bool:
        result = await db.execute(
            update(Refund)
            .where(Refund.id == refund.id, Refund.status == source)
            .values(status=target, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def approve_refund(self, db: AsyncSession, refund_id, approver_id, role: str,
                             notes: Optional[str] = None) -> Refund:
        """
        Aprobar un reembolso pendiente.

        1. PENDING -> PROCESSING (transacción propia)
        2. Llamada al gateway fuera de la transacción
        3. Éxito: orden, ticket y pago se actualizan y el reembolso queda
           COMPLETED en una sola transacción. Fallo: REJECTED con el error y
           GatewayError al llamador.
        """
        refund = await self._get_refund(db, refund_id)
        order, event = await self._get_order_and_event(db, refund.order_id)
        self._ensure_organizer_or_admin(event, approver_id, role)

        if refund.status != RefundStatus.PENDING:
            raise InvalidTransitionError("El reembolso no está pendiente de aprobación")

        refund_pk = refund.id
        now = utcnow()
        values = {"approved_by": as_uuid(approver_id), "processed_at": now}
        if notes:
            values["notes"] = notes
        order_pk = order.id
        order_total = Decimal(order.total)
        await self._get_order_and_event(db, order_pk, lock=True)
        if not await self._set_refund_status(db, refund, RefundStatus.PENDING, RefundStatus.PROCESSING, **values):
            await db.rollback()
            raise InvalidTransitionError("El reembolso cambió de estado, intenta nuevamente")

        in_flight = await self._in_flight_total(db, order_pk)
        if in_flight > order_total:
            reason = f"El reembolso supera el monto pendiente de la orden ({in_flight} de {order_total})"
            await self._set_refund_status(
                db, refund, RefundStatus.PROCESSING, RefundStatus.REJECTED, rejection_reason=reason,
            )
            await db.commit()
            logger.warning(f"Reembolso {refund_pk} rechazado: {reason}")
            raise ConflictError("El reembolso supera el monto pendiente de la orden")
        await db.commit()
        logger.info(f"Reembolso {refund_pk} en PROCESSING, aprobado por {approver_id}")

        refund = await self._get_refund(db, refund_pk)
        payment = await db.get(Payment, refund.payment_id) if refund.payment_id else None
        amount = refund_total(refund)

        if payment is not None and payment.provider_transaction_id:
            try:
                await self.gateway.refund(
                    payment.provider_transaction_id,
                    amount,
                    f"Reembolso: {refund.reason} (Tipo: {refund.refund_type.value})",
                )
            except GatewayError as e:
                await self._set_refund_status(
                    db, refund, RefundStatus.PROCESSING, RefundStatus.REJECTED,
                    notes=f"Fallo del gateway de pagos: {e.message}",
                    rejection_reason=e.message,
                )
                await db.commit()
                logger.error(f"Reembolso {refund_pk} rechazado por el gateway: {e.message}", exc_info=True)
                raise

        try:
            await self._finalize(db, refund, payment)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.error(f"Error finalizando reembolso {refund_pk} tras el gateway", exc_info=True)
            raise

        logger.info(f"Reembolso {refund_pk} completado: R$ {amount}")
        return await self._get_refund(db, refund_pk)

    async def _in_flight_total(self, db: AsyncSession, order_id) -> Decimal:
        """Reembolsos de la orden en procesamiento o completados, incluido el actual"""
        result = await db.execute(
            select(Refund).where(
                Refund.order_id == order_id,
                Refund.status.in_((RefundStatus.PROCESSING, RefundStatus.COMPLETED)),
            ).execution_options(populate_existing=True)
        )
        return sum((refund_total(r) for r in result.scalars().all()), ZERO)

    async def _finalize(self, db: AsyncSession, refund: Refund, payment: Optional[Payment]):
        """Actualizar orden, ticket y pago; el reembolso pasa a COMPLETED"""
        if not await self._set_refund_status(db, refund, RefundStatus.PROCESSING, RefundStatus.COMPLETED):
            raise InvalidTransitionError("El reembolso ya no está en procesamiento")

        completed = await db.execute(
            select(Refund).where(
                Refund.order_id == refund.order_id,
                Refund.status == RefundStatus.COMPLETED,
            ).execution_options(populate_existing=True)
        )
        completed_refunds = completed.scalars().all()
        order_refunded = sum((refund_total(r) for r in completed_refunds), ZERO)

        order = await db.get(Order, refund.order_id, populate_existing=True)
        if order_refunded > 0:
            event = OrderEvent.FULL_REFUND if order_refunded >= Decimal(order.total) else OrderEvent.PARTIAL_REFUND
            if next_state(order.status, event) is not None:
                await apply_transition(db, order, event)
            else:
                logger.warning(f"Orden {order.order_number} en {order.status.value}, estado de reembolso no aplicado")

        if refund.ticket_instance_id:
            await db.execute(
                update(TicketInstance)
                .where(TicketInstance.id == refund.ticket_instance_id)
                .values(status=TicketInstanceStatus.REFUNDED)
                .execution_options(synchronize_session=False)
            )
        elif order.status == OrderStatus.REFUNDED:
            item_ids = select(OrderItem.id).where(OrderItem.order_id == order.id)
            await db.execute(
                update(TicketInstance)
                .where(
                    TicketInstance.order_item_id.in_(item_ids),
                    TicketInstance.status == TicketInstanceStatus.ACTIVE,
                )
                .values(status=TicketInstanceStatus.REFUNDED)
                .execution_options(synchronize_session=False)
            )

        if payment is not None:
            payment_refunded = sum(
                (refund_total(r) for r in completed_refunds if r.payment_id == payment.id), ZERO
            )
            new_status = (
                PaymentStatus.REFUNDED if payment_refunded >= Decimal(payment.amount)
                else PaymentStatus.PARTIALLY_REFUNDED
            )
            await db.execute(
                update(Payment)
                .where(Payment.id == payment.id)
                .values(status=new_status, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )

    async def reject_refund(self, db: AsyncSession, refund_id, reason: str, rejector_id, role: str) -> Refund:
        if not reason or not reason.strip():
            raise ValidationError("El motivo del rechazo es obligatorio")

        refund = await self._get_refund(db, refund_id)
        _, event = await self._get_order_and_event(db, refund.order_id)
        self._ensure_organizer_or_admin(event, rejector_id, role)

        if refund.status != RefundStatus.PENDING:
            raise InvalidTransitionError("El reembolso no está pendiente de aprobación")

        refund_pk = refund.id
        changed = await self._set_refund_status(
            db, refund, RefundStatus.PENDING, RefundStatus.REJECTED,
            rejection_reason=reason.strip(),
            approved_by=as_uuid(rejector_id),
            processed_at=utcnow(),
        )
        if not changed:
            await db.rollback()
            raise InvalidTransitionError("El reembolso cambió de estado, intenta nuevamente")
        await db.commit()

        logger.info(f"Reembolso {refund_pk} rechazado por {rejector_id}: {reason}")
        return await self._get_refund(db, refund_pk)

    async def cancel_refund(self, db: AsyncSession, refund_id, caller_id, role: str) -> Refund:
        """El solicitante (o un admin) retira una solicitud pendiente"""
        refund = await self._get_refund(db, refund_id)
        if role != UserRole.ADMIN and refund.requested_by != as_uuid(caller_id):
            raise AuthorizationError(f"Usuario {caller_id} no solicitó el reembolso {refund.id}")

        if refund.status != RefundStatus.PENDING:
            raise InvalidTransitionError("Solo se pueden cancelar solicitudes pendientes")

        refund_pk = refund.id
        if not await self._set_refund_status(
            db, refund, RefundStatus.PENDING, RefundStatus.CANCELLED, processed_at=utcnow()
        ):
            await db.rollback()
            raise InvalidTransitionError("El reembolso cambió de estado, intenta nuevamente")
        await db.commit()

        logger.info(f"Reembolso {refund_pk} cancelado por {caller_id}")
        return await self._get_refund(db, refund_pk)

    def _ensure_can_view(self, order: Order, event: Event, caller_id, role: str):
        if role == UserRole.ADMIN or order.buyer_id == as_uuid(caller_id):
            return
        if event.organizer_id == as_uuid(caller_id):
            return
        raise AuthorizationError(f"Usuario {caller_id} sin acceso a la orden {order.id}")

    async def get_refund(self, db: AsyncSession, refund_id, caller_id, role: str) -> Refund:
        refund = await self._get_refund(db, refund_id)
        order, event = await self._get_order_and_event(db, refund.order_id)
        self._ensure_can_view(order, event, caller_id, role)
        return refund

    async def list_refunds_for_order(self, db: AsyncSession, order_id, caller_id, role: str) -> List[Refund]:
        order, event = await self._get_order_and_event(db, order_id)
        self._ensure_can_view(order, event, caller_id, role)
        result = await db.execute(
            select(Refund).where(Refund.order_id == order.id).order_by(Refund.created_at)
        )
        return list(result.scalars().all())

    async def create_event_cancellation_refunds(self, db: AsyncSession, event_id) -> int:
        """
        Crear reembolsos EVENT_CANCELLED pendientes de aprobación para cada
        orden pagada del evento con monto sin reembolsar.

        Cada orden se confirma por separado: si una solicitud concurrente ya
        ocupó el índice único, esa orden se omite y el resto continúa.
        """
        result = await db.execute(
            select(Order.id, Order.subtotal, Order.discount, Order.service_fee, Order.buyer_id).where(
                Order.event_id == as_uuid(event_id),
                Order.status.in_(REFUNDABLE_ORDER_STATUSES),
            )
        )
        # Filas planas: un rollback no las expira
        orders = result.all()

        created = 0
        for order_pk, subtotal, discount, service_fee, buyer_id in orders:
            open_full = await db.scalar(
                select(func.count(Refund.id)).where(
                    Refund.order_id == order_pk,
                    Refund.ticket_instance_id.is_(None),
                    Refund.status.in_(COMMITTED_REFUND_STATUSES),
                )
            )
            if open_full:
                continue

            refunded_tickets, refunded_fees = await self._refunded_so_far(db, order_pk)
            ticket_amount = max(round2(Decimal(subtotal) - Decimal(discount) - refunded_tickets), ZERO)
            fee_amount = max(round2(Decimal(service_fee) - refunded_fees), ZERO)
            if ticket_amount + fee_amount <= 0:
                continue

            payment_pk = await db.scalar(
                select(Payment.id).where(
                    Payment.order_id == order_pk,
                    Payment.status.in_(REFUNDABLE_PAYMENT_STATUSES),
                )
            )
            db.add(Refund(
                id=uuid.uuid4(),
                order_id=order_pk,
                payment_id=payment_pk,
                amount=ticket_amount,
                platform_fee_amount=fee_amount,
                platform_fee_refunded=True,
                refund_type=RefundType.EVENT_CANCELLED,
                status=RefundStatus.PENDING,
                reason="EVENT_CANCELLED",
                notes="Reembolso automático por cancelación del evento",
                requested_by=buyer_id,
            ))
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.info(f"Orden {order_pk} ya tiene una solicitud de reembolso vigente, se omite")
                continue
            created += 1

        logger.info(f"Creados {created} reembolsos automáticos para el evento {event_id}")
        return created
