"""Validación de datos de asistentes contra el formulario personalizado del evento"""
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, List, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.database.models import CustomFormField, FormFieldType
from shared.errors import ValidationError

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^[\d\s\-\+\(\)]+$")


class FormSchemaProvider:
    """Entrega los campos personalizados declarados para un evento"""

    async def fields_for(self, db: AsyncSession, event_id) -> List[CustomFormField]:
        result = await db.execute(
            select(CustomFormField)
            .where(CustomFormField.event_id == event_id)
            .order_by(CustomFormField.display_order)
        )
        return list(result.scalars().all())


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def _is_valid_date(value: Any) -> bool:
    if isinstance(value, (date, datetime)):
        return True
    if not isinstance(value, str):
        return False
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
        return True
    except ValueError:
        return False


def validate_field(field: CustomFormField, value: Any, attendee_number: int):
    """Validar un valor según el tipo declarado del campo"""
    prefix = f"Asistente {attendee_number}"

    if field.is_required:
        if _is_blank(value):
            raise ValidationError(f'{prefix}: el campo "{field.field_label}" es obligatorio')
        if field.field_type == FormFieldType.CHECKBOX and value is not True:
            raise ValidationError(f'{prefix}: debe marcar "{field.field_label}"')

    if _is_blank(value):
        return

    if field.field_type == FormFieldType.EMAIL:
        if not isinstance(value, str) or not EMAIL_RE.match(value):
            raise ValidationError(f'{prefix}: "{field.field_label}" debe ser un email válido')

    elif field.field_type == FormFieldType.PHONE:
        text = str(value)
        if not PHONE_RE.match(text) or len(re.sub(r"\D", "", text)) < 10:
            raise ValidationError(f'{prefix}: "{field.field_label}" debe ser un teléfono válido')

    elif field.field_type == FormFieldType.NUMBER:
        if isinstance(value, bool):
            raise ValidationError(f'{prefix}: "{field.field_label}" debe ser un número')
        try:
            number = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f'{prefix}: "{field.field_label}" debe ser un número')
        if not number.is_finite():
            raise ValidationError(f'{prefix}: "{field.field_label}" debe ser un número')

        config = field.configuration or {}
        if config.get("min") is not None and number < Decimal(str(config["min"])):
            raise ValidationError(f'{prefix}: "{field.field_label}" debe ser al menos {config["min"]}')
        if config.get("max") is not None and number > Decimal(str(config["max"])):
            raise ValidationError(f'{prefix}: "{field.field_label}" debe ser como máximo {config["max"]}')

    elif field.field_type == FormFieldType.DATE:
        if not _is_valid_date(value):
            raise ValidationError(f'{prefix}: "{field.field_label}" debe ser una fecha válida')


def validate_attendees(items: Sequence, fields: Sequence[CustomFormField]):
    """
    Validar asistentes de todos los ítems antes de tocar inventario.

    Cada ítem debe traer exactamente un asistente por ticket y cada asistente
    debe cumplir los campos del formulario del evento.
    """
    for item in items:
        if len(item.attendees) != item.quantity:
            raise ValidationError(
                f"Cada ticket requiere datos de asistente: se esperaban {item.quantity}, "
                f"se recibieron {len(item.attendees)}"
            )

        for index, attendee in enumerate(item.attendees, start=1):
            responses = attendee.form_responses or {}
            for field in fields:
                validate_field(field, responses.get(field.field_name), index)
