# ==============================================================================
# SERVICIO DE DAÑOS
# ==============================================================================
# Reportes de daño: los crea una devolución 'damaged' (máquina de estados)
# o cualquier usuario a mano; un aprobador los revisa y los resuelve.
#
#   Pending → Under Review → Resolved
#   Pending ──────────────→ Resolved
#
# Un daño Critical deja el ítem en Damaged. Al resolver el último daño
# abierto de un ítem Damaged, el ítem vuelve a Available.
# ==============================================================================

import logging
from collections import Counter
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from app_inventory.errors import InvalidStateError, NotFoundError, ValidationError
from app_inventory.models import (
    AuditAction,
    Damage,
    DamageSeverity,
    DamageStatus,
    Item,
    ItemStatus,
    new_id,
)
from app_inventory.repositories.interfaces import IDamageRepository, IItemRepository
from app_inventory.services.audit_service import AuditService
from app_inventory.services.authorization_service import AuthorizationService
from app_inventory.timeutils import ensure_aware, utc_now


logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)

DAMAGE_TRANSITIONS = {
    DamageStatus.PENDING: frozenset([DamageStatus.UNDER_REVIEW, DamageStatus.RESOLVED]),
    DamageStatus.UNDER_REVIEW: frozenset([DamageStatus.RESOLVED]),
    DamageStatus.RESOLVED: frozenset(),
}


def _parse_choice(enum_cls, value: Any, field: str, default=None):
    if value is None or value == '':
        return default
    try:
        return enum_cls(value)
    except ValueError:
        valid = ', '.join(m.value for m in enum_cls)
        raise ValidationError(
            f'Valor inválido para {field}: {value!r} (válidos: {valid})',
            field=field
        ) from None


class DamageService:
    """
    Servicio para reportes de daño.

    Responsabilidades:
    - Registrar reportes manuales
    - Revisar y resolver reportes (Admin, Store Keeper)
    - Consultas y estadísticas
    """

    def __init__(
        self,
        damage_repo: IDamageRepository,
        item_repo: IItemRepository,
        authorization: AuthorizationService,
        audit_service: Optional[AuditService] = None
    ):
        self.damage_repo = damage_repo
        self.item_repo = item_repo
        self.authorization = authorization
        self.audit_service = audit_service

    # =========================================================================
    # CONSULTA
    # =========================================================================

    def get_damage(self, damage_id: str) -> Damage:
        damage = self.damage_repo.get_by_id(damage_id)
        if damage is None:
            raise NotFoundError(f'Reporte de daño no encontrado: {damage_id}', field='damage_id')
        return damage

    def my_reports(
        self,
        user_id: str,
        status: Any = None,
        severity: Any = None
    ) -> List[Damage]:
        """Reportes hechos por el usuario, más recientes primero."""
        status = _parse_choice(DamageStatus, status, 'status')
        severity = _parse_choice(DamageSeverity, severity, 'severity')
        return [
            d for d in self.damage_repo.find_by_reporter(user_id)
            if (status is None or d.status == status)
            and (severity is None or d.severity == severity)
        ]

    def list_damages(
        self,
        actor_id: str,
        status: Any = None,
        severity: Any = None,
        store_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[Damage], int]:
        """
        Todos los reportes, filtrados (solo Admin o Store Keeper).

        Returns:
            Tupla (página, total)
        """
        self.authorization.require(
            self.authorization.can_approve(actor_id),
            'Solo Admin o Store Keeper pueden ver todos los reportes de daño'
        )
        status = _parse_choice(DamageStatus, status, 'status')
        severity = _parse_choice(DamageSeverity, severity, 'severity')
        in_store = self._store_filter(store_id)

        def matches(d: Damage) -> bool:
            if status is not None and d.status != status:
                return False
            if severity is not None and d.severity != severity:
                return False
            return in_store(d)

        damages = sorted(
            self.damage_repo.list(matches),
            key=lambda d: d.reported_at or _EPOCH,
            reverse=True
        )
        return damages[offset:offset + limit], len(damages)

    def statistics(self, store_id: Optional[str] = None) -> Dict[str, Any]:
        """Reportes por estado y por severidad, más el total."""
        damages = self.damage_repo.list(self._store_filter(store_id))
        by_status = Counter(d.status for d in damages)
        by_severity = Counter(d.severity for d in damages)
        return {
            'total': len(damages),
            'by_status': {s.value: by_status.get(s, 0) for s in DamageStatus},
            'by_severity': {s.value: by_severity.get(s, 0) for s in DamageSeverity},
        }

    def _store_filter(self, store_id: Optional[str]):
        if not store_id:
            return lambda d: True
        item_ids = {i.id for i in self.item_repo.list(lambda i: i.store_id == store_id)}
        return lambda d: d.item_id in item_ids

    # =========================================================================
    # REPORTE
    # =========================================================================

    def report(
        self,
        actor_id: str,
        item_id: str,
        description: str,
        quantity_damaged: Any = 1,
        severity: Any = None,
        notes: Optional[str] = None,
        transaction_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Damage:
        """
        Registra un reporte de daño manual.

        Args:
            actor_id: Quien reporta (cualquier usuario)
            item_id: Ítem dañado
            description: Qué pasó
            quantity_damaged: Unidades dañadas (1..cantidad del ítem)
            severity: Low, Medium (por defecto), High o Critical
            notes: Observaciones
            transaction_id: Transacción relacionada, si la hay

        Raises:
            ValidationError: Datos faltantes o inválidos
            NotFoundError: El ítem no existe
        """
        if description is None or not str(description).strip():
            raise ValidationError('Debe describir el daño', field='description')
        if not item_id:
            raise ValidationError('Debe indicar el ítem', field='item_id')
        severity = _parse_choice(DamageSeverity, severity, 'severity', DamageSeverity.MEDIUM)
        quantity = self._parse_quantity(quantity_damaged)
        now = ensure_aware(now) if now is not None else utc_now()

        item_change = None
        with self.damage_repo.atomic() as uow:
            item = self.item_repo.get_by_id(item_id)
            if item is None:
                raise NotFoundError(f'Ítem no encontrado: {item_id}', field='item_id')
            if quantity > item.quantity:
                raise ValidationError(
                    f'Solo hay {item.quantity} unidad(es) de {item.name} para reportar',
                    field='quantity_damaged'
                )

            damage = Damage(
                id=new_id(),
                item_id=item.id,
                reported_by=actor_id,
                description=str(description).strip(),
                quantity_damaged=quantity,
                transaction_id=transaction_id,
                severity=severity,
                notes=notes,
                reported_at=now,
                updated_at=now
            )
            uow.save(self.damage_repo, damage)

            if severity == DamageSeverity.CRITICAL and item.status != ItemStatus.DAMAGED:
                item_change = (item, replace(item, status=ItemStatus.DAMAGED, updated_at=now))
                uow.save(self.item_repo, item_change[1])

        self._audit(actor_id, AuditAction.DAMAGE_REPORT, None, damage)
        self._audit_item(actor_id, item_change, now)
        logger.info("Daño %s reportado en %s (%s)", damage.id, item_id, severity.value)
        return damage

    @staticmethod
    def _parse_quantity(value: Any) -> int:
        if isinstance(value, bool):
            value = None
        try:
            quantity = int(value)
        except (TypeError, ValueError):
            raise ValidationError('La cantidad dañada debe ser un entero', field='quantity_damaged') from None
        if quantity < 1:
            raise ValidationError('La cantidad dañada debe ser al menos 1', field='quantity_damaged')
        return quantity

    # =========================================================================
    # REVISIÓN
    # =========================================================================

    def update_status(
        self,
        damage_id: str,
        actor_id: str,
        status: Any,
        notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Damage:
        """
        Avanza un reporte (solo Admin o Store Keeper).

        Raises:
            AuthorizationError: Actor sin rol aprobador
            ValidationError: Estado desconocido o faltante
            InvalidStateError: Cambio no permitido desde el estado actual
        """
        self.authorization.require(
            self.authorization.can_approve(actor_id),
            'Solo Admin o Store Keeper pueden revisar daños'
        )
        target = _parse_choice(DamageStatus, status, 'status')
        if target is None:
            raise ValidationError('Debe indicar el nuevo estado', field='status')
        now = ensure_aware(now) if now is not None else utc_now()

        item_change = None
        with self.damage_repo.atomic() as uow:
            before = self.get_damage(damage_id)
            if target not in DAMAGE_TRANSITIONS[before.status]:
                raise InvalidStateError(
                    f'El reporte {damage_id} está en {before.status.value} '
                    f'y no puede pasar a {target.value}',
                    current_status=before.status.value,
                    target_status=target.value
                )

            changes = {'status': target, 'updated_at': now}
            if notes:
                changes['notes'] = notes
            if target == DamageStatus.RESOLVED:
                changes['resolved_by'] = actor_id
                changes['resolved_at'] = now
            updated = replace(before, **changes)
            uow.save(self.damage_repo, updated)

            if target == DamageStatus.RESOLVED:
                item_change = self._release_item(uow, updated, now)

        self._audit(actor_id, AuditAction.UPDATE, before, updated)
        self._audit_item(actor_id, item_change, now)
        return updated

    def _release_item(self, uow, resolved: Damage, now: datetime):
        """El ítem vuelve a Available cuando ya no le quedan daños abiertos."""
        item = self.item_repo.get_by_id(resolved.item_id)
        if item is None or item.status != ItemStatus.DAMAGED:
            return None
        still_open = self.damage_repo.list(
            lambda d: d.item_id == item.id and d.id != resolved.id and d.is_open()
        )
        if still_open:
            return None
        after = replace(item, status=ItemStatus.AVAILABLE, updated_at=now)
        uow.save(self.item_repo, after)
        return item, after

    # =========================================================================
    # AUDITORÍA
    # =========================================================================

    def _audit(self, actor_id, action, before: Optional[Damage], after: Damage) -> None:
        if self.audit_service:
            self.audit_service.record(
                actor_id, action, AuditService.TABLE_DAMAGES, after.id,
                before.to_dict() if before is not None else None,
                after.to_dict(),
                now=after.updated_at
            )

    def _audit_item(self, actor_id, change: Optional[Tuple[Item, Item]], now: datetime) -> None:
        if self.audit_service and change is not None:
            before, after = change
            self.audit_service.record(
                actor_id, AuditAction.UPDATE, AuditService.TABLE_ITEMS, after.id,
                before.to_dict(), after.to_dict(), now=now
            )
