# ==============================================================================
# SERVICIO DE ENTREGAS
# ==============================================================================
# Ciclo de vida de la entrega asociada a una transferencia aprobada:
#
#   Pending (sin asignar) → Pending (asignada) → In-Progress → Completed
#        assign()                 pickup()            deliver()
#
# Entregar completa la transferencia en la misma unidad de trabajo.
# ==============================================================================

import logging
from collections import Counter
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from app_inventory.errors import InvalidStateError, NotFoundError, ValidationError
from app_inventory.models import (
    AuditAction,
    Delivery,
    DeliveryStatus,
    Transaction,
    TransactionStatus,
    User,
    UserRole,
    new_id,
)
from app_inventory.repositories.interfaces import (
    IDeliveryRepository,
    ITransactionRepository,
    IUserRepository,
)
from app_inventory.timeutils import ensure_aware, utc_now

if TYPE_CHECKING:
    from app_inventory.services.audit_service import AuditService
    from app_inventory.services.state_machine import TransactionStateMachine


logger = logging.getLogger(__name__)

# Roles que pueden ejecutar una entrega
DELIVERY_ROLES = frozenset([
    UserRole.DELIVERY_STAFF,
    UserRole.STORE_KEEPER,
    UserRole.ADMIN,
])


def validate_assignee(user_repo: IUserRepository, assignee_id: Optional[str]) -> User:
    """
    Verifica que el usuario exista y pueda realizar entregas.

    Raises:
        NotFoundError: Si el usuario no existe
        ValidationError: Si su rol no le permite entregar
    """
    user = user_repo.get_by_id(assignee_id) if assignee_id else None
    if user is None:
        raise NotFoundError(f'Usuario no encontrado: {assignee_id}', field='assignee_id')
    if user.role not in DELIVERY_ROLES:
        raise ValidationError(
            f'El usuario {assignee_id} ({user.role.value}) no puede realizar entregas',
            field='assignee_id'
        )
    return user


def new_delivery(
    transaction: Transaction,
    actor_id: Optional[str],
    assignee_id: Optional[str] = None,
    now: Optional[datetime] = None
) -> Delivery:
    """Construye la entrega de una transferencia recién aprobada."""
    now = now or utc_now()
    return Delivery(
        id=new_id(),
        transaction_id=transaction.id,
        status=DeliveryStatus.PENDING,
        assigned_to=assignee_id,
        assigned_by=actor_id if assignee_id else None,
        from_store_id=transaction.from_store_id,
        to_store_id=transaction.to_store_id,
        created_at=now,
        updated_at=now
    )


class DeliveryService:
    """
    Servicio para gestión de entregas entre tiendas.

    Responsabilidades:
    - Asignar personal de entrega
    - Registrar recojo y entrega
    - Completar la transferencia al entregar
    """

    def __init__(
        self,
        delivery_repo: IDeliveryRepository,
        transaction_repo: ITransactionRepository,
        user_repo: IUserRepository,
        state_machine: 'TransactionStateMachine',
        audit_service: 'AuditService' = None
    ):
        """
        Inicializa el servicio de entregas.

        Args:
            delivery_repo: Repositorio de entregas
            transaction_repo: Repositorio de transacciones
            user_repo: Repositorio de usuarios
            state_machine: Máquina de estados (para completar la transferencia)
            audit_service: Servicio de auditoría (opcional)
        """
        self.delivery_repo = delivery_repo
        self.transaction_repo = transaction_repo
        self.user_repo = user_repo
        self.state_machine = state_machine
        self.audit_service = audit_service

    # =========================================================================
    # CONSULTA
    # =========================================================================

    def get_delivery(self, delivery_id: str) -> Delivery:
        delivery = self.delivery_repo.get_by_id(delivery_id)
        if delivery is None:
            raise NotFoundError(f'Entrega no encontrada: {delivery_id}', field='delivery_id')
        return delivery

    def list_deliveries(
        self,
        status: Optional[DeliveryStatus] = None,
        assigned_to: Optional[str] = None
    ) -> List[Delivery]:
        """Entregas filtradas por estado y/o responsable."""
        def matches(d: Delivery) -> bool:
            if status is not None and d.status != status:
                return False
            if assigned_to is not None and d.assigned_to != assigned_to:
                return False
            return True

        return self.delivery_repo.list(matches)

    def statistics(self) -> Dict[str, int]:
        """Cantidad de entregas por estado y total."""
        counts = Counter(d.status for d in self.delivery_repo.list())
        stats = {status.value: counts.get(status, 0) for status in DeliveryStatus}
        stats['total'] = sum(counts.values())
        return stats

    # =========================================================================
    # CICLO DE VIDA
    # =========================================================================

    def _update(
        self,
        uow,
        before: Delivery,
        now: datetime,
        **changes: Any
    ) -> Delivery:
        updated = replace(before, updated_at=now, **changes)
        uow.save(self.delivery_repo, updated)
        return updated

    def _audit(self, actor_id: Optional[str], before: Delivery, after: Delivery) -> None:
        if self.audit_service:
            self.audit_service.record(
                actor_id,
                AuditAction.DELIVERY_UPDATE,
                self.audit_service.TABLE_DELIVERIES,
                after.id,
                before.to_dict(),
                after.to_dict(),
                now=after.updated_at
            )

    @staticmethod
    def _guard(delivery: Delivery, expected: DeliveryStatus, target: DeliveryStatus) -> None:
        if delivery.status != expected:
            raise InvalidStateError(
                f'La entrega {delivery.id} está en {delivery.status.value} '
                f'y no puede pasar a {target.value}',
                current_status=delivery.status.value,
                target_status=target.value
            )

    def _require_approved_transfer(self, delivery: Delivery, target: DeliveryStatus) -> None:
        transaction = self.transaction_repo.get_by_id(delivery.transaction_id)
        if transaction is None or transaction.status != TransactionStatus.APPROVED:
            raise InvalidStateError(
                'La transferencia ya no está aprobada',
                current_status=transaction.status.value if transaction else None,
                target_status=target.value
            )

    def assign(
        self,
        delivery_id: str,
        assignee_id: str,
        actor_id: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Delivery:
        """
        Asigna (o reasigna) el responsable de una entrega pendiente.

        Args:
            delivery_id: Entrega
            assignee_id: Personal de entrega
            actor_id: Quien asigna
            notes: Observaciones
        """
        validate_assignee(self.user_repo, assignee_id)
        now = ensure_aware(now) if now is not None else utc_now()

        with self.delivery_repo.atomic() as uow:
            before = self.get_delivery(delivery_id)
            self._guard(before, DeliveryStatus.PENDING, DeliveryStatus.PENDING)
            self._require_approved_transfer(before, DeliveryStatus.PENDING)
            changes = {'assigned_to': assignee_id, 'assigned_by': actor_id}
            if notes:
                changes['notes'] = notes
            updated = self._update(uow, before, now, **changes)

        self._audit(actor_id, before, updated)
        logger.info("Entrega %s asignada a %s", delivery_id, assignee_id)
        return updated

    def pickup(
        self,
        delivery_id: str,
        actor_id: str,
        now: Optional[datetime] = None
    ) -> Delivery:
        """Pending (asignada) → In-Progress."""
        now = ensure_aware(now) if now is not None else utc_now()

        with self.delivery_repo.atomic() as uow:
            before = self.get_delivery(delivery_id)
            self._guard(before, DeliveryStatus.PENDING, DeliveryStatus.IN_PROGRESS)
            if not before.assigned_to:
                raise InvalidStateError(
                    'La entrega no tiene responsable asignado',
                    current_status=before.status.value,
                    target_status=DeliveryStatus.IN_PROGRESS.value
                )
            self._require_approved_transfer(before, DeliveryStatus.IN_PROGRESS)
            updated = self._update(
                uow, before, now,
                status=DeliveryStatus.IN_PROGRESS,
                pickup_time=now
            )

        self._audit(actor_id, before, updated)
        return updated

    def deliver(
        self,
        delivery_id: str,
        actor_id: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Tuple[Delivery, Transaction]:
        """
        In-Progress → Completed y completa la transferencia.

        Si completar la transferencia falla, la entrega tampoco cambia.

        Returns:
            Tupla (entrega, transferencia completada)
        """
        now = ensure_aware(now) if now is not None else utc_now()

        with self.delivery_repo.atomic() as uow:
            before = self.get_delivery(delivery_id)
            self._guard(before, DeliveryStatus.IN_PROGRESS, DeliveryStatus.COMPLETED)
            changes = {'status': DeliveryStatus.COMPLETED, 'delivery_time': now}
            if notes:
                changes['notes'] = notes
            updated = self._update(uow, before, now, **changes)
            transaction = self.state_machine.complete(before.transaction_id, actor_id, now=now)

        self._audit(actor_id, before, updated)
        logger.info("Entrega %s completada por %s", delivery_id, actor_id)
        return updated, transaction
