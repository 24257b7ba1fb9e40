# ==============================================================================
# SERVICIO DE TRANSACCIONES (FACHADA)
# ==============================================================================
# Único punto de entrada para las rutas.
#
# Orden de cada operación:
#   1. Resolver valores por defecto (hora actual)
#   2. Autorizar al actor
#   3. Ejecutar la transición (máquina de estados / entregas)
#   4. Notificar (dispara y olvida)
# ==============================================================================

import logging
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Dict, List, Optional, Tuple

from app_inventory.errors import PersistenceError, ValidationError
from app_inventory.models import (
    Delivery,
    DeliveryStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from app_inventory.performance_logger import profile_function
from app_inventory.repositories.interfaces import ITransactionRepository
from app_inventory.services.authorization_service import AuthorizationService
from app_inventory.services.delivery_service import DeliveryService
from app_inventory.services.notification_service import NotificationService
from app_inventory.services.overdue_monitor import OverdueMonitor
from app_inventory.services.state_machine import TransactionStateMachine
from app_inventory.timeutils import ensure_aware, utc_now


logger = logging.getLogger(__name__)

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


def _storage_errors(fn):
    """Traduce fallas de E/S no previstas a PersistenceError (reintentable)."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except OSError as e:
            logger.exception("Error de almacenamiento en %s", fn.__name__)
            raise PersistenceError(f'Error de almacenamiento: {e}') from e
    return wrapper


def _parse_enum(enum_cls, value: Any, field: str):
    if value is None or value == '':
        return None
    try:
        return enum_cls(value)
    except ValueError:
        valid = ', '.join(m.value for m in enum_cls)
        raise ValidationError(
            f'Valor inválido para {field}: {value!r} (válidos: {valid})',
            field=field
        ) from None


class TransactionService:
    """
    Fachada del ciclo de vida de transacciones.

    Responsabilidades:
    - Autorizar cada operación según el rol del actor
    - Delegar las transiciones a la máquina de estados
    - Revisar vencimientos al leer
    - Notificar aprobaciones, rechazos, vencimientos y asignaciones
    """

    def __init__(
        self,
        state_machine: TransactionStateMachine,
        transaction_repo: ITransactionRepository,
        overdue_monitor: OverdueMonitor,
        delivery_service: DeliveryService,
        authorization: AuthorizationService,
        notification_service: NotificationService = None,
        check_overdue_on_read: bool = True
    ):
        """
        Inicializa la fachada.

        Args:
            state_machine: Máquina de estados
            transaction_repo: Repositorio de transacciones (consultas)
            overdue_monitor: Monitor de vencimientos
            delivery_service: Servicio de entregas
            authorization: Verificador de capacidades
            notification_service: Notificaciones (opcional)
            check_overdue_on_read: Revisar vencimiento al leer una transacción
        """
        self.state_machine = state_machine
        self.transaction_repo = transaction_repo
        self.overdue_monitor = overdue_monitor
        self.delivery_service = delivery_service
        self.authorization = authorization
        self.notification_service = notification_service
        self.check_overdue_on_read = check_overdue_on_read

    @staticmethod
    def _now(now: Optional[datetime]) -> datetime:
        return ensure_aware(now) if now is not None else utc_now()

    # =========================================================================
    # CICLO DE VIDA
    # =========================================================================

    @profile_function(name='Crear solicitud')
    @_storage_errors
    def create_transaction(
        self,
        actor_id: str,
        item_id: str,
        type: Any,
        quantity: Any = None,
        from_store_id: Optional[str] = None,
        to_store_id: Optional[str] = None,
        due_date: Any = None,
        notes: Optional[str] = None,
        condition: Any = None,
        now: Optional[datetime] = None
    ) -> Transaction:
        """
        Crea una solicitud a nombre del actor.

        Returns:
            Transacción en Pending
        """
        self.authorization.get_actor(actor_id)
        return self.state_machine.create(
            requester_id=actor_id,
            item_id=item_id,
            type=type,
            quantity=quantity,
            from_store_id=from_store_id,
            to_store_id=to_store_id,
            due_date=due_date,
            notes=notes,
            condition=condition,
            now=self._now(now)
        )

    @profile_function(name='Aprobar solicitud')
    @_storage_errors
    def approve(
        self,
        transaction_id: str,
        actor_id: str,
        assignee_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Transaction:
        """Aprueba una solicitud (Admin o Store Keeper)."""
        self.authorization.require(
            self.authorization.can_approve(actor_id),
            'Solo Admin o Store Keeper pueden aprobar solicitudes'
        )
        transaction = self.state_machine.approve(
            transaction_id, actor_id, now=self._now(now), assignee_id=assignee_id
        )

        if self.notification_service:
            self.notification_service.transaction_approved(transaction)
            if assignee_id:
                delivery = self.delivery_service.delivery_repo.get_by_transaction(transaction.id)
                if delivery is not None:
                    self.notification_service.delivery_assigned(assignee_id, delivery.id)
        return transaction

    @profile_function(name='Rechazar solicitud')
    @_storage_errors
    def reject(
        self,
        transaction_id: str,
        actor_id: str,
        reason: str,
        now: Optional[datetime] = None
    ) -> Transaction:
        """Rechaza una solicitud con motivo obligatorio."""
        self.authorization.require(
            self.authorization.can_approve(actor_id),
            'Solo Admin o Store Keeper pueden rechazar solicitudes'
        )
        transaction = self.state_machine.reject(
            transaction_id, actor_id, reason, now=self._now(now)
        )
        if self.notification_service:
            self.notification_service.transaction_rejected(transaction)
        return transaction

    @profile_function(name='Registrar devolución')
    @_storage_errors
    def process_return(
        self,
        transaction_id: str,
        actor_id: str,
        return_store_id: str,
        condition: Any,
        notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Transaction:
        """Registra la devolución de un préstamo (solicitante o aprobador)."""
        current = self.state_machine.get(transaction_id)
        self.authorization.require(
            self.authorization.can_return(actor_id, current),
            'Solo el solicitante o un aprobador puede registrar la devolución'
        )
        return self.state_machine.process_return(
            transaction_id,
            return_store_id,
            condition,
            notes=notes,
            actor_id=actor_id,
            now=self._now(now)
        )

    @profile_function(name='Cancelar solicitud')
    @_storage_errors
    def cancel(
        self,
        transaction_id: str,
        actor_id: str,
        reason: str,
        now: Optional[datetime] = None
    ) -> Transaction:
        """Cancela una solicitud (solicitante o aprobador)."""
        current = self.state_machine.get(transaction_id)
        self.authorization.require(
            self.authorization.can_cancel(actor_id, current),
            'Solo el solicitante o un aprobador puede cancelar la solicitud'
        )
        return self.state_machine.cancel(transaction_id, actor_id, reason, now=self._now(now))

    @profile_function(name='Completar transacción')
    @_storage_errors
    def complete(
        self,
        transaction_id: str,
        actor_id: str,
        now: Optional[datetime] = None
    ) -> Transaction:
        """Completa una transferencia, compra o devolución aprobada."""
        self.authorization.require(
            self.authorization.can_approve(actor_id),
            'Solo Admin o Store Keeper pueden completar transacciones'
        )
        return self.state_machine.complete(transaction_id, actor_id, now=self._now(now))

    # =========================================================================
    # CONSULTAS
    # =========================================================================

    @_storage_errors
    def get_transaction(
        self,
        transaction_id: str,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Transaction:
        """
        Obtiene una transacción (revisando su vencimiento si corresponde).

        Con actor_id, solo el dueño o Admin/Store Keeper pueden verla; el
        permiso se revisa antes de reclasificarla como vencida.
        """
        transaction = self.state_machine.get(transaction_id)
        if actor_id is not None:
            self.authorization.require(
                self.authorization.can_cancel(actor_id, transaction),
                'No puede ver transacciones de otros usuarios'
            )
        if self.check_overdue_on_read:
            transaction = self.overdue_monitor.check(transaction, self._now(now))
        return transaction

    @profile_function(name='Listar transacciones')
    @_storage_errors
    def list_transactions(
        self,
        status: Any = None,
        type: Any = None,
        user_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[Transaction], int]:
        """
        Lista transacciones con filtros opcionales.

        Returns:
            Tupla (página, total)
        """
        transactions = self.transaction_repo.search(
            status=_parse_enum(TransactionStatus, status, 'status'),
            type=_parse_enum(TransactionType, type, 'type'),
            user_id=user_id or None
        )
        offset = max(0, offset)
        return transactions[offset:offset + max(0, limit)], len(transactions)

    @_storage_errors
    def list_overdue(self, now: Optional[datetime] = None) -> List[Transaction]:
        """Transacciones vencidas, de la más atrasada a la menos."""
        if self.check_overdue_on_read:
            self.overdue_monitor.sweep(self._now(now))
        overdue = self.transaction_repo.find_by_status(TransactionStatus.OVERDUE)
        return sorted(overdue, key=lambda t: t.due_date or _FAR_FUTURE)

    @_storage_errors
    def list_pending(self, store_id: Optional[str] = None) -> List[Transaction]:
        """Solicitudes pendientes, opcionalmente de una tienda."""
        pending = self.transaction_repo.find_by_status(TransactionStatus.PENDING)
        if store_id:
            pending = [
                t for t in pending
                if store_id in (t.from_store_id, t.to_store_id)
            ]
        return pending

    @profile_function(name='Revisar vencimientos')
    @_storage_errors
    def run_overdue_sweep(
        self,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> List[Transaction]:
        """Reclasifica como vencidas todas las aprobadas fuera de plazo."""
        self.authorization.require(
            self.authorization.can_approve(actor_id),
            'Solo Admin o Store Keeper pueden ejecutar la revisión de vencimientos'
        )
        return self.overdue_monitor.sweep(self._now(now))

    @_storage_errors
    def dashboard_stats(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Contadores del panel para un usuario.

        Returns:
            Dict con active_borrows, overdue_items, pending_requests,
            completed_returns (y pending_approvals para aprobadores)
        """
        if self.check_overdue_on_read:
            self.overdue_monitor.sweep(self._now(now))

        mine = self.transaction_repo.search(user_id=user_id)
        borrows = [t for t in mine if t.is_borrow()]
        stats = {
            'active_borrows': sum(1 for t in borrows if t.status == TransactionStatus.APPROVED),
            'overdue_items': sum(1 for t in mine if t.status == TransactionStatus.OVERDUE),
            'pending_requests': sum(1 for t in mine if t.status == TransactionStatus.PENDING),
            'completed_returns': sum(
                1 for t in borrows
                if t.status == TransactionStatus.COMPLETED and t.returned_at is not None
            ),
        }
        if self.authorization.can_approve(user_id):
            stats['pending_approvals'] = len(
                self.transaction_repo.find_by_status(TransactionStatus.PENDING)
            )
        return stats

    # =========================================================================
    # ENTREGAS
    # =========================================================================

    @_storage_errors
    def get_delivery(self, delivery_id: str) -> Delivery:
        return self.delivery_service.get_delivery(delivery_id)

    @_storage_errors
    def list_deliveries(
        self,
        status: Any = None,
        assigned_to: Optional[str] = None
    ) -> List[Delivery]:
        return self.delivery_service.list_deliveries(
            status=_parse_enum(DeliveryStatus, status, 'status'),
            assigned_to=assigned_to or None
        )

    @_storage_errors
    def delivery_stats(self) -> Dict[str, int]:
        return self.delivery_service.statistics()

    @profile_function(name='Asignar entrega')
    @_storage_errors
    def assign_delivery(
        self,
        delivery_id: str,
        assignee_id: str,
        actor_id: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Delivery:
        """Asigna una entrega (Admin o Store Keeper)."""
        self.authorization.require(
            self.authorization.can_manage_deliveries(actor_id),
            'Solo Admin o Store Keeper pueden asignar entregas'
        )
        delivery = self.delivery_service.assign(
            delivery_id, assignee_id, actor_id, notes=notes, now=self._now(now)
        )
        if self.notification_service:
            self.notification_service.delivery_assigned(assignee_id, delivery.id)
        return delivery

    @profile_function(name='Recoger entrega')
    @_storage_errors
    def pickup_delivery(
        self,
        delivery_id: str,
        actor_id: str,
        now: Optional[datetime] = None
    ) -> Delivery:
        """Registra el recojo (el asignado, Admin o Store Keeper)."""
        delivery = self.delivery_service.get_delivery(delivery_id)
        self.authorization.require(
            self.authorization.can_handle_delivery(actor_id, delivery),
            'Solo el responsable asignado puede recoger la entrega'
        )
        return self.delivery_service.pickup(delivery_id, actor_id, now=self._now(now))

    @profile_function(name='Entregar')
    @_storage_errors
    def deliver(
        self,
        delivery_id: str,
        actor_id: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Tuple[Delivery, Transaction]:
        """Registra la entrega y completa la transferencia."""
        delivery = self.delivery_service.get_delivery(delivery_id)
        self.authorization.require(
            self.authorization.can_handle_delivery(actor_id, delivery),
            'Solo el responsable asignado puede registrar la entrega'
        )
        return self.delivery_service.deliver(
            delivery_id, actor_id, notes=notes, now=self._now(now)
        )
