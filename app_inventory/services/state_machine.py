# ==============================================================================
# MÁQUINA DE ESTADOS DE TRANSACCIONES
# ==============================================================================
# Única puerta para cambiar el estado de una transacción.
#
# Transiciones legales:
#   Pending  → Approved | Rejected | Cancelled
#   Approved → Completed | Overdue | Cancelled
#   Overdue  → Completed (solo por devolución)
#
# Cada transición:
#   1. Relee el registro bajo el lock y compara el estado actual
#      (si otro request ganó la carrera → InvalidStateError, nunca se pisa)
#   2. Escribe transacción + efectos en el ítem en la MISMA unidad de trabajo
#   3. Recién después de confirmar, registra la auditoría (best effort)
#
# Efectos en inventario:
#   - Aprobar Borrow/Transfer   → descuenta stock
#   - Devolver                  → restituye stock (Damaged si vuelve dañado)
#   - Cancelar una aprobada     → restituye stock
#   - Completar Transfer        → el stock llega a la tienda destino
#   - Completar Purchase        → suma stock
# ==============================================================================

import logging
from dataclasses import replace
from datetime import datetime
from functools import partial
from typing import Any, Callable, Iterable, List, Optional

from app_inventory.errors import (
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from app_inventory.models import (
    AuditAction,
    Damage,
    DamageSeverity,
    DeliveryStatus,
    Item,
    ItemStatus,
    OPEN_BORROW_STATUSES,
    RETURNABLE_STATUSES,
    ReturnCondition,
    Transaction,
    TransactionStatus,
    TransactionType,
    UNAVAILABLE_ITEM_STATUSES,
    new_id,
)
from app_inventory.repositories import UnitOfWork
from app_inventory.repositories.interfaces import (
    IDamageRepository,
    IDeliveryRepository,
    IItemRepository,
    ITransactionRepository,
    IUserRepository,
)
from app_inventory.services.audit_service import AuditService
from app_inventory.services.delivery_service import new_delivery, validate_assignee
from app_inventory.services.overdue_monitor import detect_overdue, is_past_due
from app_inventory.services.store_consistency import StoreConsistencyValidator
from app_inventory.timeutils import ensure_aware, parse_datetime, utc_now


logger = logging.getLogger(__name__)


# Grafo de transiciones legales (origen → destinos)
LEGAL_TRANSITIONS = {
    TransactionStatus.PENDING: frozenset([
        TransactionStatus.APPROVED,
        TransactionStatus.REJECTED,
        TransactionStatus.CANCELLED,
    ]),
    TransactionStatus.APPROVED: frozenset([
        TransactionStatus.COMPLETED,
        TransactionStatus.OVERDUE,
        TransactionStatus.CANCELLED,
    ]),
    TransactionStatus.OVERDUE: frozenset([
        TransactionStatus.COMPLETED,
    ]),
}

# Acción de auditoría al crear cada tipo de solicitud
_CREATE_ACTIONS = {
    TransactionType.BORROW: AuditAction.BORROW,
    TransactionType.RETURN: AuditAction.RETURN,
    TransactionType.TRANSFER: AuditAction.TRANSFER,
    TransactionType.PURCHASE: AuditAction.PURCHASE,
}

# Estados de ítem que se liberan al reponer stock
_HELD_ITEM_STATUSES = frozenset([ItemStatus.BORROWED, ItemStatus.RESERVED])


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
    """Indica si la arista current → target existe en el grafo."""
    return target in LEGAL_TRANSITIONS.get(current, frozenset())


def sources_of(target: TransactionStatus) -> frozenset:
    """Estados desde los que se puede llegar a `target`."""
    return frozenset(
        source for source, targets in LEGAL_TRANSITIONS.items() if target in targets
    )


# ==============================================================================
# PARSEO DE ENTRADAS
# ==============================================================================

def _parse_type(value: Any) -> TransactionType:
    if isinstance(value, TransactionType):
        return value
    try:
        return TransactionType(value)
    except ValueError:
        valid = ', '.join(t.value for t in TransactionType)
        raise ValidationError(
            f'Tipo de transacción inválido: {value!r} (válidos: {valid})',
            field='type'
        ) from None


def _parse_quantity(value: Any) -> int:
    """La cantidad debe ser un entero >= 1 (se aceptan dígitos en texto)."""
    quantity = None
    if isinstance(value, bool):
        quantity = None
    elif isinstance(value, int):
        quantity = value
    elif isinstance(value, str) and value.strip().isdigit():
        quantity = int(value.strip())

    if quantity is None or quantity < 1:
        raise ValidationError(
            f'La cantidad debe ser un entero mayor o igual a 1: {value!r}',
            field='quantity'
        )
    return quantity


def _parse_condition(value: Any) -> ReturnCondition:
    if isinstance(value, ReturnCondition):
        return value
    try:
        return ReturnCondition(str(value).strip().lower())
    except ValueError:
        valid = ', '.join(c.value for c in ReturnCondition)
        raise ValidationError(
            f'Condición de devolución inválida: {value!r} (válidas: {valid})',
            field='condition'
        ) from None


def _parse_due_date(value: Any) -> Optional[datetime]:
    # Una fecha ya vencida se acepta: la solicitud nace Pending y el
    # vencimiento se detecta al aprobarla
    try:
        return parse_datetime(value)
    except ValueError:
        raise ValidationError(f'Fecha límite inválida: {value!r}', field='due_date') from None


def _status_after_return(current: ItemStatus, damaged: bool) -> ItemStatus:
    if damaged:
        return ItemStatus.DAMAGED
    # Un ítem marcado Damaged por otra devolución sigue así
    return ItemStatus.AVAILABLE if current in _HELD_ITEM_STATUSES else current


def _require_reason(reason: Optional[str]) -> str:
    if reason is None or not str(reason).strip():
        raise ValidationError('Debe indicar un motivo', field='reason')
    return str(reason).strip()


# ==============================================================================
# AUDITORÍA DIFERIDA
# ==============================================================================

class _PendingAudit:
    """
    Eventos de auditoría acumulados durante una unidad de trabajo.
    Solo se emiten con flush(), después de confirmar las escrituras.
    """

    def __init__(self, audit_service: Optional[AuditService], now: datetime):
        self.audit_service = audit_service
        self.now = now
        self._calls: List[Callable[[], Any]] = []

    def transition(self, actor_id, action, before, after) -> None:
        if self.audit_service:
            self._calls.append(partial(
                self.audit_service.log_transition, actor_id, action, before, after
            ))

    def item(self, actor_id, before: Optional[Item], after: Item) -> None:
        if not self.audit_service:
            return
        action = AuditAction.UPDATE if before is not None else AuditAction.INSERT
        self._calls.append(partial(
            self.audit_service.record,
            actor_id, action, AuditService.TABLE_ITEMS, after.id,
            before.to_dict() if before is not None else None,
            after.to_dict(),
            now=self.now
        ))

    def record(self, actor_id, action, table, target_id, new_value) -> None:
        if self.audit_service:
            self._calls.append(partial(
                self.audit_service.record,
                actor_id, action, table, target_id, None, new_value,
                now=self.now
            ))

    def removed(self, actor_id, table, target_id, old_value) -> None:
        if self.audit_service:
            self._calls.append(partial(
                self.audit_service.record,
                actor_id, AuditAction.DELETE, table, target_id, old_value, None,
                now=self.now
            ))

    def flush(self) -> None:
        calls, self._calls = self._calls, []
        for call in calls:
            call()


# ==============================================================================
# MÁQUINA DE ESTADOS
# ==============================================================================

class TransactionStateMachine:
    """
    Valida y ejecuta las transiciones de estado de las transacciones.

    Responsabilidades:
    - Crear solicitudes (siempre en Pending)
    - Aprobar, rechazar, completar, devolver, cancelar, marcar vencida
    - Aplicar efectos en inventario en la misma unidad de trabajo
    - Registrar auditoría después de confirmar
    """

    def __init__(
        self,
        transaction_repo: ITransactionRepository,
        item_repo: IItemRepository,
        delivery_repo: IDeliveryRepository,
        damage_repo: IDamageRepository,
        user_repo: IUserRepository,
        store_validator: StoreConsistencyValidator,
        audit_service: AuditService = None
    ):
        """
        Inicializa la máquina de estados.

        Args:
            transaction_repo: Repositorio de transacciones
            item_repo: Repositorio de ítems
            delivery_repo: Repositorio de entregas
            damage_repo: Repositorio de daños
            user_repo: Repositorio de usuarios
            store_validator: Validador de tienda de devolución
            audit_service: Servicio de auditoría (opcional)
        """
        self.transaction_repo = transaction_repo
        self.item_repo = item_repo
        self.delivery_repo = delivery_repo
        self.damage_repo = damage_repo
        self.user_repo = user_repo
        self.store_validator = store_validator
        self.audit_service = audit_service

    # =========================================================================
    # UTILIDADES
    # =========================================================================

    @staticmethod
    def _now(now: Optional[datetime]) -> datetime:
        return ensure_aware(now) if now is not None else utc_now()

    def _atomic(self) -> UnitOfWork:
        return self.transaction_repo.atomic()

    def _require_transaction(self, transaction_id: str) -> Transaction:
        transaction = self.transaction_repo.get_by_id(transaction_id)
        if transaction is None:
            raise NotFoundError(
                f'Transacción no encontrada: {transaction_id}',
                field='transaction_id'
            )
        return transaction

    def _require_item(self, item_id: str) -> Item:
        item = self.item_repo.get_by_id(item_id)
        if item is None:
            raise NotFoundError(f'Ítem no encontrado: {item_id}', field='item_id')
        return item

    @staticmethod
    def _guard(
        current: Transaction,
        target: TransactionStatus,
        sources: Optional[Iterable[TransactionStatus]] = None
    ) -> None:
        """Verifica que el estado actual permita llegar a `target`."""
        allowed = frozenset(sources) if sources is not None else sources_of(target)
        if current.status not in allowed or not can_transition(current.status, target):
            raise InvalidStateError(
                f'La transacción {current.id} está en {current.status.value} '
                f'y no puede pasar a {target.value}',
                current_status=current.status.value,
                target_status=target.value
            )

    @staticmethod
    def _log_transition(before: Transaction, after: Transaction) -> None:
        logger.info(
            "Transacción %s (%s): %s → %s",
            after.id, after.type.value, before.status.value, after.status.value
        )

    # =========================================================================
    # CREACIÓN
    # =========================================================================

    def create(
        self,
        requester_id: str,
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
        Crea una solicitud en estado Pending.

        Args:
            requester_id: Usuario que solicita
            item_id: Ítem involucrado
            type: Borrow, Return, Transfer o Purchase
            quantity: Cantidad (>= 1; en Return se toma la del préstamo si falta)
            from_store_id: Tienda de origen
            to_store_id: Tienda de destino / de devolución
            due_date: Fecha límite (futura)
            notes: Observaciones
            condition: Estado declarado del ítem (solo Return)
            now: Momento de creación

        Returns:
            La transacción creada

        Raises:
            ValidationError / NotFoundError: Entrada inválida
            NoOpenBorrowError / StoreMismatchError: Devolución sin préstamo
                activo o a otra tienda
        """
        now = self._now(now)
        tx_type = _parse_type(type)

        if not requester_id:
            raise ValidationError('Debe indicar el solicitante', field='user_id')
        if not self.user_repo.user_exists(requester_id):
            raise NotFoundError(f'Usuario no encontrado: {requester_id}', field='user_id')
        if not item_id:
            raise ValidationError('Debe indicar el ítem', field='item_id')
        due = _parse_due_date(due_date)
        return_condition = None
        if tx_type == TransactionType.RETURN and condition is not None:
            return_condition = _parse_condition(condition)

        pending = _PendingAudit(self.audit_service, now)
        with self._atomic() as uow:
            item = self._require_item(item_id)
            related_borrow_id = None

            if tx_type == TransactionType.RETURN:
                borrow = self.store_validator.validate_return(item.id, requester_id, to_store_id)
                self._ensure_no_open_return(borrow)
                qty = _parse_quantity(borrow.quantity if quantity is None else quantity)
                if qty != borrow.quantity:
                    raise ValidationError(
                        f'La devolución debe ser por la cantidad prestada ({borrow.quantity})',
                        field='quantity'
                    )
                related_borrow_id = borrow.id
            else:
                qty = _parse_quantity(quantity)
                if tx_type == TransactionType.BORROW:
                    from_store_id = self._validate_borrow(item, requester_id, qty, from_store_id)
                elif tx_type == TransactionType.TRANSFER:
                    self._validate_transfer(item, qty, from_store_id, to_store_id)

            transaction = Transaction(
                id=new_id(),
                type=tx_type,
                user_id=requester_id,
                item_id=item.id,
                quantity=qty,
                status=TransactionStatus.PENDING,
                from_store_id=from_store_id,
                to_store_id=to_store_id,
                due_date=due,
                notes=notes,
                related_borrow_id=related_borrow_id,
                return_condition=return_condition,
                created_at=now,
                updated_at=now
            )
            uow.save(self.transaction_repo, transaction)
            pending.transition(requester_id, _CREATE_ACTIONS[tx_type], None, transaction)

        pending.flush()
        logger.info(
            "Transacción %s creada: %s x%d del ítem %s por %s",
            transaction.id, tx_type.value, qty, item_id, requester_id
        )
        return transaction

    def _validate_borrow(
        self,
        item: Item,
        requester_id: str,
        quantity: int,
        from_store_id: Optional[str]
    ) -> str:
        """Valida un préstamo y retorna la tienda de origen efectiva."""
        if item.status in UNAVAILABLE_ITEM_STATUSES:
            raise ValidationError(
                f'El ítem no está disponible para préstamo ({item.status.value})',
                field='item_id'
            )

        origin = from_store_id or item.store_id
        if origin != item.store_id:
            raise ValidationError(
                f'El ítem pertenece a la tienda {item.store_id}, no a {origin}',
                field='from_store_id'
            )

        if quantity > item.quantity:
            raise ValidationError(
                f'Stock insuficiente: disponible {item.quantity}, solicitado {quantity}',
                field='quantity',
                available=item.quantity,
                requested=quantity
            )

        open_borrows = self.transaction_repo.find_borrows(
            item.id, requester_id, OPEN_BORROW_STATUSES
        )
        if open_borrows:
            raise ValidationError(
                'Ya tiene un préstamo abierto de este ítem',
                field='item_id',
                existing_transaction_id=open_borrows[0].id
            )
        return origin

    @staticmethod
    def _validate_transfer(
        item: Item,
        quantity: int,
        from_store_id: Optional[str],
        to_store_id: Optional[str]
    ) -> None:
        if not from_store_id or not to_store_id:
            raise ValidationError(
                'Una transferencia requiere tienda de origen y de destino',
                field='to_store_id' if from_store_id else 'from_store_id'
            )
        if from_store_id == to_store_id:
            raise ValidationError(
                'La tienda de origen y destino deben ser distintas',
                field='to_store_id'
            )
        if from_store_id != item.store_id:
            raise ValidationError(
                f'El ítem pertenece a la tienda {item.store_id}, no a {from_store_id}',
                field='from_store_id'
            )
        if item.status in UNAVAILABLE_ITEM_STATUSES:
            raise ValidationError(
                f'El ítem no está disponible para transferir ({item.status.value})',
                field='item_id'
            )
        if quantity > item.quantity:
            raise ValidationError(
                f'Stock insuficiente: disponible {item.quantity}, solicitado {quantity}',
                field='quantity',
                available=item.quantity,
                requested=quantity
            )

    def _ensure_no_open_return(self, borrow: Transaction) -> None:
        """Un préstamo admite una sola solicitud de devolución abierta."""
        open_returns = self.transaction_repo.list(
            lambda t: (
                t.type == TransactionType.RETURN
                and t.related_borrow_id == borrow.id
                and not t.is_terminal()
            )
        )
        if open_returns:
            raise ValidationError(
                'Ya existe una solicitud de devolución para este préstamo',
                field='item_id',
                existing_transaction_id=open_returns[0].id
            )

    # =========================================================================
    # APROBACIÓN / RECHAZO
    # =========================================================================

    def approve(
        self,
        transaction_id: str,
        approver_id: str,
        now: Optional[datetime] = None,
        assignee_id: Optional[str] = None
    ) -> Transaction:
        """
        Pending → Approved.

        Borrow y Transfer descuentan stock; un ítem que queda en 0 pasa a
        Borrowed (préstamo) o Reserved (transferencia). Una transferencia
        recibe además su entrega.

        Args:
            transaction_id: Transacción a aprobar
            approver_id: Usuario que aprueba
            now: Momento de la aprobación
            assignee_id: Personal de entrega (solo Transfer, opcional)
        """
        now = self._now(now)
        if assignee_id:
            validate_assignee(self.user_repo, assignee_id)

        pending = _PendingAudit(self.audit_service, now)
        with self._atomic() as uow:
            current = self._require_transaction(transaction_id)
            self._guard(current, TransactionStatus.APPROVED)

            if current.type in (TransactionType.BORROW, TransactionType.TRANSFER):
                item = self._require_item(current.item_id)
                item_after = self._deduct_stock(item, current, now)
                uow.save(self.item_repo, item_after)
                pending.item(approver_id, item, item_after)

            updated = current.evolve(
                status=TransactionStatus.APPROVED,
                approved_by=approver_id,
                approved_at=now,
                updated_at=now
            )
            uow.save(self.transaction_repo, updated)
            pending.transition(approver_id, AuditAction.APPROVE, current, updated)

            if updated.is_transfer() and self.delivery_repo.get_by_transaction(updated.id) is None:
                delivery = new_delivery(updated, approver_id, assignee_id, now)
                uow.save(self.delivery_repo, delivery)
                pending.record(
                    approver_id, AuditAction.DELIVERY_UPDATE,
                    AuditService.TABLE_DELIVERIES, delivery.id, delivery.to_dict()
                )

        pending.flush()
        self._log_transition(current, updated)
        return updated

    @staticmethod
    def _deduct_stock(item: Item, transaction: Transaction, now: datetime) -> Item:
        if item.status in UNAVAILABLE_ITEM_STATUSES:
            raise ValidationError(
                f'El ítem no está disponible ({item.status.value})',
                field='item_id'
            )
        if item.quantity < transaction.quantity:
            raise ValidationError(
                f'Stock insuficiente: disponible {item.quantity}, '
                f'solicitado {transaction.quantity}',
                field='quantity',
                available=item.quantity,
                requested=transaction.quantity
            )

        remaining = item.quantity - transaction.quantity
        status = item.status
        if remaining == 0:
            status = ItemStatus.BORROWED if transaction.is_borrow() else ItemStatus.RESERVED
        return replace(item, quantity=remaining, status=status, updated_at=now)

    def reject(
        self,
        transaction_id: str,
        approver_id: str,
        reason: str,
        now: Optional[datetime] = None
    ) -> Transaction:
        """Pending → Rejected. El motivo es obligatorio."""
        reason = _require_reason(reason)
        now = self._now(now)

        pending = _PendingAudit(self.audit_service, now)
        with self._atomic() as uow:
            current = self._require_transaction(transaction_id)
            self._guard(current, TransactionStatus.REJECTED)
            updated = current.evolve(
                status=TransactionStatus.REJECTED,
                approved_by=approver_id,
                rejection_reason=reason,
                updated_at=now
            )
            uow.save(self.transaction_repo, updated)
            pending.transition(approver_id, AuditAction.REJECT, current, updated)

        pending.flush()
        self._log_transition(current, updated)
        return updated

    # =========================================================================
    # COMPLETAR
    # =========================================================================

    def complete(
        self,
        transaction_id: str,
        actor_id: Optional[str],
        now: Optional[datetime] = None
    ) -> Transaction:
        """
        Approved → Completed para Transfer, Purchase y Return.

        Un préstamo (Borrow) solo se completa mediante process_return.
        Un segundo complete falla con InvalidStateError: el stock nunca se
        aplica dos veces.
        """
        now = self._now(now)

        pending = _PendingAudit(self.audit_service, now)
        with self._atomic() as uow:
            current = self._require_transaction(transaction_id)
            if current.is_borrow():
                raise InvalidStateError(
                    'Un préstamo solo se completa registrando su devolución',
                    current_status=current.status.value,
                    target_status=TransactionStatus.COMPLETED.value
                )
            self._guard(current, TransactionStatus.COMPLETED, [TransactionStatus.APPROVED])

            if current.type == TransactionType.TRANSFER:
                self._land_transfer(uow, pending, current, actor_id, now)
            elif current.type == TransactionType.PURCHASE:
                item = self._require_item(current.item_id)
                item_after = replace(
                    item,
                    quantity=item.quantity + current.quantity,
                    status=ItemStatus.AVAILABLE,
                    updated_at=now
                )
                uow.save(self.item_repo, item_after)
                pending.item(actor_id, item, item_after)
            elif current.type == TransactionType.RETURN:
                self._close_related_borrow(uow, pending, current, actor_id, now)

            updated = current.evolve(
                status=TransactionStatus.COMPLETED,
                completed_at=now,
                updated_at=now
            )
            uow.save(self.transaction_repo, updated)
            pending.transition(actor_id, AuditAction.COMPLETE, current, updated)

        pending.flush()
        self._log_transition(current, updated)
        return updated

    def _land_transfer(
        self,
        uow: UnitOfWork,
        pending: _PendingAudit,
        transaction: Transaction,
        actor_id: Optional[str],
        now: datetime
    ) -> Item:
        """El stock descontado en origen aparece en la tienda destino."""
        source = self._require_item(transaction.item_id)
        target = self.item_repo.find_in_store(
            transaction.to_store_id, source.name, source.category_id
        )

        if target is not None:
            target_after = replace(
                target,
                quantity=target.quantity + transaction.quantity,
                status=ItemStatus.AVAILABLE if target.status in _HELD_ITEM_STATUSES else target.status,
                updated_at=now
            )
        else:
            target_after = Item(
                id=new_id(),
                name=source.name,
                quantity=transaction.quantity,
                store_id=transaction.to_store_id,
                category_id=source.category_id,
                status=ItemStatus.AVAILABLE,
                low_stock_threshold=source.low_stock_threshold,
                created_at=now,
                updated_at=now
            )
        uow.save(self.item_repo, target_after)
        pending.item(actor_id, target, target_after)

        # La reserva en origen queda resuelta
        if source.status == ItemStatus.RESERVED:
            source_after = replace(source, status=ItemStatus.AVAILABLE, updated_at=now)
            uow.save(self.item_repo, source_after)
            pending.item(actor_id, source, source_after)
        return target_after

    def _close_related_borrow(
        self,
        uow: UnitOfWork,
        pending: _PendingAudit,
        return_request: Transaction,
        actor_id: Optional[str],
        now: datetime
    ) -> Transaction:
        """Completa una solicitud Return procesando el préstamo que cierra."""
        borrow = self._require_transaction(return_request.related_borrow_id)
        if not borrow.is_borrow():
            raise InvalidStateError(
                f'La transacción {borrow.id} no es un préstamo',
                current_status=borrow.status.value,
                target_status=TransactionStatus.COMPLETED.value
            )
        self._guard(borrow, TransactionStatus.COMPLETED, RETURNABLE_STATUSES)
        self.store_validator.check(borrow, return_request.to_store_id)
        return self._apply_return(
            uow,
            pending,
            borrow,
            return_request.return_condition or ReturnCondition.GOOD,
            return_request.notes,
            actor_id,
            now
        )

    # =========================================================================
    # DEVOLUCIÓN
    # =========================================================================

    def process_return(
        self,
        transaction_id: str,
        return_store_id: str,
        condition: Any,
        notes: Optional[str] = None,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Transaction:
        """
        Approved | Overdue → Completed para préstamos.

        La tienda de devolución debe ser la de origen: si no lo es, se lanza
        StoreMismatchError y el registro no cambia.

        Args:
            transaction_id: Préstamo que se devuelve
            return_store_id: Tienda donde se entrega
            condition: excellent, good, fair, poor o damaged
            notes: Observaciones de la devolución
            actor_id: Quien registra (por defecto, el solicitante)
            now: Momento de la devolución
        """
        cond = _parse_condition(condition)
        if not return_store_id:
            raise ValidationError('Debe indicar la tienda de devolución', field='return_store_id')
        now = self._now(now)

        pending = _PendingAudit(self.audit_service, now)
        with self._atomic() as uow:
            current = self._require_transaction(transaction_id)
            if not current.is_borrow():
                raise InvalidStateError(
                    f'Solo los préstamos se devuelven (tipo {current.type.value})',
                    current_status=current.status.value,
                    target_status=TransactionStatus.COMPLETED.value
                )
            self._guard(current, TransactionStatus.COMPLETED, RETURNABLE_STATUSES)
            self.store_validator.check(current, return_store_id)
            updated = self._apply_return(
                uow, pending, current, cond, notes, actor_id or current.user_id, now
            )

        pending.flush()
        self._log_transition(current, updated)
        return updated

    def _apply_return(
        self,
        uow: UnitOfWork,
        pending: _PendingAudit,
        borrow: Transaction,
        condition: ReturnCondition,
        notes: Optional[str],
        actor_id: Optional[str],
        now: datetime
    ) -> Transaction:
        damaged = condition == ReturnCondition.DAMAGED

        item = self._require_item(borrow.item_id)
        item_after = replace(
            item,
            quantity=item.quantity + borrow.quantity,
            status=_status_after_return(item.status, damaged),
            updated_at=now
        )
        uow.save(self.item_repo, item_after)
        pending.item(actor_id, item, item_after)

        updated = borrow.evolve(
            status=TransactionStatus.COMPLETED,
            returned_at=now,
            return_condition=condition,
            return_notes=notes,
            completed_at=now,
            updated_at=now
        )
        uow.save(self.transaction_repo, updated)
        pending.transition(actor_id, AuditAction.RETURN, borrow, updated)

        if damaged:
            damage = Damage(
                id=new_id(),
                item_id=item.id,
                transaction_id=borrow.id,
                reported_by=actor_id or borrow.user_id,
                description=notes or 'Ítem devuelto dañado',
                quantity_damaged=borrow.quantity,
                severity=DamageSeverity.MEDIUM,
                reported_at=now
            )
            uow.save(self.damage_repo, damage)
            pending.record(
                actor_id, AuditAction.DAMAGE_REPORT,
                AuditService.TABLE_DAMAGES, damage.id, damage.to_dict()
            )
        return updated

    # =========================================================================
    # CANCELACIÓN
    # =========================================================================

    def cancel(
        self,
        transaction_id: str,
        actor_id: str,
        reason: str,
        now: Optional[datetime] = None
    ) -> Transaction:
        """
        Pending | Approved → Cancelled.
        Si ya estaba aprobada, se devuelve el stock descontado.
        Una transferencia aprobada pierde su entrega (solo si sigue Pending).
        """
        reason = _require_reason(reason)
        now = self._now(now)

        pending = _PendingAudit(self.audit_service, now)
        with self._atomic() as uow:
            current = self._require_transaction(transaction_id)
            self._guard(current, TransactionStatus.CANCELLED)

            holds_stock = current.type in (TransactionType.BORROW, TransactionType.TRANSFER)
            if current.status == TransactionStatus.APPROVED and holds_stock:
                if current.is_transfer():
                    self._drop_pending_delivery(uow, pending, current, actor_id)
                item = self._require_item(current.item_id)
                item_after = replace(
                    item,
                    quantity=item.quantity + current.quantity,
                    status=ItemStatus.AVAILABLE if item.status in _HELD_ITEM_STATUSES else item.status,
                    updated_at=now
                )
                uow.save(self.item_repo, item_after)
                pending.item(actor_id, item, item_after)

            updated = current.evolve(
                status=TransactionStatus.CANCELLED,
                cancelled_by=actor_id,
                cancelled_at=now,
                cancellation_reason=reason,
                updated_at=now
            )
            uow.save(self.transaction_repo, updated)
            pending.transition(actor_id, AuditAction.CANCEL, current, updated)

        pending.flush()
        self._log_transition(current, updated)
        return updated

    def _drop_pending_delivery(self, uow, pending, transaction: Transaction, actor_id: str) -> None:
        """Una transferencia cancelada no deja entregas asignables."""
        delivery = self.delivery_repo.get_by_transaction(transaction.id)
        if delivery is None:
            return
        if delivery.status != DeliveryStatus.PENDING:
            raise InvalidStateError(
                f'La transferencia ya está en curso (entrega {delivery.status.value})',
                current_status=transaction.status.value,
                target_status=TransactionStatus.CANCELLED.value
            )
        uow.delete(self.delivery_repo, delivery.id)
        pending.removed(actor_id, AuditService.TABLE_DELIVERIES, delivery.id, delivery.to_dict())

    # =========================================================================
    # VENCIMIENTO
    # =========================================================================

    def mark_overdue(
        self,
        transaction_id: str,
        now: Optional[datetime] = None
    ) -> Transaction:
        """
        Approved → Overdue (actor: sistema).
        La fecha límite se verifica otra vez bajo el lock.
        """
        now = self._now(now)

        pending = _PendingAudit(self.audit_service, now)
        with self._atomic() as uow:
            current = self._require_transaction(transaction_id)
            self._guard(current, TransactionStatus.OVERDUE)
            if not is_past_due(current, now):
                raise InvalidStateError(
                    f'La transacción {current.id} todavía no vence',
                    current_status=current.status.value,
                    target_status=TransactionStatus.OVERDUE.value
                )
            updated = detect_overdue(current, now)
            uow.save(self.transaction_repo, updated)
            pending.transition(None, AuditAction.OVERDUE, current, updated)

        pending.flush()
        self._log_transition(current, updated)
        return updated

    # =========================================================================
    # CONSULTA
    # =========================================================================

    def get(self, transaction_id: str) -> Transaction:
        """Obtiene una transacción o lanza NotFoundError."""
        return self._require_transaction(transaction_id)

