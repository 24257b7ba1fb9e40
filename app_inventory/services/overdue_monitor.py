# ==============================================================================
# MONITOR DE VENCIMIENTOS
# ==============================================================================
# Una transacción aprobada cuya fecha límite ya pasó se reclasifica a Overdue.
#
# Dos caminos, mismo resultado:
#   - check(): al leer una transacción (camino "on-read")
#   - sweep(): revisión periódica de todas las aprobadas
#
# Ambos son idempotentes: una transacción ya vencida no se vuelve a tocar.
# ==============================================================================

import logging
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from app_inventory.errors import InvalidStateError
from app_inventory.models import Transaction, TransactionStatus
from app_inventory.repositories.interfaces import ITransactionRepository
from app_inventory.timeutils import ensure_aware, utc_now

if TYPE_CHECKING:
    from app_inventory.services.notification_service import NotificationService
    from app_inventory.services.state_machine import TransactionStateMachine


logger = logging.getLogger(__name__)


def is_past_due(transaction: Transaction, now: datetime) -> bool:
    """Aprobada, con fecha límite, y esa fecha es estrictamente anterior a `now`."""
    return (
        transaction.status == TransactionStatus.APPROVED
        and transaction.due_date is not None
        and transaction.due_date < ensure_aware(now)
    )


def detect_overdue(transaction: Transaction, now: datetime) -> Transaction:
    """
    Función pura: decide si la transacción está vencida.

    Returns:
        Copia en Overdue si corresponde; si no, el MISMO objeto recibido
    """
    if not is_past_due(transaction, now):
        return transaction
    return transaction.evolve(
        status=TransactionStatus.OVERDUE,
        updated_at=ensure_aware(now)
    )


def overdue_days(transaction: Transaction, now: datetime) -> int:
    """Días de atraso redondeados hacia arriba (0 si no aplica)."""
    return transaction.overdue_days(ensure_aware(now))


class OverdueMonitor:
    """Persiste las reclasificaciones Approved → Overdue."""

    def __init__(
        self,
        transaction_repo: ITransactionRepository,
        state_machine: 'TransactionStateMachine',
        notification_service: 'NotificationService' = None
    ):
        self.transaction_repo = transaction_repo
        self.state_machine = state_machine
        self.notification_service = notification_service

    def check(self, transaction: Transaction, now: Optional[datetime] = None) -> Transaction:
        """
        Revisa una transacción al leerla.

        Si otro request la cambió primero no es un error: se devuelve la
        versión vigente.

        Returns:
            La transacción actualizada (o la misma si no vencía)
        """
        now = ensure_aware(now) if now is not None else utc_now()
        if detect_overdue(transaction, now) is transaction:
            return transaction

        updated = self._reclassify(transaction, now)
        if updated is None:
            return self.transaction_repo.get_by_id(transaction.id) or transaction
        return updated

    def _reclassify(self, transaction: Transaction, now: datetime) -> Optional[Transaction]:
        """Marca vencida; None si otro request cambió el estado antes."""
        try:
            updated = self.state_machine.mark_overdue(transaction.id, now=now)
        except InvalidStateError:
            logger.debug("Transacción %s ya cambió de estado, se omite", transaction.id)
            return None

        if self.notification_service:
            self.notification_service.transaction_overdue(updated, now)
        return updated

    def sweep(self, now: Optional[datetime] = None) -> List[Transaction]:
        """
        Revisa todas las transacciones aprobadas.

        Returns:
            Lista de transacciones que pasaron a Overdue en esta pasada
        """
        now = ensure_aware(now) if now is not None else utc_now()
        changed = []
        for transaction in self.transaction_repo.find_by_status(TransactionStatus.APPROVED):
            if detect_overdue(transaction, now) is transaction:
                continue
            updated = self._reclassify(transaction, now)
            if updated is not None:
                changed.append(updated)

        if changed:
            logger.info("Revisión de vencimientos: %d transacciones vencidas", len(changed))
        return changed
