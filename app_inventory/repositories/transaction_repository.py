# ==============================================================================
# REPOSITORIO DE TRANSACCIONES
# ==============================================================================
# Encapsula todo el acceso a transactions.json
# Las transacciones nunca se eliminan: solo cambian de estado.
# ==============================================================================

import os
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from app_inventory.models import Transaction, TransactionStatus, TransactionType
from app_inventory.repositories.base import DictRepository


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _newest_first(transactions: List[Transaction]) -> List[Transaction]:
    return sorted(transactions, key=lambda t: t.created_at or _EPOCH, reverse=True)


class TransactionRepository(DictRepository[Transaction]):
    """
    Repositorio de transacciones (préstamos, devoluciones, transferencias
    y compras).

    Formato de datos en transactions.json:
    {
        "f00d": {"id": "f00d", "type": "Borrow", "status": "Pending", ...}
    }
    """

    def __init__(self, base_path: str):
        """
        Inicializa el repositorio de transacciones.

        Args:
            base_path: Carpeta de datos
        """
        file_path = os.path.join(base_path, 'transactions.json')
        super().__init__(file_path)

    def _to_entity(self, record: Dict[str, Any]) -> Transaction:
        return Transaction.from_dict(record)

    def find_by_status(self, *statuses: TransactionStatus) -> List[Transaction]:
        """
        Transacciones en cualquiera de los estados dados.

        Returns:
            Lista ordenada de más reciente a más antigua
        """
        wanted = set(statuses)
        return _newest_first(self.list(lambda t: t.status in wanted))

    def find_borrows(
        self,
        item_id: str,
        user_id: str,
        statuses: Iterable[TransactionStatus]
    ) -> List[Transaction]:
        """
        Préstamos de un ítem hechos por un usuario.

        Args:
            item_id: Ítem prestado
            user_id: Solicitante del préstamo
            statuses: Estados aceptados

        Returns:
            Lista ordenada de más reciente a más antigua
        """
        wanted = set(statuses)
        return _newest_first(self.list(
            lambda t: (
                t.type == TransactionType.BORROW
                and t.item_id == item_id
                and t.user_id == user_id
                and t.status in wanted
            )
        ))

    def search(
        self,
        status: Optional[TransactionStatus] = None,
        type: Optional[TransactionType] = None,
        user_id: Optional[str] = None
    ) -> List[Transaction]:
        """
        Búsqueda con filtros opcionales combinados.

        Returns:
            Lista ordenada de más reciente a más antigua
        """
        def matches(t: Transaction) -> bool:
            if status is not None and t.status != status:
                return False
            if type is not None and t.type != type:
                return False
            if user_id is not None and t.user_id != user_id:
                return False
            return True

        return _newest_first(self.list(matches))
