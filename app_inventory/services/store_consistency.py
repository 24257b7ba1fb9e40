# ==============================================================================
# VALIDADOR DE CONSISTENCIA DE TIENDA
# ==============================================================================
# Regla: un ítem prestado se devuelve en la MISMA tienda donde se prestó.
# Las transferencias están exentas (su propósito es cambiar de tienda).
# ==============================================================================

from typing import Optional

from app_inventory.errors import NoOpenBorrowError, StoreMismatchError, ValidationError
from app_inventory.models import RETURNABLE_STATUSES, Transaction
from app_inventory.repositories.interfaces import ITransactionRepository


class StoreConsistencyValidator:
    """Verifica que las devoluciones vuelvan a la tienda de origen."""

    def __init__(self, transaction_repo: ITransactionRepository):
        self.transaction_repo = transaction_repo

    @staticmethod
    def is_exempt(transaction: Transaction) -> bool:
        """Las transferencias no están sujetas a la regla."""
        return transaction.is_transfer()

    def find_open_borrow(self, item_id: str, user_id: str) -> Optional[Transaction]:
        """
        Préstamo activo más reciente (Approved u Overdue) del ítem y usuario.

        Returns:
            Transacción o None
        """
        borrows = self.transaction_repo.find_borrows(item_id, user_id, RETURNABLE_STATUSES)
        return borrows[0] if borrows else None

    def check(self, borrow: Transaction, return_store_id: str) -> None:
        """
        Compara la tienda de devolución con la de origen de un préstamo.

        Raises:
            StoreMismatchError: Si las tiendas difieren
        """
        if self.is_exempt(borrow):
            return
        if borrow.from_store_id != return_store_id:
            raise StoreMismatchError(borrow.from_store_id, return_store_id)

    def validate_return(
        self,
        item_id: str,
        user_id: str,
        return_store_id: str
    ) -> Transaction:
        """
        Valida una devolución antes de aceptarla.

        Args:
            item_id: Ítem que se devuelve
            user_id: Usuario que lo devuelve
            return_store_id: Tienda donde se entrega

        Returns:
            El préstamo que se está cerrando

        Raises:
            ValidationError: Si falta la tienda de devolución
            NoOpenBorrowError: Si no hay préstamo activo
            StoreMismatchError: Si la tienda no es la de origen
        """
        if not return_store_id:
            raise ValidationError('Debe indicar la tienda de devolución', field='return_store_id')

        borrow = self.find_open_borrow(item_id, user_id)
        if borrow is None:
            raise NoOpenBorrowError(
                'No existe un préstamo activo de este ítem para el usuario',
                item_id=item_id,
                user_id=user_id
            )
        self.check(borrow, return_store_id)
        return borrow
