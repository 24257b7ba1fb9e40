# ==============================================================================
# SERVICIO DE AUTORIZACIÓN
# ==============================================================================
# Único punto de verificación de capacidades por rol.
# El actor llega explícito en cada llamada; no hay "usuario actual" global.
#
#   Aprobar / rechazar        → Admin, Store Keeper
#   Cancelar / devolver       → el solicitante o un aprobador
#   Gestionar entregas        → Admin, Store Keeper
#   Recoger / entregar        → el asignado o quien gestiona entregas
#   Leer auditoría            → Admin
# ==============================================================================

from typing import Optional

from app_inventory.errors import AuthorizationError
from app_inventory.models import APPROVER_ROLES, Delivery, Transaction, User, UserRole
from app_inventory.repositories.interfaces import IUserRepository


class AuthorizationService:
    """Responde si un actor puede realizar una acción."""

    def __init__(self, user_repo: IUserRepository):
        self.user_repo = user_repo

    def get_actor(self, actor_id: Optional[str]) -> User:
        """
        Obtiene el usuario que actúa.

        Raises:
            AuthorizationError: Si no se identificó o no existe
        """
        if not actor_id:
            raise AuthorizationError('Usuario no identificado')
        user = self.user_repo.get_by_id(actor_id)
        if user is None:
            raise AuthorizationError(f'Usuario desconocido: {actor_id}')
        return user

    def _role(self, actor_id: Optional[str]) -> Optional[UserRole]:
        user = self.user_repo.get_by_id(actor_id) if actor_id else None
        return user.role if user else None

    def has_role(self, actor_id: Optional[str], *roles: UserRole) -> bool:
        return self._role(actor_id) in roles

    def can_approve(self, actor_id: Optional[str]) -> bool:
        return self._role(actor_id) in APPROVER_ROLES

    def can_cancel(self, actor_id: Optional[str], transaction: Transaction) -> bool:
        if actor_id and actor_id == transaction.user_id:
            return True
        return self.can_approve(actor_id)

    def can_return(self, actor_id: Optional[str], transaction: Transaction) -> bool:
        return self.can_cancel(actor_id, transaction)

    def can_manage_deliveries(self, actor_id: Optional[str]) -> bool:
        return self.has_role(actor_id, UserRole.ADMIN, UserRole.STORE_KEEPER)

    def can_handle_delivery(self, actor_id: Optional[str], delivery: Delivery) -> bool:
        if actor_id and actor_id == delivery.assigned_to:
            return True
        return self.can_manage_deliveries(actor_id)

    def can_read_audit(self, actor_id: Optional[str]) -> bool:
        return self.has_role(actor_id, UserRole.ADMIN)

    def require(self, allowed: bool, message: str) -> None:
        """Lanza AuthorizationError si `allowed` es falso."""
        if not allowed:
            raise AuthorizationError(message)
