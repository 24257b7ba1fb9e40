# ==============================================================================
# SERVICIO DE NOTIFICACIONES
# ==============================================================================
# Avisos "dispara y olvida": una falla al guardar la notificación se
# escribe en el log y NUNCA afecta la operación que la originó.
# ==============================================================================

import logging
from dataclasses import replace
from datetime import datetime
from typing import List, Optional

from app_inventory.errors import AuthorizationError, NotFoundError
from app_inventory.models import (
    NOTIFICATION_READ,
    Notification,
    NotificationType,
    Transaction,
    new_id,
)
from app_inventory.repositories.interfaces import INotificationRepository
from app_inventory.timeutils import utc_now


logger = logging.getLogger(__name__)


class NotificationService:
    """Crea y consulta notificaciones de usuario."""

    def __init__(self, notification_repo: INotificationRepository):
        self.notification_repo = notification_repo

    def notify(
        self,
        user_id: Optional[str],
        message: str,
        type: NotificationType = NotificationType.INFO,
        now: Optional[datetime] = None
    ) -> Optional[Notification]:
        """
        Guarda una notificación.

        Returns:
            La notificación, o None si no había destinatario o falló el guardado
        """
        if not user_id:
            return None
        notification = Notification(
            id=new_id(),
            user_id=user_id,
            message=message,
            type=type,
            timestamp=now or utc_now()
        )
        try:
            return self.notification_repo.save(notification)
        except Exception:
            logger.exception("No se pudo notificar a %s", user_id)
            return None

    def for_user(self, user_id: str) -> List[Notification]:
        return self.notification_repo.find_by_user(user_id)

    def mark_read(self, notification_id: str, user_id: str) -> Notification:
        """
        Marca como leída una notificación del propio usuario.

        Raises:
            NotFoundError: si no existe
            AuthorizationError: si pertenece a otro usuario
        """
        notification = self.notification_repo.get_by_id(notification_id)
        if notification is None:
            raise NotFoundError(f'Notificación {notification_id} no encontrada')
        if notification.user_id != user_id:
            raise AuthorizationError('No puede modificar notificaciones de otros usuarios')
        if notification.is_read():
            return notification
        return self.notification_repo.save(replace(notification, status=NOTIFICATION_READ))

    # -------------------------------------------------------------------------
    # Mensajes del ciclo de vida
    # -------------------------------------------------------------------------

    def transaction_approved(self, transaction: Transaction) -> Optional[Notification]:
        return self.notify(
            transaction.user_id,
            f'Su solicitud {transaction.type.value} ({transaction.id}) fue aprobada',
            NotificationType.SUCCESS,
            transaction.updated_at
        )

    def transaction_rejected(self, transaction: Transaction) -> Optional[Notification]:
        return self.notify(
            transaction.user_id,
            f'Su solicitud {transaction.type.value} ({transaction.id}) fue rechazada: '
            f'{transaction.rejection_reason}',
            NotificationType.ERROR,
            transaction.updated_at
        )

    def transaction_overdue(
        self,
        transaction: Transaction,
        now: Optional[datetime] = None
    ) -> Optional[Notification]:
        days = transaction.overdue_days(now)
        return self.notify(
            transaction.user_id,
            f'El préstamo {transaction.id} está vencido ({days} día(s) de atraso)',
            NotificationType.WARNING,
            now
        )

    def delivery_assigned(self, user_id: str, delivery_id: str) -> Optional[Notification]:
        return self.notify(
            user_id,
            f'Se le asignó la entrega {delivery_id}',
            NotificationType.INFO
        )
