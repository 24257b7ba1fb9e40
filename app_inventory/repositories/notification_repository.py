# ==============================================================================
# REPOSITORIO DE NOTIFICACIONES
# ==============================================================================
# Encapsula todo el acceso a notifications.json
# ==============================================================================

import os
from datetime import datetime, timezone
from typing import Any, Dict, List

from app_inventory.models import Notification
from app_inventory.repositories.base import DictRepository


class NotificationRepository(DictRepository[Notification]):
    """Avisos pendientes para los usuarios."""

    def __init__(self, base_path: str):
        file_path = os.path.join(base_path, 'notifications.json')
        super().__init__(file_path)

    def _to_entity(self, record: Dict[str, Any]) -> Notification:
        return Notification.from_dict(record)

    def find_by_user(self, user_id: str) -> List[Notification]:
        """Notificaciones de un usuario, más recientes primero."""
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(
            self.list(lambda n: n.user_id == user_id),
            key=lambda n: n.timestamp or epoch,
            reverse=True
        )
