# ==============================================================================
# REPOSITORIO DE DAÑOS
# ==============================================================================
# Encapsula todo el acceso a damages.json
# ==============================================================================

import os
from datetime import datetime, timezone
from typing import Any, Dict, List

from app_inventory.models import Damage
from app_inventory.repositories.base import DictRepository


class DamageRepository(DictRepository[Damage]):
    """Reportes de daño (devoluciones dañadas y reportes manuales)."""

    def __init__(self, base_path: str):
        file_path = os.path.join(base_path, 'damages.json')
        super().__init__(file_path)

    def _to_entity(self, record: Dict[str, Any]) -> Damage:
        return Damage.from_dict(record)

    def find_by_transaction(self, transaction_id: str) -> List[Damage]:
        return self.list(lambda d: d.transaction_id == transaction_id)

    def find_by_reporter(self, user_id: str) -> List[Damage]:
        """Reportes de un usuario, más recientes primero."""
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(
            self.list(lambda d: d.reported_by == user_id),
            key=lambda d: d.reported_at or epoch,
            reverse=True
        )
