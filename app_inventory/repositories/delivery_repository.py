# ==============================================================================
# REPOSITORIO DE ENTREGAS
# ==============================================================================
# Encapsula todo el acceso a deliveries.json
# Una entrega por cada transferencia aprobada.
# ==============================================================================

import os
from typing import Any, Dict, List, Optional

from app_inventory.models import Delivery, DeliveryStatus
from app_inventory.repositories.base import DictRepository


class DeliveryRepository(DictRepository[Delivery]):
    """Repositorio de entregas entre tiendas."""

    def __init__(self, base_path: str):
        file_path = os.path.join(base_path, 'deliveries.json')
        super().__init__(file_path)

    def _to_entity(self, record: Dict[str, Any]) -> Delivery:
        return Delivery.from_dict(record)

    def get_by_transaction(self, transaction_id: str) -> Optional[Delivery]:
        """Entrega asociada a una transferencia (o None)."""
        for delivery in self.list(lambda d: d.transaction_id == transaction_id):
            return delivery
        return None

    def find_by_status(self, status: DeliveryStatus) -> List[Delivery]:
        return self.list(lambda d: d.status == status)
