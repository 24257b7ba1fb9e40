# ==============================================================================
# REPOSITORIO DE ÍTEMS
# ==============================================================================
# Encapsula todo el acceso a items.json
# Los ítems se almacenan como diccionario: {item_id: {datos_item}}
# ==============================================================================

import os
from typing import Any, Dict, List, Optional

from app_inventory.models import Item, ItemStatus
from app_inventory.repositories.base import DictRepository


class ItemRepository(DictRepository[Item]):
    """
    Repositorio para el inventario de equipos por tienda.

    Formato de datos en items.json:
    {
        "a1b2": {
            "id": "a1b2",
            "name": "Taladro",
            "quantity": 10,
            "store_id": "S1",
            "status": "Available",
            ...
        }
    }
    """

    def __init__(self, base_path: str):
        """
        Inicializa el repositorio de ítems.

        Args:
            base_path: Carpeta de datos
        """
        file_path = os.path.join(base_path, 'items.json')
        super().__init__(file_path)

    def _to_entity(self, record: Dict[str, Any]) -> Item:
        return Item.from_dict(record)

    def find_by_store(self, store_id: str) -> List[Item]:
        """Ítems de una tienda."""
        return self.list(lambda item: item.store_id == store_id)

    def find_in_store(
        self,
        store_id: str,
        name: str,
        category_id: Optional[str]
    ) -> Optional[Item]:
        """
        Busca en una tienda el ítem equivalente (mismo nombre y categoría).
        Se usa al completar transferencias.

        Args:
            store_id: Tienda donde buscar
            name: Nombre del ítem
            category_id: Categoría del ítem

        Returns:
            Ítem encontrado o None
        """
        for item in self.find_by_store(store_id):
            if item.name == name and item.category_id == category_id:
                return item
        return None

    def find_low_stock(self) -> List[Item]:
        """Ítems disponibles en o bajo su umbral de stock."""
        return self.list(
            lambda item: item.is_low_stock and item.status == ItemStatus.AVAILABLE
        )
