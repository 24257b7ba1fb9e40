# ==============================================================================
# REPOSITORIO DE AUDITORÍA
# ==============================================================================
# Encapsula todo el acceso a audit.json
# La auditoría se almacena como lista: [{log1}, {log2}, ...]
# Solo se agregan registros; la única eliminación es por retención.
# ==============================================================================

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from app_inventory.models import AuditLogEntry
from app_inventory.repositories.base import ListRepository
from app_inventory.timeutils import ensure_aware


logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class AuditRepository(ListRepository):
    """
    Repositorio para el log de auditoría.

    Formato de datos en audit.json (orden de llegada):
    [
        {
            "id": "9c1e",
            "user_id": "u-keeper",
            "action_type": "APPROVE",
            "target_table": "transactions",
            "target_id": "f00d",
            "old_value": {...},
            "new_value": {...},
            "timestamp": "2024-01-01T10:00:00+00:00"
        }
    ]
    """

    def __init__(self, base_path: str):
        """
        Inicializa el repositorio de auditoría.

        Args:
            base_path: Carpeta de datos
        """
        file_path = os.path.join(base_path, 'audit.json')
        super().__init__(file_path)

    def append_entry(self, entry: AuditLogEntry) -> AuditLogEntry:
        """
        Agrega un registro al final del log.

        Args:
            entry: Registro inmutable

        Returns:
            El mismo registro
        """
        self.append(entry.to_dict())
        return entry

    def entries(self) -> List[AuditLogEntry]:
        """
        Carga todos los registros.

        Los registros ilegibles se omiten (y se reportan en el log) para que
        una línea corrupta no impida consultar el resto.

        Returns:
            Lista de registros (más recientes primero)
        """
        result = []
        # A igual fecha, el último en llegar va primero
        for raw in reversed(self.get_all()):
            try:
                result.append(AuditLogEntry.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Registro de auditoría ilegible omitido: %s", e)
        return sorted(result, key=lambda e: e.timestamp or _EPOCH, reverse=True)

    def get_by_id(self, entry_id: str) -> Optional[AuditLogEntry]:
        record = self.find_by('id', entry_id)
        return AuditLogEntry.from_dict(record) if record else None

    def delete_older_than(self, cutoff: datetime) -> Tuple[int, int]:
        """
        Elimina los registros anteriores a una fecha de corte.

        Los registros sin fecha se conservan (el chequeo de integridad
        los reporta).

        Args:
            cutoff: Fecha de corte (UTC)

        Returns:
            Tupla (eliminados, restantes)

        Raises:
            PersistenceError: Si no se pudo reescribir el archivo
        """
        cutoff = ensure_aware(cutoff)
        with self._file_lock:
            kept: List[Dict[str, Any]] = []
            removed = 0
            for raw in self.get_all():
                try:
                    entry = AuditLogEntry.from_dict(raw)
                except (KeyError, TypeError, ValueError):
                    kept.append(raw)
                    continue
                if entry.timestamp is not None and entry.timestamp < cutoff:
                    removed += 1
                else:
                    kept.append(raw)
            if removed:
                self.save_all(kept)
            return removed, len(kept)

    def count(self) -> int:
        return len(self.get_all())
