# ==============================================================================
# SERVICIO DE AUDITORÍA
# ==============================================================================
# Centraliza toda la lógica de registro y consulta de auditoría.
#
# La regla de oro: registrar NUNCA hace fallar la operación auditada.
# Si el almacenamiento falla, el error se escribe en el log y se sigue.
# ==============================================================================

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from app_inventory.errors import ValidationError
from app_inventory.models import AuditAction, AuditLogEntry, Transaction, new_id
from app_inventory.repositories.interfaces import IAuditRepository
from app_inventory.timeutils import days_ago, ensure_aware, to_iso, utc_now


logger = logging.getLogger(__name__)


def _action_name(action: Any) -> str:
    return action.value if isinstance(action, AuditAction) else str(action)


class AuditService:
    """
    Servicio para registro y consulta de auditoría.

    Centraliza:
    - Registro best-effort de mutaciones (snapshot anterior y posterior)
    - Búsqueda y filtrado de registros
    - Estadísticas, chequeo de integridad y retención
    """

    # Tablas auditadas
    TABLE_TRANSACTIONS = 'transactions'
    TABLE_ITEMS = 'items'
    TABLE_DELIVERIES = 'deliveries'
    TABLE_DAMAGES = 'damages'

    def __init__(self, audit_repo: IAuditRepository):
        """
        Inicializa el servicio de auditoría.

        Args:
            audit_repo: Repositorio de auditoría
        """
        self.audit_repo = audit_repo

    # =========================================================================
    # REGISTRO DE EVENTOS
    # =========================================================================

    def record(
        self,
        actor_id: Optional[str],
        action_type: Any,
        target_table: str,
        target_id: Optional[str],
        old_value: Optional[Dict[str, Any]] = None,
        new_value: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None
    ) -> Optional[AuditLogEntry]:
        """
        Registra un evento de auditoría.

        Args:
            actor_id: Usuario que realizó la acción (None = sistema)
            action_type: Acción (AuditAction o texto libre)
            target_table: Tabla afectada
            target_id: Registro afectado
            old_value: Snapshot anterior
            new_value: Snapshot posterior
            now: Momento del evento (por defecto, ahora)

        Returns:
            El registro creado, o None si no se pudo guardar
        """
        entry = AuditLogEntry(
            id=new_id(),
            user_id=actor_id,
            action_type=_action_name(action_type),
            target_table=target_table,
            target_id=target_id,
            old_value=old_value,
            new_value=new_value,
            timestamp=now or utc_now()
        )
        try:
            return self.audit_repo.append_entry(entry)
        except Exception:
            # Cualquier falla del log se reporta y se descarta
            logger.exception(
                "No se pudo registrar auditoría %s %s/%s",
                entry.action_type, target_table, target_id
            )
            return None

    def log_insert(
        self,
        actor_id: Optional[str],
        target_table: str,
        target_id: str,
        new_value: Dict[str, Any],
        action_type: Any = AuditAction.INSERT
    ) -> Optional[AuditLogEntry]:
        """Registra la creación de un registro."""
        return self.record(actor_id, action_type, target_table, target_id, None, new_value)

    def log_update(
        self,
        actor_id: Optional[str],
        target_table: str,
        target_id: str,
        old_value: Dict[str, Any],
        new_value: Dict[str, Any],
        action_type: Any = AuditAction.UPDATE
    ) -> Optional[AuditLogEntry]:
        """Registra la modificación de un registro."""
        return self.record(actor_id, action_type, target_table, target_id, old_value, new_value)

    def log_delete(
        self,
        actor_id: Optional[str],
        target_table: str,
        target_id: str,
        old_value: Dict[str, Any]
    ) -> Optional[AuditLogEntry]:
        """Registra la eliminación de un registro."""
        return self.record(actor_id, AuditAction.DELETE, target_table, target_id, old_value, None)

    def log_transition(
        self,
        actor_id: Optional[str],
        action_type: Any,
        before: Optional[Transaction],
        after: Transaction
    ) -> Optional[AuditLogEntry]:
        """
        Registra un cambio de estado de transacción.

        Args:
            actor_id: Usuario (None para transiciones del sistema)
            action_type: APPROVE, REJECT, RETURN, etc.
            before: Transacción antes del cambio (None al crear)
            after: Transacción después del cambio
        """
        return self.record(
            actor_id,
            action_type,
            self.TABLE_TRANSACTIONS,
            after.id,
            before.to_dict() if before is not None else None,
            after.to_dict(),
            now=after.updated_at
        )

    # =========================================================================
    # CONSULTA DE LOGS
    # =========================================================================

    def search(
        self,
        actor_id: Optional[str] = None,
        action_type: Optional[str] = None,
        target_table: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0
    ) -> Tuple[List[AuditLogEntry], int]:
        """
        Búsqueda de registros con filtros combinados.

        Args:
            actor_id: Usuario exacto
            action_type: Texto contenido en la acción (sin distinguir mayúsculas)
            target_table: Texto contenido en la tabla (sin distinguir mayúsculas)
            start: Desde (inclusive)
            end: Hasta (inclusive)
            limit: Máximo de resultados
            offset: Resultados a saltar

        Returns:
            Tupla (registros de la página, total que coincide)
        """
        matches = self._filter(actor_id, action_type, target_table, start, end)
        offset = max(0, offset)
        return matches[offset:offset + max(0, limit)], len(matches)

    def _filter(
        self,
        actor_id: Optional[str] = None,
        action_type: Optional[str] = None,
        target_table: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[AuditLogEntry]:
        action_q = action_type.lower() if action_type else None
        table_q = target_table.lower() if target_table else None
        start = ensure_aware(start) if start else None
        end = ensure_aware(end) if end else None

        matches = []
        for entry in self.audit_repo.entries():
            if actor_id and entry.user_id != actor_id:
                continue
            if action_q and action_q not in (entry.action_type or '').lower():
                continue
            if table_q and table_q not in (entry.target_table or '').lower():
                continue
            if start or end:
                if entry.timestamp is None:
                    continue
                if start and entry.timestamp < start:
                    continue
                if end and entry.timestamp > end:
                    continue
            matches.append(entry)
        return matches

    def get_recent_activity(
        self,
        now: Optional[datetime] = None,
        hours: int = 24,
        limit: int = 50
    ) -> List[AuditLogEntry]:
        """Registros de las últimas `hours` horas (más recientes primero)."""
        since = days_ago(now or utc_now(), hours / 24)
        entries, _ = self.search(start=since, limit=limit)
        return entries

    def get_history(self, target_table: str, target_id: str) -> List[AuditLogEntry]:
        """Historial completo de un registro (más antiguo primero)."""
        history = [
            e for e in self.audit_repo.entries()
            if e.target_table == target_table and e.target_id == target_id
        ]
        history.reverse()
        return history

    # =========================================================================
    # ESTADÍSTICAS Y REPORTES
    # =========================================================================

    def statistics(
        self,
        period_days: int = 30,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Conteo de registros por acción y tabla en un período.

        Returns:
            Dict con period, total_audits y breakdown ordenado por cantidad
        """
        since = days_ago(now or utc_now(), period_days)
        entries = self._filter(start=since)

        counter = Counter((e.action_type, e.target_table) for e in entries)
        breakdown = [
            {'action_type': action, 'target_table': table, 'count': count}
            for (action, table), count in counter.most_common()
        ]
        return {
            'period': f'{period_days} days',
            'total_audits': len(entries),
            'breakdown': breakdown,
        }

    def entity_report(
        self,
        target_table: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        action_type: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Reporte de actividad de una tabla: totales por acción y por usuario.

        Args:
            target_table: Tabla (transactions, items, deliveries, damages)
            start: Desde
            end: Hasta
            action_type: Filtro opcional por acción
        """
        if not target_table:
            raise ValidationError('Debe indicar la tabla del reporte', field='target_table')

        entries = [
            e for e in self._filter(action_type=action_type, start=start, end=end)
            if e.target_table == target_table
        ]

        by_action = Counter(e.action_type for e in entries)
        by_user = Counter(e.user_id or 'sistema' for e in entries)
        return {
            'target_table': target_table,
            'total': len(entries),
            'by_action': dict(by_action.most_common()),
            'by_user': dict(by_user.most_common()),
            'first_at': to_iso(entries[-1].timestamp) if entries else None,
            'last_at': to_iso(entries[0].timestamp) if entries else None,
        }

    # =========================================================================
    # INTEGRIDAD Y RETENCIÓN
    # =========================================================================

    def integrity_check(
        self,
        user_exists: Callable[[str], bool],
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Revisa la consistencia del log.

        Detecta registros cuyo usuario ya no existe y registros sin fecha.

        Args:
            user_exists: Función que indica si un user_id existe

        Returns:
            Dict con timestamp, overall_status (PASS/FAIL), checks e issues
        """
        orphaned = []
        missing_ts = []
        for entry in self.audit_repo.entries():
            if entry.user_id is not None and not user_exists(entry.user_id):
                orphaned.append(entry)
            if entry.timestamp is None:
                missing_ts.append(entry)

        issues = [
            {
                'check': 'orphaned_users',
                'entry_id': e.id,
                'detail': f'Usuario inexistente: {e.user_id}',
            }
            for e in orphaned
        ] + [
            {
                'check': 'missing_timestamps',
                'entry_id': e.id,
                'detail': 'Registro sin fecha',
            }
            for e in missing_ts
        ]

        checks = [
            {
                'name': 'orphaned_users',
                'status': 'PASS' if not orphaned else 'FAIL',
                'count': len(orphaned),
            },
            {
                'name': 'missing_timestamps',
                'status': 'PASS' if not missing_ts else 'FAIL',
                'count': len(missing_ts),
            },
        ]

        return {
            'timestamp': to_iso(now or utc_now()),
            'overall_status': 'PASS' if not issues else 'FAIL',
            'checks': checks,
            'issues': issues,
        }

    def cleanup(self, days: int, now: Optional[datetime] = None) -> int:
        """
        Elimina registros más antiguos que `days` días.

        Args:
            days: Días de retención (>= 1)

        Returns:
            Cantidad de registros eliminados

        Raises:
            ValidationError: Si days no es un entero positivo
            PersistenceError: Si no se pudo reescribir el log
        """
        if isinstance(days, bool) or not isinstance(days, int) or days < 1:
            raise ValidationError('Los días de retención deben ser un entero >= 1', field='days')

        cutoff = days_ago(now or utc_now(), days)
        removed, remaining = self.audit_repo.delete_older_than(cutoff)
        logger.info(
            "Limpieza de auditoría: %d eliminados, %d restantes (corte %s)",
            removed, remaining, to_iso(cutoff)
        )
        return removed
