# ==============================================================================
# CAPA DE SERVICIOS - Lógica de negocio
# ==============================================================================
# Esta capa contiene TODA la lógica de negocio de la aplicación.
#
# PRINCIPIOS:
# 1. Las rutas de transacciones y entregas solo llaman a TransactionService
# 2. Solo la máquina de estados cambia el estado de una transacción
# 3. La auditoría y las notificaciones nunca revierten una operación
# 4. Los servicios dependen de INTERFACES de repositorios, no de JSON
#
# ESTRUCTURA:
# ├── state_machine.py         → Transiciones, stock, devoluciones
# ├── store_consistency.py     → Devolver en la tienda de origen
# ├── overdue_monitor.py       → Approved → Overdue (on-read y periódico)
# ├── delivery_service.py      → Asignar, recoger, entregar
# ├── damage_service.py        → Reportar, revisar y resolver daños
# ├── audit_service.py         → Bitácora, reportes, limpieza
# ├── notification_service.py  → Avisos al usuario
# ├── authorization_service.py → Capacidades por rol
# └── transaction_service.py   → Fachada para las rutas
# ==============================================================================

from app_inventory.services.audit_service import AuditService
from app_inventory.services.authorization_service import AuthorizationService
from app_inventory.services.damage_service import DamageService
from app_inventory.services.delivery_service import DeliveryService
from app_inventory.services.notification_service import NotificationService
from app_inventory.services.overdue_monitor import (
    OverdueMonitor,
    detect_overdue,
    overdue_days,
)
from app_inventory.services.state_machine import (
    LEGAL_TRANSITIONS,
    TransactionStateMachine,
    can_transition,
)
from app_inventory.services.store_consistency import StoreConsistencyValidator
from app_inventory.services.transaction_service import TransactionService

__all__ = [
    'AuditService',
    'AuthorizationService',
    'DamageService',
    'DeliveryService',
    'NotificationService',
    'OverdueMonitor',
    'detect_overdue',
    'overdue_days',
    'LEGAL_TRANSITIONS',
    'TransactionStateMachine',
    'can_transition',
    'StoreConsistencyValidator',
    'TransactionService',
]
