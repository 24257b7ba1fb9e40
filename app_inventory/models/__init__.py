# ==============================================================================
# CAPA DE MODELOS - Estructuras de datos del sistema
# ==============================================================================
# Este módulo define todas las entidades del dominio usando dataclasses.
# Beneficios:
#   - Type hints para mejor documentación y autocompletado
#   - Un solo conjunto cerrado de estados por entidad (Enum)
#   - Fácil serialización/deserialización para JSON
# ==============================================================================

from .entities import (
    # Usuarios
    User,
    UserRole,
    APPROVER_ROLES,

    # Inventario
    Item,
    ItemStatus,
    UNAVAILABLE_ITEM_STATUSES,

    # Transacciones
    Transaction,
    TransactionType,
    TransactionStatus,
    ReturnCondition,
    TERMINAL_STATUSES,
    OPEN_BORROW_STATUSES,
    RETURNABLE_STATUSES,

    # Entregas
    Delivery,
    DeliveryStatus,

    # Daños
    Damage,
    DamageSeverity,
    DamageStatus,

    # Auditoría
    AuditLogEntry,
    AuditAction,

    # Notificaciones
    Notification,
    NotificationType,
    NOTIFICATION_READ,

    new_id,
)

__all__ = [
    'User',
    'UserRole',
    'APPROVER_ROLES',

    'Item',
    'ItemStatus',
    'UNAVAILABLE_ITEM_STATUSES',

    'Transaction',
    'TransactionType',
    'TransactionStatus',
    'ReturnCondition',
    'TERMINAL_STATUSES',
    'OPEN_BORROW_STATUSES',
    'RETURNABLE_STATUSES',

    'Delivery',
    'DeliveryStatus',

    'Damage',
    'DamageSeverity',
    'DamageStatus',

    'AuditLogEntry',
    'AuditAction',

    'Notification',
    'NotificationType',
    'NOTIFICATION_READ',

    'new_id',
]
