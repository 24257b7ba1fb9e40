# ==============================================================================
# ENTIDADES DEL DOMINIO - Definiciones de dataclasses
# ==============================================================================
# Cada entidad representa un concepto del negocio.
# Diseñadas para ser independientes del mecanismo de persistencia.
#
# Los valores de las enumeraciones se persisten EXACTAMENTE como están
# escritos aquí (sensible a mayúsculas). Cambiarlos requiere migrar datos.
# ==============================================================================

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from app_inventory.timeutils import days_between_ceil, parse_datetime, to_iso, utc_now


def new_id() -> str:
    """Genera un identificador único para un registro."""
    return uuid.uuid4().hex


def _value(member: Any) -> Any:
    """Valor persistible de un miembro de Enum (o el valor tal cual)."""
    return member.value if isinstance(member, Enum) else member


def _optional_enum(enum_cls, raw: Any):
    return enum_cls(raw) if raw not in (None, '') else None


# ==============================================================================
# ENUMERACIONES - Estados y tipos válidos
# ==============================================================================

class UserRole(str, Enum):
    """Roles de usuario disponibles en el sistema."""
    ADMIN = "Admin"
    STORE_KEEPER = "Store Keeper"
    EMPLOYEE = "Employee"
    DELIVERY_STAFF = "Delivery Staff"


class ItemStatus(str, Enum):
    """Estados de un ítem del inventario."""
    AVAILABLE = "Available"
    BORROWED = "Borrowed"
    MAINTENANCE = "Maintenance"
    DAMAGED = "Damaged"
    RESERVED = "Reserved"


class TransactionType(str, Enum):
    """Tipos de transacción."""
    BORROW = "Borrow"
    RETURN = "Return"
    TRANSFER = "Transfer"
    PURCHASE = "Purchase"


class TransactionStatus(str, Enum):
    """Estados posibles de una transacción."""
    PENDING = "Pending"      # Único estado de creación
    APPROVED = "Approved"
    REJECTED = "Rejected"    # Terminal
    COMPLETED = "Completed"  # Terminal
    OVERDUE = "Overdue"      # Lo asigna el monitor de vencimientos
    CANCELLED = "Cancelled"  # Terminal


class ReturnCondition(str, Enum):
    """Condición del ítem al devolverse."""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    DAMAGED = "damaged"


class DeliveryStatus(str, Enum):
    """Estados de una entrega (transferencia entre tiendas)."""
    PENDING = "Pending"
    IN_PROGRESS = "In-Progress"
    COMPLETED = "Completed"


class DamageSeverity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class DamageStatus(str, Enum):
    PENDING = "Pending"
    UNDER_REVIEW = "Under Review"
    RESOLVED = "Resolved"


class AuditAction(str, Enum):
    """Vocabulario conocido de acciones de auditoría."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    BORROW = "BORROW"
    RETURN = "RETURN"
    TRANSFER = "TRANSFER"
    PURCHASE = "PURCHASE"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    CANCEL = "CANCEL"
    COMPLETE = "COMPLETE"
    OVERDUE = "OVERDUE"
    DAMAGE_REPORT = "DAMAGE_REPORT"
    DELIVERY_UPDATE = "DELIVERY_UPDATE"


class NotificationType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


# Estados de los que ya no se sale
TERMINAL_STATUSES = frozenset([
    TransactionStatus.REJECTED,
    TransactionStatus.COMPLETED,
    TransactionStatus.CANCELLED,
])

# Un préstamo "abierto" impide pedir otro del mismo ítem
OPEN_BORROW_STATUSES = frozenset([
    TransactionStatus.PENDING,
    TransactionStatus.APPROVED,
    TransactionStatus.OVERDUE,
])

# Préstamos que pueden devolverse
RETURNABLE_STATUSES = frozenset([
    TransactionStatus.APPROVED,
    TransactionStatus.OVERDUE,
])

# Ítems que no se pueden prestar ni transferir
UNAVAILABLE_ITEM_STATUSES = frozenset([
    ItemStatus.MAINTENANCE,
    ItemStatus.DAMAGED,
])

# Roles que pueden aprobar/rechazar solicitudes
APPROVER_ROLES = frozenset([UserRole.ADMIN, UserRole.STORE_KEEPER])


# ==============================================================================
# USUARIOS
# ==============================================================================

@dataclass
class User:
    """
    Usuario del sistema (solo lo necesario para roles y auditoría).

    Attributes:
        id: Identificador único
        name: Nombre visible
        role: Rol que define sus permisos
    """
    id: str
    name: str
    role: UserRole = UserRole.EMPLOYEE

    def can_approve(self) -> bool:
        """Verifica si puede aprobar o rechazar solicitudes."""
        return self.role in APPROVER_ROLES

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'name': self.name, 'role': _value(self.role)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'User':
        return cls(
            id=data['id'],
            name=data.get('name', ''),
            role=UserRole(data.get('role', UserRole.EMPLOYEE.value))
        )


# ==============================================================================
# INVENTARIO
# ==============================================================================

@dataclass
class Item:
    """
    Unidad de equipo rastreable.

    El estado y la cantidad solo cambian como efecto de una transacción.

    Attributes:
        id: Identificador del ítem
        name: Nombre del equipo
        quantity: Cantidad disponible en la tienda (>= 0)
        store_id: Tienda dueña del ítem
        category_id: Categoría
        status: Estado actual
        low_stock_threshold: Umbral de alerta de stock bajo
    """
    id: str
    name: str
    quantity: int
    store_id: str
    category_id: Optional[str] = None
    status: ItemStatus = ItemStatus.AVAILABLE
    low_stock_threshold: int = 5
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_low_stock(self) -> bool:
        """True si la cantidad está en o bajo el umbral."""
        return self.quantity <= self.low_stock_threshold

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'quantity': self.quantity,
            'store_id': self.store_id,
            'category_id': self.category_id,
            'status': _value(self.status),
            'low_stock_threshold': self.low_stock_threshold,
            'created_at': to_iso(self.created_at),
            'updated_at': to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Item':
        return cls(
            id=data['id'],
            name=data.get('name', ''),
            quantity=int(data.get('quantity', 0)),
            store_id=data.get('store_id'),
            category_id=data.get('category_id'),
            status=ItemStatus(data.get('status', ItemStatus.AVAILABLE.value)),
            low_stock_threshold=int(data.get('low_stock_threshold', 5)),
            created_at=parse_datetime(data.get('created_at')),
            updated_at=parse_datetime(data.get('updated_at')),
        )


# ==============================================================================
# TRANSACCIONES
# ==============================================================================

@dataclass
class Transaction:
    """
    Solicitud de préstamo, devolución, transferencia o compra.
    Entidad central del sistema; nunca se elimina.

    Attributes:
        id: Identificador
        type: Tipo de transacción
        user_id: Usuario solicitante
        item_id: Ítem involucrado
        quantity: Cantidad (>= 1)
        from_store_id: Tienda de origen (préstamo / transferencia)
        to_store_id: Tienda de destino (transferencia / devolución)
        due_date: Fecha límite de devolución (opcional)
        status: Estado actual
        related_borrow_id: Préstamo que cierra una solicitud de tipo Return
    """
    id: str
    type: TransactionType
    user_id: str
    item_id: str
    quantity: int
    status: TransactionStatus = TransactionStatus.PENDING
    from_store_id: Optional[str] = None
    to_store_id: Optional[str] = None
    due_date: Optional[datetime] = None
    notes: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    returned_at: Optional[datetime] = None
    return_condition: Optional[ReturnCondition] = None
    return_notes: Optional[str] = None
    related_borrow_id: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # -------------------------------------------------------------------------
    # Consultas
    # -------------------------------------------------------------------------

    def is_borrow(self) -> bool:
        return self.type == TransactionType.BORROW

    def is_transfer(self) -> bool:
        return self.type == TransactionType.TRANSFER

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def overdue_days(self, now: Optional[datetime] = None) -> int:
        """
        Días de atraso: ceil(now - due_date) en días, nunca negativo.
        Cero si no hay fecha límite o si ya se completó.
        """
        if self.due_date is None or self.status == TransactionStatus.COMPLETED:
            return 0
        return max(0, days_between_ceil(now or utc_now(), self.due_date))

    def days_until_due(self, now: Optional[datetime] = None) -> Optional[int]:
        """Días restantes hasta la fecha límite (negativo si ya pasó)."""
        if self.due_date is None or self.status == TransactionStatus.COMPLETED:
            return None
        return days_between_ceil(self.due_date, now or utc_now())

    def evolve(self, **changes: Any) -> 'Transaction':
        """Copia con cambios (las transiciones nunca mutan la instancia)."""
        return replace(self, **changes)

    # -------------------------------------------------------------------------
    # Serialización
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': _value(self.type),
            'user_id': self.user_id,
            'item_id': self.item_id,
            'quantity': self.quantity,
            'status': _value(self.status),
            'from_store_id': self.from_store_id,
            'to_store_id': self.to_store_id,
            'due_date': to_iso(self.due_date),
            'notes': self.notes,
            'approved_by': self.approved_by,
            'approved_at': to_iso(self.approved_at),
            'rejection_reason': self.rejection_reason,
            'returned_at': to_iso(self.returned_at),
            'return_condition': _value(self.return_condition),
            'return_notes': self.return_notes,
            'related_borrow_id': self.related_borrow_id,
            'cancelled_by': self.cancelled_by,
            'cancelled_at': to_iso(self.cancelled_at),
            'cancellation_reason': self.cancellation_reason,
            'completed_at': to_iso(self.completed_at),
            'created_at': to_iso(self.created_at),
            'updated_at': to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        return cls(
            id=data['id'],
            type=TransactionType(data['type']),
            user_id=data['user_id'],
            item_id=data['item_id'],
            quantity=int(data['quantity']),
            status=TransactionStatus(data.get('status', TransactionStatus.PENDING.value)),
            from_store_id=data.get('from_store_id'),
            to_store_id=data.get('to_store_id'),
            due_date=parse_datetime(data.get('due_date')),
            notes=data.get('notes'),
            approved_by=data.get('approved_by'),
            approved_at=parse_datetime(data.get('approved_at')),
            rejection_reason=data.get('rejection_reason'),
            returned_at=parse_datetime(data.get('returned_at')),
            return_condition=_optional_enum(ReturnCondition, data.get('return_condition')),
            return_notes=data.get('return_notes'),
            related_borrow_id=data.get('related_borrow_id'),
            cancelled_by=data.get('cancelled_by'),
            cancelled_at=parse_datetime(data.get('cancelled_at')),
            cancellation_reason=data.get('cancellation_reason'),
            completed_at=parse_datetime(data.get('completed_at')),
            created_at=parse_datetime(data.get('created_at')),
            updated_at=parse_datetime(data.get('updated_at')),
        )


# ==============================================================================
# ENTREGAS
# ==============================================================================

@dataclass
class Delivery:
    """
    Transferencia en curso: vincula una transacción Transfer aprobada
    con el personal que la ejecuta. Una sola por transacción.
    """
    id: str
    transaction_id: str
    status: DeliveryStatus = DeliveryStatus.PENDING
    assigned_to: Optional[str] = None
    assigned_by: Optional[str] = None
    from_store_id: Optional[str] = None
    to_store_id: Optional[str] = None
    pickup_time: Optional[datetime] = None
    delivery_time: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'transaction_id': self.transaction_id,
            'status': _value(self.status),
            'assigned_to': self.assigned_to,
            'assigned_by': self.assigned_by,
            'from_store_id': self.from_store_id,
            'to_store_id': self.to_store_id,
            'pickup_time': to_iso(self.pickup_time),
            'delivery_time': to_iso(self.delivery_time),
            'notes': self.notes,
            'created_at': to_iso(self.created_at),
            'updated_at': to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Delivery':
        return cls(
            id=data['id'],
            transaction_id=data['transaction_id'],
            status=DeliveryStatus(data.get('status', DeliveryStatus.PENDING.value)),
            assigned_to=data.get('assigned_to'),
            assigned_by=data.get('assigned_by'),
            from_store_id=data.get('from_store_id'),
            to_store_id=data.get('to_store_id'),
            pickup_time=parse_datetime(data.get('pickup_time')),
            delivery_time=parse_datetime(data.get('delivery_time')),
            notes=data.get('notes'),
            created_at=parse_datetime(data.get('created_at')),
            updated_at=parse_datetime(data.get('updated_at')),
        )


# ==============================================================================
# DAÑOS
# ==============================================================================

@dataclass
class Damage:
    """
    Reporte de daño de un ítem.

    Se genera al devolver en mal estado o se reporta a mano; un aprobador
    lo revisa y lo resuelve.
    """
    id: str
    item_id: str
    reported_by: str
    description: str
    quantity_damaged: int = 1
    transaction_id: Optional[str] = None
    severity: DamageSeverity = DamageSeverity.MEDIUM
    status: DamageStatus = DamageStatus.PENDING
    reported_at: Optional[datetime] = None
    notes: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_open(self) -> bool:
        return self.status != DamageStatus.RESOLVED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'item_id': self.item_id,
            'transaction_id': self.transaction_id,
            'reported_by': self.reported_by,
            'description': self.description,
            'quantity_damaged': self.quantity_damaged,
            'severity': _value(self.severity),
            'status': _value(self.status),
            'reported_at': to_iso(self.reported_at),
            'notes': self.notes,
            'resolved_by': self.resolved_by,
            'resolved_at': to_iso(self.resolved_at),
            'updated_at': to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Damage':
        return cls(
            id=data['id'],
            item_id=data['item_id'],
            transaction_id=data.get('transaction_id'),
            reported_by=data.get('reported_by'),
            description=data.get('description', ''),
            quantity_damaged=int(data.get('quantity_damaged', 1)),
            severity=DamageSeverity(data.get('severity', DamageSeverity.MEDIUM.value)),
            status=DamageStatus(data.get('status', DamageStatus.PENDING.value)),
            reported_at=parse_datetime(data.get('reported_at')),
            notes=data.get('notes'),
            resolved_by=data.get('resolved_by'),
            resolved_at=parse_datetime(data.get('resolved_at')),
            updated_at=parse_datetime(data.get('updated_at')),
        )


# ==============================================================================
# AUDITORÍA
# ==============================================================================

@dataclass(frozen=True)
class AuditLogEntry:
    """
    Registro inmutable de una mutación.

    Attributes:
        id: Identificador
        user_id: Actor (None = sistema)
        action_type: Acción (ver AuditAction)
        target_table: Tabla afectada (transactions, items, deliveries...)
        target_id: Registro afectado
        old_value: Snapshot previo
        new_value: Snapshot posterior
        timestamp: Momento de la mutación
    """
    id: str
    user_id: Optional[str]
    action_type: str
    target_table: str
    target_id: Optional[str]
    old_value: Optional[Dict[str, Any]] = None
    new_value: Optional[Dict[str, Any]] = None
    timestamp: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'action_type': self.action_type,
            'target_table': self.target_table,
            'target_id': self.target_id,
            'old_value': self.old_value,
            'new_value': self.new_value,
            'timestamp': to_iso(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditLogEntry':
        return cls(
            id=data['id'],
            user_id=data.get('user_id'),
            action_type=data.get('action_type', ''),
            target_table=data.get('target_table', ''),
            target_id=data.get('target_id'),
            old_value=data.get('old_value'),
            new_value=data.get('new_value'),
            timestamp=parse_datetime(data.get('timestamp')),
        )


# ==============================================================================
# NOTIFICACIONES
# ==============================================================================

NOTIFICATION_READ = 'Read'


@dataclass
class Notification:
    """Aviso para un usuario (aprobación, rechazo, vencimiento)."""
    id: str
    user_id: str
    message: str
    type: NotificationType = NotificationType.INFO
    status: str = 'Pending'
    timestamp: Optional[datetime] = field(default=None)

    def is_read(self) -> bool:
        return self.status == NOTIFICATION_READ

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'message': self.message,
            'type': _value(self.type),
            'status': self.status,
            'read': self.is_read(),
            'timestamp': to_iso(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Notification':
        return cls(
            id=data['id'],
            user_id=data['user_id'],
            message=data.get('message', ''),
            type=NotificationType(data.get('type', NotificationType.INFO.value)),
            status=data.get('status', 'Pending'),
            timestamp=parse_datetime(data.get('timestamp')),
        )
