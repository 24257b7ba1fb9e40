# ==============================================================================
# CAPA DE REPOSITORIOS - Acceso a datos
# ==============================================================================
# Esta capa encapsula todo el acceso a la persistencia (actualmente JSON).
# Las interfaces (métodos públicos) permanecen iguales si cambia el motor.
#
# ESTRUCTURA:
# ├── interfaces.py               → Protocolos/Interfaces (contratos)
# ├── base.py                     → Clases base JSON + UnitOfWork
# ├── item_repository.py          → Acceso a items.json
# ├── transaction_repository.py   → Acceso a transactions.json
# ├── delivery_repository.py      → Acceso a deliveries.json
# ├── damage_repository.py        → Acceso a damages.json
# ├── user_repository.py          → Acceso a users.json
# ├── notification_repository.py  → Acceso a notifications.json
# └── audit_repository.py         → Acceso a audit.json
# ==============================================================================

# Interfaces
from .interfaces import (
    IEntityRepository,
    IItemRepository,
    ITransactionRepository,
    IDeliveryRepository,
    IDamageRepository,
    IUserRepository,
    INotificationRepository,
    IAuditRepository,
)

# Implementaciones concretas (JSON)
from .base import BaseRepository, DictRepository, ListRepository, UnitOfWork
from .item_repository import ItemRepository
from .transaction_repository import TransactionRepository
from .delivery_repository import DeliveryRepository
from .damage_repository import DamageRepository
from .user_repository import UserRepository
from .notification_repository import NotificationRepository
from .audit_repository import AuditRepository

__all__ = [
    # Interfaces
    'IEntityRepository',
    'IItemRepository',
    'ITransactionRepository',
    'IDeliveryRepository',
    'IDamageRepository',
    'IUserRepository',
    'INotificationRepository',
    'IAuditRepository',

    # Clases base
    'BaseRepository',
    'DictRepository',
    'ListRepository',
    'UnitOfWork',

    # Implementaciones JSON
    'ItemRepository',
    'TransactionRepository',
    'DeliveryRepository',
    'DamageRepository',
    'UserRepository',
    'NotificationRepository',
    'AuditRepository',
]
