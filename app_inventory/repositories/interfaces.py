# ==============================================================================
# INTERFACES DE REPOSITORIOS
# ==============================================================================
#
# Este archivo define las interfaces (protocolos) que los repositorios
# deben implementar. Esto permite:
#
# 1. INDEPENDENCIA DE ALMACENAMIENTO
#    - Los servicios dependen de interfaces, NO de implementaciones concretas
#    - Cambiar JSON → base de datos solo requiere nueva implementación
#
# 2. TESTING
#    - Fácil crear dobles que implementen estas interfaces
#    - Ej: un repositorio de auditoría que siempre falla (auditoría no bloqueante)
#
# 3. DOCUMENTACIÓN
#    - Contratos claros de qué hace cada repositorio
#
# ==============================================================================

from datetime import datetime
from typing import Any, Callable, List, Optional, Protocol, Tuple, runtime_checkable

from app_inventory.models import (
    AuditLogEntry,
    Damage,
    Delivery,
    Item,
    Notification,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)


# ==============================================================================
# INTERFACES BASE
# ==============================================================================

@runtime_checkable
class IEntityRepository(Protocol):
    """
    Interfaz base para repositorios de entidades (clave → registro).
    Usado por: Ítems, Transacciones, Entregas, Daños, Usuarios, Notificaciones.
    """

    def get_by_id(self, record_id: Any) -> Optional[Any]:
        """Obtiene una entidad por ID."""
        ...

    def list(self, predicate: Optional[Callable[[Any], bool]] = None) -> List[Any]:
        """Lista entidades, opcionalmente filtradas."""
        ...

    def save(self, entity: Any) -> Any:
        """Inserta o reemplaza una entidad."""
        ...


# ==============================================================================
# INTERFACES ESPECÍFICAS POR DOMINIO
# ==============================================================================

@runtime_checkable
class IItemRepository(IEntityRepository, Protocol):

    def get_by_id(self, record_id: Any) -> Optional[Item]:
        ...

    def find_in_store(self, store_id: str, name: str, category_id: Optional[str]) -> Optional[Item]:
        """Busca el mismo ítem (nombre + categoría) en otra tienda."""
        ...


@runtime_checkable
class ITransactionRepository(IEntityRepository, Protocol):

    def get_by_id(self, record_id: Any) -> Optional[Transaction]:
        ...

    def find_by_status(self, *statuses: TransactionStatus) -> List[Transaction]:
        ...

    def find_borrows(
        self,
        item_id: str,
        user_id: str,
        statuses: Any
    ) -> List[Transaction]:
        """Préstamos del ítem+usuario en los estados dados (más recientes primero)."""
        ...

    def search(
        self,
        status: Optional[TransactionStatus] = None,
        type: Optional[TransactionType] = None,
        user_id: Optional[str] = None
    ) -> List[Transaction]:
        ...


@runtime_checkable
class IDeliveryRepository(IEntityRepository, Protocol):

    def get_by_id(self, record_id: Any) -> Optional[Delivery]:
        ...

    def get_by_transaction(self, transaction_id: str) -> Optional[Delivery]:
        ...


@runtime_checkable
class IDamageRepository(IEntityRepository, Protocol):

    def find_by_transaction(self, transaction_id: str) -> List[Damage]:
        ...

    def find_by_reporter(self, user_id: str) -> List[Damage]:
        ...


@runtime_checkable
class IUserRepository(IEntityRepository, Protocol):
    """
    Interfaz para el repositorio de usuarios.
    Solo lectura de roles; el alta de usuarios está fuera del núcleo.
    """

    def get_by_id(self, record_id: Any) -> Optional[User]:
        ...

    def user_exists(self, user_id: Optional[str]) -> bool:
        """Verifica si un usuario existe."""
        ...


@runtime_checkable
class INotificationRepository(IEntityRepository, Protocol):

    def find_by_user(self, user_id: str) -> List[Notification]:
        ...


@runtime_checkable
class IAuditRepository(Protocol):
    """
    Interfaz para el repositorio de auditoría.
    Solo agrega registros; la única eliminación es por retención.
    """

    def append_entry(self, entry: AuditLogEntry) -> AuditLogEntry:
        """Agrega un registro al log."""
        ...

    def entries(self) -> List[AuditLogEntry]:
        """Todos los registros, más recientes primero."""
        ...

    def delete_older_than(self, cutoff: datetime) -> Tuple[int, int]:
        """Elimina registros anteriores a `cutoff`. Retorna (eliminados, restantes)."""
        ...
