# ==============================================================================
# CONTENEDOR DE DEPENDENCIAS - Inyección de servicios
# ==============================================================================
# Forma centralizada de obtener repositorios y servicios. Facilita:
#   - Inyección de dependencias
#   - Testing (cada test usa su propia carpeta de datos)
#   - Cambiar el almacenamiento sin tocar los servicios
#
# Grafo de dependencias:
#
#   repos ──► audit_service
#        ──► store_validator
#        ──► state_machine ──► overdue_monitor ──► transaction_service
#                          ──► delivery_service ──►
#        ──► authorization / notification_service ──►
#        ──► damage_service
# ==============================================================================

import os
from typing import Optional

# ═══════════════════════════════════════════════════════════════════════════════
# REPOSITORIOS - Capa de persistencia (JSON)
# ═══════════════════════════════════════════════════════════════════════════════
from app_inventory.repositories import (
    AuditRepository,
    DamageRepository,
    DeliveryRepository,
    ItemRepository,
    NotificationRepository,
    TransactionRepository,
    UserRepository,
)

# ═══════════════════════════════════════════════════════════════════════════════
# SERVICIOS - Capa de lógica de negocio
# ═══════════════════════════════════════════════════════════════════════════════
from app_inventory.services import (
    AuditService,
    AuthorizationService,
    DamageService,
    DeliveryService,
    NotificationService,
    OverdueMonitor,
    StoreConsistencyValidator,
    TransactionService,
    TransactionStateMachine,
)


class AppContainer:
    """
    Contenedor de dependencias de la aplicación.

    Implementa el patrón Singleton para asegurar una única instancia
    de cada repositorio y servicio.

    Uso:
        container = AppContainer(data_dir='/ruta/a/data')
        service = container.transaction_service
    """

    _instance: Optional['AppContainer'] = None

    def __new__(cls, data_dir: str = None, check_overdue_on_read: bool = True):
        """Singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, data_dir: str = None, check_overdue_on_read: bool = True):
        """
        Inicializa el contenedor.

        Args:
            data_dir: Carpeta donde viven los archivos JSON
            check_overdue_on_read: Revisar vencimientos al leer transacciones
        """
        if self._initialized:
            return

        self._data_dir = data_dir or os.path.join(
            os.path.dirname(os.path.abspath(__file__)), 'data'
        )
        self._check_overdue_on_read = check_overdue_on_read
        self._clear()
        self._initialized = True

    def _clear(self) -> None:
        # Repositorios (lazy loading)
        self._item_repo: Optional[ItemRepository] = None
        self._transaction_repo: Optional[TransactionRepository] = None
        self._delivery_repo: Optional[DeliveryRepository] = None
        self._damage_repo: Optional[DamageRepository] = None
        self._user_repo: Optional[UserRepository] = None
        self._notification_repo: Optional[NotificationRepository] = None
        self._audit_repo: Optional[AuditRepository] = None

        # Servicios (lazy loading)
        self._audit_service: Optional[AuditService] = None
        self._store_validator: Optional[StoreConsistencyValidator] = None
        self._state_machine: Optional[TransactionStateMachine] = None
        self._notification_service: Optional[NotificationService] = None
        self._authorization: Optional[AuthorizationService] = None
        self._overdue_monitor: Optional[OverdueMonitor] = None
        self._delivery_service: Optional[DeliveryService] = None
        self._damage_service: Optional[DamageService] = None
        self._transaction_service: Optional[TransactionService] = None

    @property
    def data_dir(self) -> str:
        return self._data_dir

    @property
    def check_overdue_on_read(self) -> bool:
        return self._check_overdue_on_read

    # =========================================================================
    # REPOSITORIOS
    # =========================================================================

    @property
    def item_repo(self) -> ItemRepository:
        if self._item_repo is None:
            self._item_repo = ItemRepository(self._data_dir)
        return self._item_repo

    @property
    def transaction_repo(self) -> TransactionRepository:
        if self._transaction_repo is None:
            self._transaction_repo = TransactionRepository(self._data_dir)
        return self._transaction_repo

    @property
    def delivery_repo(self) -> DeliveryRepository:
        if self._delivery_repo is None:
            self._delivery_repo = DeliveryRepository(self._data_dir)
        return self._delivery_repo

    @property
    def damage_repo(self) -> DamageRepository:
        if self._damage_repo is None:
            self._damage_repo = DamageRepository(self._data_dir)
        return self._damage_repo

    @property
    def user_repo(self) -> UserRepository:
        if self._user_repo is None:
            self._user_repo = UserRepository(self._data_dir)
        return self._user_repo

    @property
    def notification_repo(self) -> NotificationRepository:
        if self._notification_repo is None:
            self._notification_repo = NotificationRepository(self._data_dir)
        return self._notification_repo

    @property
    def audit_repo(self) -> AuditRepository:
        if self._audit_repo is None:
            self._audit_repo = AuditRepository(self._data_dir)
        return self._audit_repo

    # =========================================================================
    # SERVICIOS
    # =========================================================================

    @property
    def audit_service(self) -> AuditService:
        """Servicio de auditoría (singleton)."""
        if self._audit_service is None:
            self._audit_service = AuditService(self.audit_repo)
        return self._audit_service

    @property
    def store_validator(self) -> StoreConsistencyValidator:
        if self._store_validator is None:
            self._store_validator = StoreConsistencyValidator(self.transaction_repo)
        return self._store_validator

    @property
    def state_machine(self) -> TransactionStateMachine:
        """Máquina de estados (singleton)."""
        if self._state_machine is None:
            self._state_machine = TransactionStateMachine(
                self.transaction_repo,
                self.item_repo,
                self.delivery_repo,
                self.damage_repo,
                self.user_repo,
                self.store_validator,
                self.audit_service
            )
        return self._state_machine

    @property
    def notification_service(self) -> NotificationService:
        if self._notification_service is None:
            self._notification_service = NotificationService(self.notification_repo)
        return self._notification_service

    @property
    def authorization(self) -> AuthorizationService:
        if self._authorization is None:
            self._authorization = AuthorizationService(self.user_repo)
        return self._authorization

    @property
    def overdue_monitor(self) -> OverdueMonitor:
        if self._overdue_monitor is None:
            self._overdue_monitor = OverdueMonitor(
                self.transaction_repo,
                self.state_machine,
                self.notification_service
            )
        return self._overdue_monitor

    @property
    def delivery_service(self) -> DeliveryService:
        """Servicio de entregas (singleton)."""
        if self._delivery_service is None:
            self._delivery_service = DeliveryService(
                self.delivery_repo,
                self.transaction_repo,
                self.user_repo,
                self.state_machine,
                self.audit_service
            )
        return self._delivery_service

    @property
    def damage_service(self) -> DamageService:
        """Servicio de reportes de daño (singleton)."""
        if self._damage_service is None:
            self._damage_service = DamageService(
                self.damage_repo,
                self.item_repo,
                self.authorization,
                self.audit_service
            )
        return self._damage_service

    @property
    def transaction_service(self) -> TransactionService:
        """Fachada de transacciones (singleton)."""
        if self._transaction_service is None:
            self._transaction_service = TransactionService(
                self.state_machine,
                self.transaction_repo,
                self.overdue_monitor,
                self.delivery_service,
                self.authorization,
                self.notification_service,
                check_overdue_on_read=self._check_overdue_on_read
            )
        return self._transaction_service

    # =========================================================================
    # UTILIDADES
    # =========================================================================

    def reset(self) -> None:
        """
        Reinicia todas las instancias.
        Útil para testing o para recargar datos.
        """
        self._clear()

    @classmethod
    def get_instance(cls, data_dir: str = None, check_overdue_on_read: bool = True) -> 'AppContainer':
        """
        Obtiene la instancia singleton del contenedor.

        Args:
            data_dir: Carpeta de datos (solo se usa en la primera llamada)
            check_overdue_on_read: Idem

        Returns:
            Instancia del contenedor
        """
        if cls._instance is None:
            return cls(data_dir, check_overdue_on_read)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Elimina la instancia singleton (útil para tests)."""
        if cls._instance is not None:
            cls._instance.reset()
            cls._instance = None


def get_container(data_dir: str = None, check_overdue_on_read: bool = True) -> AppContainer:
    """
    Obtiene el contenedor de dependencias global.

    Args:
        data_dir: Carpeta de datos
        check_overdue_on_read: Revisar vencimientos al leer

    Returns:
        Instancia del contenedor
    """
    return AppContainer.get_instance(data_dir, check_overdue_on_read)
