# ==============================================================================
# REPOSITORIO BASE - Funcionalidad común para acceso a archivos JSON
# ==============================================================================

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

from app_inventory.errors import PersistenceError


logger = logging.getLogger(__name__)

T = TypeVar('T')


class BaseRepository(ABC):
    """
    Clase base abstracta para todos los repositorios.
    Proporciona funcionalidad común para lectura/escritura de archivos JSON
    con manejo de concurrencia mediante un lock compartido.

    El lock es de clase: TODOS los repositorios comparten el mismo RLock,
    así una UnitOfWork puede leer y escribir varios archivos sin que otro
    hilo se intercale.
    """

    # Lock global para evitar escrituras concurrentes a archivos
    _file_lock = threading.RLock()

    def __init__(self, file_path: str):
        """
        Inicializa el repositorio con la ruta al archivo JSON.

        Args:
            file_path: Ruta absoluta al archivo JSON de datos
        """
        self.file_path = file_path
        self._ensure_file_exists()

    def _ensure_file_exists(self) -> None:
        """Crea el archivo (y su carpeta) con datos vacíos si no existe."""
        with self._file_lock:
            folder = os.path.dirname(self.file_path)
            if folder:
                os.makedirs(folder, exist_ok=True)
            if not os.path.exists(self.file_path):
                self._write_raw(self._empty_data())

    @abstractmethod
    def _empty_data(self) -> Any:
        """
        Retorna la estructura de datos vacía para este repositorio.

        Returns:
            Estructura vacía (dict, list, etc.) según el repositorio
        """

    def _read_raw(self) -> Any:
        """
        Lee los datos crudos del archivo JSON.

        Returns:
            Datos parseados del JSON

        Raises:
            PersistenceError: Si el archivo tiene JSON inválido o no se puede leer
        """
        with self._file_lock:
            try:
                with open(self.file_path, 'r', encoding='utf-8') as f:
                    return json.load(f)
            except FileNotFoundError:
                return self._empty_data()
            except (OSError, json.JSONDecodeError) as e:
                # Un archivo corrupto NO se trata como vacío: se perdería todo
                # al siguiente guardado.
                raise PersistenceError(
                    f"No se pudo leer {os.path.basename(self.file_path)}: {e}"
                ) from e

    def _write_raw(self, data: Any) -> None:
        """
        Escribe datos al archivo JSON.

        Args:
            data: Datos a serializar y escribir

        Raises:
            PersistenceError: Si hay error de escritura
        """
        with self._file_lock:
            # Escribir a archivo temporal primero para atomicidad
            temp_path = self.file_path + '.tmp'
            try:
                with open(temp_path, 'w', encoding='utf-8') as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                # Reemplazar archivo original (operación atómica en la mayoría de sistemas)
                os.replace(temp_path, self.file_path)
            except (OSError, TypeError, ValueError) as e:
                # Limpiar archivo temporal si algo falla
                if os.path.exists(temp_path):
                    os.remove(temp_path)
                raise PersistenceError(
                    f"No se pudo escribir {os.path.basename(self.file_path)}: {e}"
                ) from e

    @classmethod
    def atomic(cls) -> 'UnitOfWork':
        """Abre una unidad de trabajo sobre el lock compartido."""
        return UnitOfWork()


class DictRepository(BaseRepository, Generic[T]):
    """
    Repositorio base para datos almacenados como diccionario.
    El ID es la clave del diccionario.

    Ejemplo: items.json -> {"a1b2": {...}, "c3d4": {...}}

    Las subclases definen _to_entity/_to_record para trabajar con
    dataclasses en lugar de diccionarios crudos.
    """

    def _empty_data(self) -> Dict:
        """Retorna diccionario vacío."""
        return {}

    # -------------------------------------------------------------------------
    # Conversión registro <-> entidad
    # -------------------------------------------------------------------------

    @abstractmethod
    def _to_entity(self, record: Dict[str, Any]) -> T:
        """Convierte el registro JSON en su entidad."""

    def _to_record(self, entity: T) -> Dict[str, Any]:
        return entity.to_dict()

    def _entity_id(self, entity: T) -> str:
        return entity.id

    def _convert(self, record: Dict[str, Any]) -> T:
        try:
            return self._to_entity(record)
        except (KeyError, TypeError, ValueError) as e:
            # Valores legacy fuera del conjunto cerrado de estados
            raise PersistenceError(
                f"Registro inválido en {os.path.basename(self.file_path)}: {e}"
            ) from e

    # -------------------------------------------------------------------------
    # Lectura
    # -------------------------------------------------------------------------

    def get_all(self) -> Dict[str, Any]:
        """
        Obtiene todos los registros crudos.

        Returns:
            Diccionario con todos los datos
        """
        data = self._read_raw()
        return data if isinstance(data, dict) else {}

    def get_by_id(self, record_id: Any) -> Optional[T]:
        """
        Obtiene una entidad por su ID.

        Args:
            record_id: ID del registro

        Returns:
            Entidad o None si no existe
        """
        if record_id is None:
            return None
        record = self.get_all().get(str(record_id))
        return self._convert(record) if record is not None else None

    def list(self, predicate: Optional[Callable[[T], bool]] = None) -> List[T]:
        """
        Lista entidades, opcionalmente filtradas.

        Args:
            predicate: Función de filtro sobre la entidad

        Returns:
            Lista de entidades en orden de inserción
        """
        entities = [self._convert(r) for r in self.get_all().values()]
        if predicate is None:
            return entities
        return [e for e in entities if predicate(e)]

    def exists(self, record_id: Any) -> bool:
        return str(record_id) in self.get_all()

    def count(self) -> int:
        return len(self.get_all())

    # -------------------------------------------------------------------------
    # Escritura
    # -------------------------------------------------------------------------

    def save_all(self, data: Dict[str, Any]) -> None:
        """
        Guarda todos los registros (reemplazo completo).

        Args:
            data: Diccionario completo de datos
        """
        self._write_raw(data)

    def update(self, record_id: Any, record_data: Dict[str, Any]) -> None:
        """
        Reemplaza un registro crudo.

        Args:
            record_id: ID del registro
            record_data: Nuevos datos del registro
        """
        with self._file_lock:
            data = self.get_all()
            data[str(record_id)] = record_data
            self._write_raw(data)

    def save(self, entity: T) -> T:
        """
        Inserta o reemplaza una entidad.

        Args:
            entity: Entidad a guardar

        Returns:
            La misma entidad
        """
        self.update(self._entity_id(entity), self._to_record(entity))
        return entity

    def delete(self, record_id: Any) -> Optional[Dict[str, Any]]:
        """
        Elimina un registro.

        Args:
            record_id: ID del registro a eliminar

        Returns:
            Datos del registro eliminado o None si no existía
        """
        with self._file_lock:
            data = self.get_all()
            removed = data.pop(str(record_id), None)
            if removed is not None:
                self._write_raw(data)
            return removed


class ListRepository(BaseRepository):
    """
    Repositorio base para datos almacenados como lista.

    Ejemplo: audit.json -> [{...}, {...}]
    """

    def _empty_data(self) -> List:
        """Retorna lista vacía."""
        return []

    def get_all(self) -> List[Dict[str, Any]]:
        """
        Obtiene todos los registros.

        Returns:
            Lista con todos los datos
        """
        data = self._read_raw()
        return data if isinstance(data, list) else []

    def save_all(self, data: List[Dict[str, Any]]) -> None:
        """
        Guarda todos los registros (reemplazo completo).

        Args:
            data: Lista completa de datos
        """
        self._write_raw(data)

    def append(self, record: Dict[str, Any]) -> None:
        """
        Agrega un registro al final.

        Args:
            record: Datos del nuevo registro
        """
        with self._file_lock:
            data = self.get_all()
            data.append(record)
            self._write_raw(data)

    def find_by(self, field: str, value: Any) -> Optional[Dict[str, Any]]:
        """
        Busca un registro por un campo específico.

        Args:
            field: Nombre del campo
            value: Valor a buscar

        Returns:
            Primer registro que coincide o None
        """
        for record in self.get_all():
            if record.get(field) == value:
                return record
        return None


# ==============================================================================
# UNIDAD DE TRABAJO
# ==============================================================================

class UnitOfWork:
    """
    Agrupa escrituras de varios repositorios: o se aplican todas o ninguna.

    Mantiene el lock global durante todo el bloque (lectura, verificación y
    escritura). Si algo falla dentro del bloque, restaura en orden inverso
    los registros que ya se habían escrito.

    Uso:
        with repo.atomic() as uow:
            uow.save(transaction_repo, tx_nueva)
            uow.save(item_repo, item_actualizado)
    """

    def __init__(self):
        self._undo: List[Tuple[DictRepository, str, Optional[Dict[str, Any]]]] = []

    def __enter__(self) -> 'UnitOfWork':
        BaseRepository._file_lock.acquire()
        return self

    def save(self, repo: DictRepository, entity: Any) -> Any:
        """Guarda una entidad recordando su versión anterior."""
        record_id = str(repo._entity_id(entity))
        previous = repo.get_all().get(record_id)
        repo.save(entity)
        self._undo.append((repo, record_id, previous))
        return entity

    def delete(self, repo: DictRepository, record_id: Any) -> Optional[Dict[str, Any]]:
        """Elimina un registro; al revertir se vuelve a escribir."""
        record_id = str(record_id)
        previous = repo.delete(record_id)
        if previous is not None:
            self._undo.append((repo, record_id, previous))
        return previous

    def _rollback(self) -> None:
        for repo, record_id, previous in reversed(self._undo):
            try:
                if previous is None:
                    repo.delete(record_id)
                else:
                    repo.update(record_id, previous)
            except PersistenceError:
                logger.exception(
                    "No se pudo revertir %s en %s", record_id, repo.file_path
                )
        self._undo.clear()

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc_type is not None:
                self._rollback()
        finally:
            self._undo.clear()
            BaseRepository._file_lock.release()
        return False
