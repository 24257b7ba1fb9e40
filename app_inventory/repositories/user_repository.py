# ==============================================================================
# REPOSITORIO DE USUARIOS
# ==============================================================================
# Encapsula todo el acceso a users.json
# Los usuarios se almacenan como diccionario: {user_id: {id, name, role}}
# ==============================================================================

import os
from typing import Any, Dict, Optional

from app_inventory.models import User
from app_inventory.repositories.base import DictRepository


class UserRepository(DictRepository[User]):
    """
    Repositorio para consulta de usuarios y roles.

    Formato de datos en users.json:
    {
        "u-admin": {"id": "u-admin", "name": "Ana", "role": "Admin"},
        "u-emp": {"id": "u-emp", "name": "Luis", "role": "Employee"}
    }
    """

    def __init__(self, base_path: str):
        """
        Inicializa el repositorio de usuarios.

        Args:
            base_path: Carpeta de datos
        """
        file_path = os.path.join(base_path, 'users.json')
        super().__init__(file_path)

    def _to_entity(self, record: Dict[str, Any]) -> User:
        return User.from_dict(record)

    def user_exists(self, user_id: Optional[str]) -> bool:
        """
        Verifica si un usuario existe.

        Args:
            user_id: ID del usuario

        Returns:
            True si existe
        """
        if not user_id:
            return False
        return self.exists(user_id)
