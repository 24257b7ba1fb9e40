# ==============================================================================
# CONFIGURACIÓN DE LA APLICACIÓN
# ==============================================================================
# Valores por defecto + variables de entorno.
# create_app() acepta un diccionario adicional que tiene la última palabra
# (útil para tests: DATA_DIR apuntando a una carpeta temporal).
#
# Variables de entorno:
#   INVENTORY_DATA_DIR              → carpeta de los archivos JSON
#   INVENTORY_SECRET_KEY            → clave secreta de Flask
#   INVENTORY_PRODUCTION_MODE       → 1/0
#   INVENTORY_ENABLE_PROFILING      → 1/0
#   INVENTORY_LOGS_DIR              → carpeta de logs de rendimiento
#   INVENTORY_AUDIT_RETENTION_DAYS  → días de retención por defecto
#   INVENTORY_OVERDUE_CHECK_ON_READ → 1/0, revisar vencimiento al leer
#   INVENTORY_LOG_LEVEL             → nivel del logging (INFO, DEBUG...)
# ==============================================================================

import os
from typing import Any, Dict, Mapping, Optional


BASE = os.path.dirname(os.path.abspath(__file__))

_DEFAULT_SECRET = "app_inventory_dev_secret_key_change_in_production"

DEFAULTS: Dict[str, Any] = {
    'DATA_DIR': os.path.join(BASE, 'data'),
    'LOGS_DIR': os.path.join(BASE, 'logs'),
    'PRODUCTION_MODE': False,
    'ENABLE_PROFILING': True,
    'AUDIT_RETENTION_DAYS': 365,
    'OVERDUE_CHECK_ON_READ': True,
    'LOG_LEVEL': 'INFO',
}


def _env_bool(name: str, default: bool) -> bool:
    """Interpreta 1/true/yes/on como True."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        print(f"[ADVERTENCIA] {name}={raw!r} no es entero, usando {default}")
        return default


def load_config(overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """
    Construye la configuración final.

    Orden de prioridad: overrides > variables de entorno > DEFAULTS.

    Args:
        overrides: Valores explícitos (por ejemplo desde tests)

    Returns:
        Diccionario listo para app.config.update()
    """
    config = dict(DEFAULTS)
    config['DATA_DIR'] = os.environ.get('INVENTORY_DATA_DIR', config['DATA_DIR'])
    config['LOGS_DIR'] = os.environ.get('INVENTORY_LOGS_DIR', config['LOGS_DIR'])
    config['PRODUCTION_MODE'] = _env_bool('INVENTORY_PRODUCTION_MODE', config['PRODUCTION_MODE'])
    config['ENABLE_PROFILING'] = _env_bool('INVENTORY_ENABLE_PROFILING', config['ENABLE_PROFILING'])
    config['AUDIT_RETENTION_DAYS'] = _env_int(
        'INVENTORY_AUDIT_RETENTION_DAYS', config['AUDIT_RETENTION_DAYS']
    )
    config['OVERDUE_CHECK_ON_READ'] = _env_bool(
        'INVENTORY_OVERDUE_CHECK_ON_READ', config['OVERDUE_CHECK_ON_READ']
    )
    config['LOG_LEVEL'] = os.environ.get('INVENTORY_LOG_LEVEL', config['LOG_LEVEL']).upper()

    secret = os.environ.get('INVENTORY_SECRET_KEY')
    if config['PRODUCTION_MODE'] and not secret:
        print("[ADVERTENCIA] PRODUCTION_MODE activo sin INVENTORY_SECRET_KEY definida")
        print("[ADVERTENCIA] Define la variable de entorno para mayor seguridad")
    config['SECRET_KEY'] = secret or _DEFAULT_SECRET

    if overrides:
        config.update(overrides)
    return config
