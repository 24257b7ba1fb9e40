# ==============================================================================
# PROFILING DE RUTAS Y OPERACIONES
# ==============================================================================
# Mide cuánto tardan las rutas HTTP y las operaciones del ciclo de vida
# (aprobar, devolver, revisar vencimientos...) sin tocar la respuesta.
#
#   performance.log     → una línea por petición
#   slow_routes.log     → peticiones que superan los umbrales
#   slow_functions.log  → operaciones que superan los umbrales
#
# En memoria se acumulan contadores por operación y por ruta.
# ACTIVAR/DESACTIVAR: configure(enabled=...) o INVENTORY_ENABLE_PROFILING
# ==============================================================================

import logging
import os
import threading
import time
from collections import defaultdict
from datetime import datetime
from functools import wraps


logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════
# CONFIGURACIÓN
# ═══════════════════════════════════════════════════════════════════════════

# Umbrales en milisegundos
THRESHOLD_WARNING = 300
THRESHOLD_CRITICAL = 700

_settings = {
    'enabled': True,
    'logs_dir': os.path.join(os.path.dirname(os.path.abspath(__file__)), 'logs'),
}

PERFORMANCE_LOG = 'performance.log'
SLOW_ROUTES_LOG = 'slow_routes.log'
SLOW_FUNCTIONS_LOG = 'slow_functions.log'

# Nombre legible por regla de Flask
ROUTE_NAMES = {
    # Transacciones
    'POST /transactions': 'Crear solicitud',
    'GET /transactions': 'Listar transacciones',
    'GET /transactions/<transaction_id>': 'Ver transacción',
    'PUT /transactions/<transaction_id>/approve': 'Aprobar solicitud',
    'PUT /transactions/<transaction_id>/reject': 'Rechazar solicitud',
    'PUT /transactions/<transaction_id>/return': 'Registrar devolución',
    'PUT /transactions/<transaction_id>/cancel': 'Cancelar solicitud',
    'PUT /transactions/<transaction_id>/complete': 'Completar transacción',
    'GET /transactions/overdue': 'Ver vencidas',
    'GET /transactions/pending': 'Ver pendientes',
    'POST /transactions/overdue/sweep': 'Revisar vencimientos',
    'GET /transactions/dashboard/stats': 'Ver panel',

    # Entregas
    'GET /deliveries': 'Listar entregas',
    'GET /deliveries/stats': 'Estadísticas de entregas',
    'GET /deliveries/<delivery_id>': 'Ver entrega',
    'PUT /deliveries/<delivery_id>/assign': 'Asignar entrega',
    'PUT /deliveries/<delivery_id>/pickup': 'Recoger entrega',
    'PUT /deliveries/<delivery_id>/deliver': 'Entregar',

    # Daños
    'POST /damages': 'Reportar daño',
    'GET /damages': 'Listar daños',
    'GET /damages/my-reports': 'Mis reportes de daño',
    'PATCH /damages/<damage_id>/status': 'Revisar daño',
    'GET /damages/stats': 'Estadísticas de daños',

    # Auditoría
    'GET /audit': 'Ver registro de actividad',
    'GET /audit/stats': 'Estadísticas de auditoría',
    'GET /audit/integrity': 'Verificar integridad',
    'GET /audit/report/<table>': 'Reporte por entidad',
    'POST /audit/cleanup': 'Depurar auditoría',

    # Notificaciones
    'GET /notifications': 'Ver notificaciones',
    'PUT /notifications/<notification_id>/read': 'Marcar notificación leída',

    # Profiling
    'GET /performance': 'Ver rendimiento',
}


def configure(logs_dir=None, enabled=None):
    """
    Ajusta carpeta de logs y activación.

    Args:
        logs_dir: Carpeta donde escribir los archivos .log
        enabled: Activa o desactiva el profiling
    """
    if logs_dir is not None:
        _settings['logs_dir'] = logs_dir
    if enabled is not None:
        _settings['enabled'] = bool(enabled)


def is_enabled():
    return _settings['enabled']


def classify(time_ms):
    """'CRITICAL', 'WARNING' o None según los umbrales."""
    if time_ms >= THRESHOLD_CRITICAL:
        return 'CRITICAL'
    if time_ms >= THRESHOLD_WARNING:
        return 'WARNING'
    return None


# ═══════════════════════════════════════════════════════════════════════════
# CONTADORES EN MEMORIA
# ═══════════════════════════════════════════════════════════════════════════

def _new_counter():
    return {'calls': 0, 'errors': 0, 'total_time': 0.0, 'max_time': 0.0}


_function_stats = defaultdict(_new_counter)
_route_stats = defaultdict(_new_counter)
_stats_lock = threading.Lock()
_write_lock = threading.Lock()


def _accumulate(table, key, time_ms, failed=False):
    with _stats_lock:
        counter = table[key]
        counter['calls'] += 1
        counter['total_time'] += time_ms
        counter['max_time'] = max(counter['max_time'], time_ms)
        if failed:
            counter['errors'] += 1


def _snapshot(table):
    with _stats_lock:
        return {
            key: {
                'calls': c['calls'],
                'errors': c['errors'],
                'avg_time': round(c['total_time'] / c['calls'], 2) if c['calls'] else 0,
                'max_time': round(c['max_time'], 2),
            }
            for key, c in table.items()
        }


# ═══════════════════════════════════════════════════════════════════════════
# ESCRITURA DE ARCHIVOS
# ═══════════════════════════════════════════════════════════════════════════

def _log_path(filename):
    return os.path.join(_settings['logs_dir'], filename)


def _write_line(filename, *fields):
    """Agrega una línea 'fecha | campo | campo...' al archivo."""
    line = ' | '.join([datetime.now().strftime('%Y-%m-%d %H:%M:%S')] + [str(f) for f in fields])
    try:
        with _write_lock:
            os.makedirs(_settings['logs_dir'], exist_ok=True)
            with open(_log_path(filename), 'a', encoding='utf-8') as f:
                f.write(line + '\n')
    except OSError as e:
        # Un disco lleno no debe tumbar la petición
        logger.warning("No se pudo escribir %s: %s", filename, e)


def route_name(method, rule):
    return ROUTE_NAMES.get(f"{method} {rule}", f"{method} {rule}")


# ═══════════════════════════════════════════════════════════════════════════
# RUTAS
# ═══════════════════════════════════════════════════════════════════════════

def record_request(method, path, rule, time_ms, status_code, user=None):
    """
    Registra una petición atendida.

    Args:
        method: GET, PUT...
        path: Ruta real (/transactions/f00d/approve)
        rule: Regla de Flask (/transactions/<transaction_id>/approve)
        time_ms: Duración en milisegundos
        status_code: Código HTTP de la respuesta
        user: Valor de X-User-Id, si vino
    """
    if not is_enabled():
        return

    name = route_name(method, rule)
    _accumulate(_route_stats, name, time_ms, failed=status_code >= 500)

    user = user or 'anónimo'
    _write_line(PERFORMANCE_LOG, f"{time_ms:.0f} ms", status_code, name, user, f"{method} {path}")

    level = classify(time_ms)
    if level:
        _write_line(SLOW_ROUTES_LOG, level, f"{time_ms:.0f} ms", name, user, f"{method} {path}")
        logger.warning("Ruta lenta (%s): %s %.0f ms", level, name, time_ms)


def init_profiling(app):
    """
    Engancha el profiling a una app Flask (before/after request).

    Lee LOGS_DIR y ENABLE_PROFILING de app.config.
    """
    configure(
        logs_dir=app.config.get('LOGS_DIR'),
        enabled=app.config.get('ENABLE_PROFILING', True)
    )
    if not is_enabled():
        return

    from flask import g, request

    @app.before_request
    def _start_timer():
        g.profiling_start = time.perf_counter()

    @app.after_request
    def _record(response):
        start = g.pop('profiling_start', None)
        if start is None:
            return response

        elapsed = (time.perf_counter() - start) * 1000
        rule = str(request.url_rule) if request.url_rule else request.path
        record_request(
            request.method,
            request.path,
            rule,
            elapsed,
            response.status_code,
            request.headers.get('X-User-Id')
        )
        return response


# ═══════════════════════════════════════════════════════════════════════════
# OPERACIONES
# ═══════════════════════════════════════════════════════════════════════════

def profile_function(func=None, name=None):
    """
    Decorador que mide una operación.

    Uso:
        @profile_function
        def sweep(...): ...

        @profile_function(name="Aprobar solicitud")
        def approve(...): ...

    Cuenta llamadas, errores, tiempo medio y máximo. Las llamadas que
    superan los umbrales van a slow_functions.log.
    """
    def decorator(fn):
        func_name = name or fn.__name__

        @wraps(fn)
        def wrapper(*args, **kwargs):
            if not is_enabled():
                return fn(*args, **kwargs)

            start = time.perf_counter()
            failed = True
            try:
                result = fn(*args, **kwargs)
                failed = False
                return result
            finally:
                elapsed = (time.perf_counter() - start) * 1000
                _accumulate(_function_stats, func_name, elapsed, failed)
                level = classify(elapsed)
                if level:
                    _write_line(SLOW_FUNCTIONS_LOG, level, f"{elapsed:.0f} ms", func_name)

        return wrapper

    if func is not None:
        return decorator(func)
    return decorator


# ═══════════════════════════════════════════════════════════════════════════
# REPORTES
# ═══════════════════════════════════════════════════════════════════════════

def get_function_stats():
    """
    Returns:
        dict: {operación: {calls, errors, avg_time, max_time}}
    """
    return _snapshot(_function_stats)


def get_route_stats():
    """
    Returns:
        dict: {nombre de ruta: {calls, errors, avg_time, max_time}}
    """
    return _snapshot(_route_stats)


def reset_stats():
    with _stats_lock:
        _function_stats.clear()
        _route_stats.clear()


def get_log_summary():
    """
    Estado de los archivos de log.

    Returns:
        dict: {performance|slow_routes|slow_functions: {exists, size_kb}}
    """
    summary = {}
    for key, filename in (('performance', PERFORMANCE_LOG),
                          ('slow_routes', SLOW_ROUTES_LOG),
                          ('slow_functions', SLOW_FUNCTIONS_LOG)):
        path = _log_path(filename)
        exists = os.path.exists(path)
        summary[key] = {
            'exists': exists,
            'size_kb': round(os.path.getsize(path) / 1024, 2) if exists else 0,
        }
    return summary


__all__ = [
    'configure',
    'is_enabled',
    'classify',
    'init_profiling',
    'record_request',
    'profile_function',
    'get_function_stats',
    'get_route_stats',
    'reset_stats',
    'get_log_summary',
]
