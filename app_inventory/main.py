# ==============================================================================
# API HTTP - Flask
# ==============================================================================
# Las rutas solo traducen:
#   request JSON / query string → llamada a TransactionService
#   resultado                   → {"ok": true, ...}
#   InventoryError              → {"ok": false, "error", "code", ...} + status
#
# El actor se identifica con la cabecera X-User-Id.
# ==============================================================================

import logging
from typing import Any, Dict, Mapping, Optional

from flask import Blueprint, Flask, current_app, request
from werkzeug.exceptions import HTTPException

from app_inventory.app_container import AppContainer, get_container
from app_inventory.config import load_config
from app_inventory.errors import InventoryError, ValidationError
from app_inventory.models import Transaction
from app_inventory import performance_logger
from app_inventory.performance_logger import init_profiling
from app_inventory.timeutils import parse_datetime, utc_now


logger = logging.getLogger(__name__)

api = Blueprint('api', __name__)


# ═══════════════════════════════════════════════════════════════════════════
# HELPERS DE REQUEST
# ═══════════════════════════════════════════════════════════════════════════

def _container() -> AppContainer:
    return current_app.extensions['inventory']


def _service():
    return _container().transaction_service


def _actor_id() -> str:
    """Usuario que actúa; debe existir."""
    actor_id = request.headers.get('X-User-Id') or None
    _container().authorization.get_actor(actor_id)
    return actor_id


def _body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('El cuerpo debe ser un objeto JSON')
    return data


def _query_int(name: str, default: int, minimum: int = 0) -> int:
    raw = request.args.get(name)
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f'{name} debe ser un entero', field=name) from None
    if value < minimum:
        raise ValidationError(f'{name} debe ser >= {minimum}', field=name)
    return value


def _query_datetime(name: str):
    try:
        return parse_datetime(request.args.get(name) or None)
    except ValueError:
        raise ValidationError(f'Fecha inválida en {name}', field=name) from None


def _transaction_json(transaction: Transaction) -> Dict[str, Any]:
    data = transaction.to_dict()
    now = utc_now()
    data['overdue_days'] = transaction.overdue_days(now)
    data['days_until_due'] = transaction.days_until_due(now)
    return data


# ═══════════════════════════════════════════════════════════════════════════
# TRANSACCIONES
# ═══════════════════════════════════════════════════════════════════════════

@api.route('/transactions', methods=['POST'])
def create_transaction():
    """Crea una solicitud (Borrow, Return, Transfer o Purchase)."""
    actor_id = _actor_id()
    data = _body()
    transaction = _service().create_transaction(
        actor_id,
        item_id=data.get('item_id'),
        type=data.get('type'),
        quantity=data.get('quantity'),
        from_store_id=data.get('from_store_id'),
        to_store_id=data.get('to_store_id'),
        due_date=data.get('due_date'),
        notes=data.get('notes'),
        condition=data.get('condition')
    )
    return {'ok': True, 'transaction': _transaction_json(transaction)}, 201


@api.route('/transactions', methods=['GET'])
def list_transactions():
    actor_id = _actor_id()
    user_id = request.args.get('user_id')
    # Sin rol aprobador solo se ven las propias
    if not _container().authorization.can_approve(actor_id):
        user_id = actor_id

    limit = _query_int('limit', 50, minimum=1)
    offset = _query_int('offset', 0)
    transactions, total = _service().list_transactions(
        status=request.args.get('status'),
        type=request.args.get('type'),
        user_id=user_id,
        limit=limit,
        offset=offset
    )
    return {
        'ok': True,
        'transactions': [_transaction_json(t) for t in transactions],
        'total': total,
        'limit': limit,
        'offset': offset,
    }


@api.route('/transactions/overdue', methods=['GET'])
def list_overdue():
    _actor_id()
    overdue = _service().list_overdue()
    return {'ok': True, 'transactions': [_transaction_json(t) for t in overdue]}


@api.route('/transactions/pending', methods=['GET'])
def list_pending():
    _actor_id()
    pending = _service().list_pending(store_id=request.args.get('store_id'))
    return {'ok': True, 'transactions': [_transaction_json(t) for t in pending]}


@api.route('/transactions/overdue/sweep', methods=['POST'])
def run_overdue_sweep():
    changed = _service().run_overdue_sweep(actor_id=_actor_id())
    return {
        'ok': True,
        'reclassified': len(changed),
        'transactions': [_transaction_json(t) for t in changed],
    }


@api.route('/transactions/dashboard/stats', methods=['GET'])
def dashboard_stats():
    return {'ok': True, 'stats': _service().dashboard_stats(_actor_id())}


@api.route('/transactions/<transaction_id>', methods=['GET'])
def get_transaction(transaction_id):
    transaction = _service().get_transaction(transaction_id, actor_id=_actor_id())
    return {'ok': True, 'transaction': _transaction_json(transaction)}


@api.route('/transactions/<transaction_id>/approve', methods=['PUT'])
def approve_transaction(transaction_id):
    data = _body()
    transaction = _service().approve(
        transaction_id, _actor_id(), assignee_id=data.get('assignee_id')
    )
    return {'ok': True, 'transaction': _transaction_json(transaction)}


@api.route('/transactions/<transaction_id>/reject', methods=['PUT'])
def reject_transaction(transaction_id):
    data = _body()
    transaction = _service().reject(transaction_id, _actor_id(), data.get('reason'))
    return {'ok': True, 'transaction': _transaction_json(transaction)}


@api.route('/transactions/<transaction_id>/return', methods=['PUT'])
def return_transaction(transaction_id):
    data = _body()
    transaction = _service().process_return(
        transaction_id,
        _actor_id(),
        return_store_id=data.get('return_store_id'),
        condition=data.get('condition'),
        notes=data.get('notes')
    )
    return {'ok': True, 'transaction': _transaction_json(transaction)}


@api.route('/transactions/<transaction_id>/cancel', methods=['PUT'])
def cancel_transaction(transaction_id):
    data = _body()
    transaction = _service().cancel(transaction_id, _actor_id(), data.get('reason'))
    return {'ok': True, 'transaction': _transaction_json(transaction)}


@api.route('/transactions/<transaction_id>/complete', methods=['PUT'])
def complete_transaction(transaction_id):
    transaction = _service().complete(transaction_id, _actor_id())
    return {'ok': True, 'transaction': _transaction_json(transaction)}


# ═══════════════════════════════════════════════════════════════════════════
# ENTREGAS
# ═══════════════════════════════════════════════════════════════════════════

@api.route('/deliveries', methods=['GET'])
def list_deliveries():
    _actor_id()
    deliveries = _service().list_deliveries(
        status=request.args.get('status'),
        assigned_to=request.args.get('assigned_to')
    )
    return {'ok': True, 'deliveries': [d.to_dict() for d in deliveries]}


@api.route('/deliveries/stats', methods=['GET'])
def delivery_stats():
    _actor_id()
    return {'ok': True, 'stats': _service().delivery_stats()}


@api.route('/deliveries/<delivery_id>', methods=['GET'])
def get_delivery(delivery_id):
    _actor_id()
    return {'ok': True, 'delivery': _service().get_delivery(delivery_id).to_dict()}


@api.route('/deliveries/<delivery_id>/assign', methods=['PUT'])
def assign_delivery(delivery_id):
    data = _body()
    delivery = _service().assign_delivery(
        delivery_id,
        data.get('assignee_id'),
        _actor_id(),
        notes=data.get('notes')
    )
    return {'ok': True, 'delivery': delivery.to_dict()}


@api.route('/deliveries/<delivery_id>/pickup', methods=['PUT'])
def pickup_delivery(delivery_id):
    delivery = _service().pickup_delivery(delivery_id, _actor_id())
    return {'ok': True, 'delivery': delivery.to_dict()}


@api.route('/deliveries/<delivery_id>/deliver', methods=['PUT'])
def deliver(delivery_id):
    data = _body()
    delivery, transaction = _service().deliver(
        delivery_id, _actor_id(), notes=data.get('notes')
    )
    return {
        'ok': True,
        'delivery': delivery.to_dict(),
        'transaction': _transaction_json(transaction),
    }


# ═══════════════════════════════════════════════════════════════════════════
# DAÑOS
# ═══════════════════════════════════════════════════════════════════════════

def _damage_service():
    return _container().damage_service


@api.route('/damages', methods=['POST'])
def report_damage():
    """Reporte manual de daño (cualquier usuario)."""
    actor_id = _actor_id()
    data = _body()
    damage = _damage_service().report(
        actor_id,
        item_id=data.get('item_id'),
        description=data.get('description'),
        quantity_damaged=data.get('quantity_damaged', 1),
        severity=data.get('severity'),
        notes=data.get('notes'),
        transaction_id=data.get('transaction_id')
    )
    return {'ok': True, 'damage': damage.to_dict()}, 201


@api.route('/damages/my-reports', methods=['GET'])
def my_damage_reports():
    damages = _damage_service().my_reports(
        _actor_id(),
        status=request.args.get('status'),
        severity=request.args.get('severity')
    )
    return {'ok': True, 'damages': [d.to_dict() for d in damages]}


@api.route('/damages', methods=['GET'])
def list_damages():
    limit = _query_int('limit', 50, minimum=1)
    offset = _query_int('offset', 0)
    damages, total = _damage_service().list_damages(
        _actor_id(),
        status=request.args.get('status'),
        severity=request.args.get('severity'),
        store_id=request.args.get('store_id') or None,
        limit=limit,
        offset=offset
    )
    return {
        'ok': True,
        'damages': [d.to_dict() for d in damages],
        'total': total,
        'limit': limit,
        'offset': offset,
    }


@api.route('/damages/<damage_id>/status', methods=['PATCH'])
def update_damage_status(damage_id):
    data = _body()
    damage = _damage_service().update_status(
        damage_id, _actor_id(), data.get('status'), notes=data.get('notes')
    )
    return {'ok': True, 'damage': damage.to_dict()}


@api.route('/damages/stats', methods=['GET'])
def damage_stats():
    _actor_id()
    stats = _damage_service().statistics(request.args.get('store_id') or None)
    return {'ok': True, 'stats': stats}


# ═══════════════════════════════════════════════════════════════════════════
# AUDITORÍA (solo Admin)
# ═══════════════════════════════════════════════════════════════════════════

def _audit_service():
    actor_id = _actor_id()
    authorization = _container().authorization
    authorization.require(
        authorization.can_read_audit(actor_id),
        'Solo Admin puede consultar la auditoría'
    )
    return _container().audit_service


@api.route('/audit', methods=['GET'])
def audit_search():
    audit = _audit_service()
    limit = _query_int('limit', 100, minimum=1)
    offset = _query_int('offset', 0)
    entries, total = audit.search(
        actor_id=request.args.get('user_id') or None,
        action_type=request.args.get('action_type') or None,
        target_table=request.args.get('target_table') or None,
        start=_query_datetime('start'),
        end=_query_datetime('end'),
        limit=limit,
        offset=offset
    )
    return {
        'ok': True,
        'entries': [e.to_dict() for e in entries],
        'total': total,
        'limit': limit,
        'offset': offset,
    }


@api.route('/audit/stats', methods=['GET'])
def audit_stats():
    audit = _audit_service()
    stats = audit.statistics(period_days=_query_int('period_days', 30, minimum=1))
    return {'ok': True, 'stats': stats}


@api.route('/audit/integrity', methods=['GET'])
def audit_integrity():
    audit = _audit_service()
    report = audit.integrity_check(_container().user_repo.user_exists)
    return {'ok': True, 'integrity': report}


@api.route('/audit/report/<table>', methods=['GET'])
def audit_report(table):
    audit = _audit_service()
    report = audit.entity_report(
        table,
        start=_query_datetime('start'),
        end=_query_datetime('end'),
        action_type=request.args.get('action_type') or None
    )
    return {'ok': True, 'report': report}


@api.route('/audit/cleanup', methods=['POST'])
def audit_cleanup():
    audit = _audit_service()
    days = _body().get('days', current_app.config['AUDIT_RETENTION_DAYS'])
    removed = audit.cleanup(days)
    return {'ok': True, 'removed': removed, 'days': days}


# ═══════════════════════════════════════════════════════════════════════════
# NOTIFICACIONES, PROFILING Y SALUD
# ═══════════════════════════════════════════════════════════════════════════

@api.route('/notifications', methods=['GET'])
def list_notifications():
    notifications = _container().notification_service.for_user(_actor_id())
    return {'ok': True, 'notifications': [n.to_dict() for n in notifications]}


@api.route('/notifications/<notification_id>/read', methods=['PUT'])
def mark_notification_read(notification_id):
    notification = _container().notification_service.mark_read(notification_id, _actor_id())
    return {'ok': True, 'notification': notification.to_dict()}


@api.route('/performance', methods=['GET'])
def performance_report():
    """Contadores de profiling y estado de los archivos de log (solo Admin)."""
    _audit_service()
    return {
        'ok': True,
        'enabled': performance_logger.is_enabled(),
        'functions': performance_logger.get_function_stats(),
        'routes': performance_logger.get_route_stats(),
        'logs': performance_logger.get_log_summary(),
    }


@api.route('/health', methods=['GET'])
def health():
    return {'ok': True, 'status': 'healthy'}


# ═══════════════════════════════════════════════════════════════════════════
# MANEJO DE ERRORES
# ═══════════════════════════════════════════════════════════════════════════

def _register_error_handlers(app: Flask) -> None:

    @app.errorhandler(InventoryError)
    def _inventory_error(e: InventoryError):
        if e.http_status >= 500:
            logger.error("%s: %s", e.code, e)
        return e.to_dict(), e.http_status

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        code = (e.name or 'HTTP_ERROR').upper().replace(' ', '_')
        return {'ok': False, 'error': e.description, 'code': code}, e.code

    @app.errorhandler(Exception)
    def _unexpected_error(e: Exception):
        logger.exception("Error no controlado")
        return {'ok': False, 'error': 'Error interno del servidor', 'code': 'INTERNAL_ERROR'}, 500


# ═══════════════════════════════════════════════════════════════════════════
# APP FACTORY
# ═══════════════════════════════════════════════════════════════════════════

def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )
    logging.getLogger('app_inventory').setLevel(level)


def create_app(config_overrides: Optional[Mapping[str, Any]] = None) -> Flask:
    """
    Crea la aplicación Flask.

    Args:
        config_overrides: Valores de configuración con prioridad máxima

    Returns:
        App lista para servir (o para test_client)
    """
    app = Flask(__name__)
    app.config.update(load_config(config_overrides))
    app.json.sort_keys = False
    _configure_logging(app)

    container = get_container(app.config['DATA_DIR'], app.config['OVERDUE_CHECK_ON_READ'])
    if (container.data_dir, container.check_overdue_on_read) != (
        app.config['DATA_DIR'], app.config['OVERDUE_CHECK_ON_READ']
    ):
        AppContainer.reset_instance()
        container = get_container(app.config['DATA_DIR'], app.config['OVERDUE_CHECK_ON_READ'])
    app.extensions['inventory'] = container

    init_profiling(app)
    app.register_blueprint(api)
    _register_error_handlers(app)

    logger.info("App iniciada con datos en %s", container.data_dir)
    return app
