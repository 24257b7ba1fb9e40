# -*- coding: utf-8 -*-
"""
Configuración, almacenamiento JSON y profiling.
"""
import json
import os
from dataclasses import replace

import pytest

from app_inventory import performance_logger
from app_inventory.config import load_config
from app_inventory.errors import PersistenceError, ValidationError
from app_inventory.models import Item, ItemStatus
from app_inventory.repositories import ItemRepository
from app_inventory.tests.conftest import as_user, create_borrow


# ==============================================================================
# CONFIGURACIÓN
# ==============================================================================

def test_config_defaults(monkeypatch):
    for name in ('INVENTORY_DATA_DIR', 'INVENTORY_ENABLE_PROFILING',
                 'INVENTORY_AUDIT_RETENTION_DAYS', 'INVENTORY_LOG_LEVEL'):
        monkeypatch.delenv(name, raising=False)
    config = load_config()
    assert config['AUDIT_RETENTION_DAYS'] == 365
    assert config['OVERDUE_CHECK_ON_READ'] is True
    assert config['LOG_LEVEL'] == 'INFO'
    assert config['DATA_DIR'].endswith('data')


def test_config_env_and_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv('INVENTORY_DATA_DIR', str(tmp_path))
    monkeypatch.setenv('INVENTORY_ENABLE_PROFILING', 'no')
    monkeypatch.setenv('INVENTORY_AUDIT_RETENTION_DAYS', '90')
    monkeypatch.setenv('INVENTORY_LOG_LEVEL', 'debug')

    config = load_config({'AUDIT_RETENTION_DAYS': 7})
    assert config['DATA_DIR'] == str(tmp_path)
    assert config['ENABLE_PROFILING'] is False
    assert config['LOG_LEVEL'] == 'DEBUG'
    # overrides tienen la última palabra
    assert config['AUDIT_RETENTION_DAYS'] == 7


def test_config_bad_int_warns(monkeypatch, capsys):
    monkeypatch.setenv('INVENTORY_AUDIT_RETENTION_DAYS', 'un año')
    config = load_config()
    assert config['AUDIT_RETENTION_DAYS'] == 365
    assert 'ADVERTENCIA' in capsys.readouterr().out


def test_production_without_secret_warns(monkeypatch, capsys):
    monkeypatch.setenv('INVENTORY_PRODUCTION_MODE', '1')
    monkeypatch.delenv('INVENTORY_SECRET_KEY', raising=False)
    config = load_config()
    assert config['PRODUCTION_MODE'] is True
    assert config['SECRET_KEY']
    assert 'INVENTORY_SECRET_KEY' in capsys.readouterr().out


# ==============================================================================
# ALMACENAMIENTO
# ==============================================================================

def test_repository_creates_file(tmp_path):
    folder = tmp_path / 'nuevo'
    ItemRepository(str(folder))
    with open(folder / 'items.json', 'r', encoding='utf-8') as f:
        assert json.load(f) == {}


def test_corrupt_items_file(tmp_path):
    repo = ItemRepository(str(tmp_path))
    with open(repo.file_path, 'w', encoding='utf-8') as f:
        f.write('[[[')
    with pytest.raises(PersistenceError):
        repo.get_by_id('laptop-1')


def test_invalid_status_in_file_is_persistence_error(tmp_path):
    repo = ItemRepository(str(tmp_path))
    repo.save_all({'x': {'id': 'x', 'name': 'X', 'quantity': 1, 'store_id': 'A', 'status': 'Lost'}})
    with pytest.raises(PersistenceError):
        repo.get_by_id('x')


def test_no_temp_file_left_behind(container):
    container.item_repo.save(Item(id='tmp-check', name='Mouse', quantity=4, store_id='A'))
    assert not os.path.exists(container.item_repo.file_path + '.tmp')


def test_find_low_stock(container):
    container.item_repo.save(Item(id='cables', name='Cables', quantity=40, store_id='A'))
    container.item_repo.save(
        Item(id='broken', name='Monitor', quantity=1, store_id='A', status=ItemStatus.DAMAGED)
    )
    low = {item.id for item in container.item_repo.find_low_stock()}
    assert 'laptop-b' in low
    assert 'cables' not in low
    assert 'broken' not in low


def test_unit_of_work_restores_previous_records(container):
    item_repo = container.item_repo
    original = item_repo.get_by_id('laptop-1')

    with pytest.raises(RuntimeError):
        with item_repo.atomic() as uow:
            uow.save(item_repo, replace(original, quantity=0))
            uow.save(item_repo, Item(id='ghost', name='Fantasma', quantity=1, store_id='A'))
            raise RuntimeError('falla a mitad de camino')

    assert item_repo.get_by_id('laptop-1').quantity == original.quantity
    assert item_repo.get_by_id('ghost') is None


def test_unit_of_work_restores_deleted_record(container):
    item_repo = container.item_repo

    with pytest.raises(RuntimeError):
        with item_repo.atomic() as uow:
            uow.delete(item_repo, 'projector-1')
            assert item_repo.get_by_id('projector-1') is None
            raise RuntimeError('falla a mitad de camino')

    assert item_repo.get_by_id('projector-1').name == 'Proyector'


# ==============================================================================
# PROFILING
# ==============================================================================

def test_classify_thresholds():
    assert performance_logger.classify(10) is None
    assert performance_logger.classify(300) == 'WARNING'
    assert performance_logger.classify(700) == 'CRITICAL'


def test_profiled_operations_count_calls_and_errors(service):
    performance_logger.configure(enabled=True)

    create_borrow(service)
    with pytest.raises(ValidationError):
        create_borrow(service, quantity=99)

    stats = performance_logger.get_function_stats()
    created = stats['Crear solicitud']
    assert created['calls'] == 2
    assert created['errors'] == 1
    assert created['max_time'] >= created['avg_time'] >= 0


def test_disabled_profiling_records_nothing(service):
    create_borrow(service)
    assert performance_logger.get_function_stats() == {}


def test_record_request_writes_logs(tmp_path):
    performance_logger.configure(logs_dir=str(tmp_path / 'perf'), enabled=True)

    performance_logger.record_request(
        'PUT', '/transactions/abc/approve', '/transactions/<transaction_id>/approve',
        950, 200, 'u-keeper'
    )

    summary = performance_logger.get_log_summary()
    assert summary['performance']['exists']
    assert summary['slow_routes']['exists']
    assert not summary['slow_functions']['exists']

    with open(tmp_path / 'perf' / 'slow_routes.log', 'r', encoding='utf-8') as f:
        line = f.read()
    assert 'CRITICAL' in line and 'Aprobar solicitud' in line and 'u-keeper' in line

    routes = performance_logger.get_route_stats()
    assert routes['Aprobar solicitud']['calls'] == 1


def test_performance_endpoint(container, data_dir, tmp_path):
    from app_inventory.main import create_app

    app = create_app({
        'DATA_DIR': data_dir,
        'LOGS_DIR': str(tmp_path / 'logs-on'),
        'ENABLE_PROFILING': True,
        'TESTING': True,
    })
    with app.test_client() as client:
        assert client.get('/health').status_code == 200

        resp = client.get('/performance', headers=as_user('u-keeper'))
        assert resp.status_code == 403

        body = client.get('/performance', headers=as_user('u-admin')).get_json()
    assert body['enabled'] is True
    assert body['routes']['GET /health']['calls'] == 1
    assert body['logs']['performance']['exists']
