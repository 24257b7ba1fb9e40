# -*- coding: utf-8 -*-
"""
Fixtures compartidas: carpeta de datos temporal, usuarios e ítems sembrados.
"""
from datetime import datetime, timedelta, timezone

import pytest

from app_inventory import performance_logger
from app_inventory.app_container import AppContainer, get_container
from app_inventory.models import Item, User, UserRole

# Momento fijo para que los vencimientos sean reproducibles
NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

USERS = [
    User(id='u-admin', name='Ana', role=UserRole.ADMIN),
    User(id='u-keeper', name='Kevin', role=UserRole.STORE_KEEPER),
    User(id='u-emp', name='Luis', role=UserRole.EMPLOYEE),
    User(id='u-emp2', name='Marta', role=UserRole.EMPLOYEE),
    User(id='u-driver', name='Dora', role=UserRole.DELIVERY_STAFF),
]


def seed_items():
    return [
        Item(id='laptop-1', name='Laptop', quantity=3, store_id='A', category_id='it'),
        Item(id='projector-1', name='Proyector', quantity=1, store_id='A', category_id='av'),
        Item(id='camera-1', name='Cámara', quantity=2, store_id='B', category_id='av'),
        Item(id='laptop-b', name='Laptop', quantity=1, store_id='B', category_id='it'),
    ]


@pytest.fixture(autouse=True)
def _quiet_profiling(tmp_path):
    performance_logger.configure(logs_dir=str(tmp_path / 'logs'), enabled=False)
    performance_logger.reset_stats()
    yield
    performance_logger.reset_stats()


@pytest.fixture
def data_dir(tmp_path):
    return str(tmp_path / 'data')


@pytest.fixture
def container(data_dir):
    AppContainer.reset_instance()
    c = get_container(data_dir)
    for user in USERS:
        c.user_repo.save(user)
    for item in seed_items():
        c.item_repo.save(item)
    yield c
    AppContainer.reset_instance()


@pytest.fixture
def service(container):
    return container.transaction_service


@pytest.fixture
def machine(container):
    return container.state_machine


@pytest.fixture
def app(container, data_dir, tmp_path):
    from app_inventory.main import create_app

    app = create_app({
        'DATA_DIR': data_dir,
        'LOGS_DIR': str(tmp_path / 'logs'),
        'ENABLE_PROFILING': False,
        'TESTING': True,
    })
    return app


@pytest.fixture
def client(app):
    with app.test_client() as c:
        yield c


def as_user(user_id):
    """Cabeceras para actuar como un usuario."""
    return {'X-User-Id': user_id}


def create_borrow(service, actor='u-emp', item_id='laptop-1', quantity=1, days=7, now=NOW):
    """Crea un préstamo Pending con vencimiento a `days` días."""
    return service.create_transaction(
        actor,
        item_id=item_id,
        type='Borrow',
        quantity=quantity,
        due_date=now + timedelta(days=days),
        now=now
    )


def approved_borrow(service, **kwargs):
    tx = create_borrow(service, **kwargs)
    return service.approve(tx.id, 'u-keeper', now=kwargs.get('now', NOW))
