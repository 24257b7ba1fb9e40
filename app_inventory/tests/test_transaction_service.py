# -*- coding: utf-8 -*-
"""
Fachada: autorización, notificaciones, consultas y concurrencia.
"""
import threading
from datetime import timedelta

import pytest

from app_inventory.errors import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from app_inventory.models import NotificationType, TransactionStatus, TransactionType
from app_inventory.tests.conftest import NOW, approved_borrow, create_borrow


# ==============================================================================
# AUTORIZACIÓN
# ==============================================================================

def test_employee_cannot_approve_or_reject(service, container):
    tx = create_borrow(service)
    with pytest.raises(AuthorizationError):
        service.approve(tx.id, 'u-emp', now=NOW)
    with pytest.raises(AuthorizationError):
        service.reject(tx.id, 'u-driver', 'no', now=NOW)
    assert container.transaction_repo.get_by_id(tx.id).status == TransactionStatus.PENDING


def test_unknown_actor_cannot_create(service):
    with pytest.raises(AuthorizationError):
        create_borrow(service, actor='u-ghost')
    with pytest.raises(AuthorizationError):
        create_borrow(service, actor=None)


def test_cancel_by_requester_or_approver_only(service):
    tx = create_borrow(service)
    with pytest.raises(AuthorizationError):
        service.cancel(tx.id, 'u-emp2', 'no es mío', now=NOW)

    cancelled = service.cancel(tx.id, 'u-emp', 'cambio de planes', now=NOW)
    assert cancelled.status == TransactionStatus.CANCELLED

    other = create_borrow(service, actor='u-emp2')
    assert service.cancel(other.id, 'u-admin', 'inventario', now=NOW).cancelled_by == 'u-admin'


def test_return_by_other_employee_forbidden(service):
    tx = approved_borrow(service)
    with pytest.raises(AuthorizationError):
        service.process_return(tx.id, 'u-emp2', 'A', 'good', now=NOW)
    returned = service.process_return(tx.id, 'u-keeper', 'A', 'good', now=NOW)
    assert returned.status == TransactionStatus.COMPLETED


def test_complete_requires_approver(service):
    tx = service.create_transaction('u-emp', item_id='laptop-1', type='Purchase', quantity=1, now=NOW)
    service.approve(tx.id, 'u-keeper', now=NOW)
    with pytest.raises(AuthorizationError):
        service.complete(tx.id, 'u-emp', now=NOW)


def test_sweep_requires_approver(service):
    with pytest.raises(AuthorizationError):
        service.run_overdue_sweep('u-emp', now=NOW)
    assert service.run_overdue_sweep('u-keeper', now=NOW) == []


def test_missing_transaction(service):
    with pytest.raises(NotFoundError):
        service.get_transaction('nope', now=NOW)
    with pytest.raises(NotFoundError):
        service.cancel('nope', 'u-admin', 'x', now=NOW)


# ==============================================================================
# NOTIFICACIONES
# ==============================================================================

def test_requester_notified_on_approve_and_reject(service, container):
    first = create_borrow(service)
    service.approve(first.id, 'u-keeper', now=NOW)
    second = create_borrow(service, item_id='camera-1')
    service.reject(second.id, 'u-keeper', 'Reservada', now=NOW)

    notifications = container.notification_service.for_user('u-emp')
    types = sorted(n.type.value for n in notifications)
    assert types == ['error', 'success']
    rejected = [n for n in notifications if n.type == NotificationType.ERROR][0]
    assert 'Reservada' in rejected.message


def test_notification_failure_does_not_block(service, container, monkeypatch):
    def broken_save(entity):
        raise PersistenceError('notifications.json bloqueado')

    tx = create_borrow(service)
    monkeypatch.setattr(container.notification_repo, 'save', broken_save)
    approved = service.approve(tx.id, 'u-keeper', now=NOW)
    assert approved.status == TransactionStatus.APPROVED


# ==============================================================================
# CONSULTAS
# ==============================================================================

def test_list_transactions_filters_and_pages(service):
    create_borrow(service, now=NOW)
    create_borrow(service, actor='u-emp2', now=NOW + timedelta(minutes=1))
    service.create_transaction(
        'u-keeper', item_id='camera-1', type='Purchase', quantity=2,
        now=NOW + timedelta(minutes=2)
    )

    page, total = service.list_transactions(limit=2)
    assert total == 3
    assert [t.type for t in page] == [TransactionType.PURCHASE, TransactionType.BORROW]

    borrows, total = service.list_transactions(type='Borrow')
    assert total == 2

    mine, total = service.list_transactions(user_id='u-emp2')
    assert total == 1 and mine[0].user_id == 'u-emp2'

    _, total = service.list_transactions(status='Approved')
    assert total == 0

    with pytest.raises(ValidationError) as exc:
        service.list_transactions(status='approved')
    assert exc.value.field == 'status'


def test_list_pending_by_store(service):
    create_borrow(service)
    create_borrow(service, item_id='camera-1')
    assert len(service.list_pending()) == 2
    assert [t.item_id for t in service.list_pending(store_id='B')] == ['camera-1']


def test_list_overdue_sorted_by_due_date(service):
    a = approved_borrow(service, days=2)
    b = approved_borrow(service, item_id='camera-1', days=1)
    approved_borrow(service, item_id='projector-1', days=30)

    overdue = service.list_overdue(now=NOW + timedelta(days=5))
    assert [t.id for t in overdue] == [b.id, a.id]
    assert all(t.status == TransactionStatus.OVERDUE for t in overdue)


def test_dashboard_stats(service):
    active = approved_borrow(service)
    late = approved_borrow(service, item_id='camera-1', days=1)
    create_borrow(service, item_id='projector-1')
    done = approved_borrow(service, item_id='laptop-b', days=30)
    service.process_return(done.id, 'u-emp', 'B', 'good', now=NOW)

    stats = service.dashboard_stats('u-emp', now=NOW + timedelta(days=2))
    assert stats == {
        'active_borrows': 1,
        'overdue_items': 1,
        'pending_requests': 1,
        'completed_returns': 1,
    }
    assert active.id != late.id

    keeper = service.dashboard_stats('u-keeper', now=NOW + timedelta(days=2))
    assert keeper['pending_approvals'] == 1


# ==============================================================================
# CONCURRENCIA
# ==============================================================================

def test_concurrent_approvals_only_one_wins(service, container):
    tx = create_borrow(service, quantity=2)
    barrier = threading.Barrier(2)
    results, errors = [], []

    def approve(actor):
        barrier.wait()
        try:
            results.append(service.approve(tx.id, actor, now=NOW))
        except InvalidStateError as e:
            errors.append(e)

    threads = [threading.Thread(target=approve, args=(a,)) for a in ('u-keeper', 'u-admin')]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 1
    assert len(errors) == 1
    assert errors[0].current_status == 'Approved'
    assert container.item_repo.get_by_id('laptop-1').quantity == 1


def test_concurrent_returns_restore_once(service, container):
    tx = approved_borrow(service, quantity=2)
    barrier = threading.Barrier(3)
    outcomes = []

    def give_back():
        barrier.wait()
        try:
            service.process_return(tx.id, 'u-emp', 'A', 'good', now=NOW)
            outcomes.append('ok')
        except InvalidStateError:
            outcomes.append('conflict')

    threads = [threading.Thread(target=give_back) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ['conflict', 'conflict', 'ok']
    assert container.item_repo.get_by_id('laptop-1').quantity == 3
