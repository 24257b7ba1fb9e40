# -*- coding: utf-8 -*-
"""
Monitor de vencimientos: detección pura, persistencia e idempotencia.
"""
from datetime import timedelta

from app_inventory.models import NotificationType, Transaction, TransactionStatus, TransactionType
from app_inventory.services.overdue_monitor import detect_overdue, is_past_due, overdue_days
from app_inventory.tests.conftest import NOW, approved_borrow


def _approved(due_date, status=TransactionStatus.APPROVED):
    return Transaction(
        id='tx-1', type=TransactionType.BORROW, user_id='u-emp', item_id='laptop-1',
        quantity=1, status=status, from_store_id='A', due_date=due_date,
        created_at=NOW - timedelta(days=10), updated_at=NOW - timedelta(days=10)
    )


def test_past_due_borrow_becomes_overdue():
    tx = _approved(NOW - timedelta(days=1))
    result = detect_overdue(tx, NOW)
    assert result.status == TransactionStatus.OVERDUE
    assert result.updated_at == NOW
    assert overdue_days(result, NOW) == 1
    # La original no se modifica
    assert tx.status == TransactionStatus.APPROVED


def test_detection_is_idempotent():
    tx = _approved(NOW - timedelta(days=1))
    first = detect_overdue(tx, NOW)
    second = detect_overdue(first, NOW)
    assert second is first
    assert first.status == second.status == TransactionStatus.OVERDUE
    assert overdue_days(first, NOW) == overdue_days(second, NOW) == 1


def test_not_yet_due_returns_same_object():
    tx = _approved(NOW + timedelta(hours=1))
    assert detect_overdue(tx, NOW) is tx
    assert overdue_days(tx, NOW) == 0


def test_due_exactly_now_is_not_overdue():
    tx = _approved(NOW)
    assert not is_past_due(tx, NOW)


def test_no_due_date_never_overdue():
    tx = _approved(None)
    assert detect_overdue(tx, NOW) is tx
    assert overdue_days(tx, NOW) == 0


def test_overdue_days_round_up():
    tx = _approved(NOW - timedelta(days=2, hours=1))
    assert overdue_days(tx, NOW) == 3


def test_only_approved_are_reclassified():
    for status in (TransactionStatus.PENDING, TransactionStatus.COMPLETED,
                   TransactionStatus.CANCELLED, TransactionStatus.OVERDUE):
        tx = _approved(NOW - timedelta(days=5), status=status)
        assert detect_overdue(tx, NOW) is tx


def test_completed_has_zero_overdue_days():
    tx = _approved(NOW - timedelta(days=5), status=TransactionStatus.COMPLETED)
    assert overdue_days(tx, NOW) == 0


def test_sweep_persists_and_notifies(service, container):
    tx = approved_borrow(service, days=1)
    later = NOW + timedelta(days=3)

    changed = container.overdue_monitor.sweep(later)
    assert [t.id for t in changed] == [tx.id]
    assert container.transaction_repo.get_by_id(tx.id).status == TransactionStatus.OVERDUE

    warnings = [
        n for n in container.notification_service.for_user('u-emp')
        if n.type == NotificationType.WARNING
    ]
    assert len(warnings) == 1
    assert '2 día(s)' in warnings[0].message

    history = container.audit_service.get_history('transactions', tx.id)
    assert history[-1].action_type == 'OVERDUE'
    assert history[-1].user_id is None


def test_sweep_twice_changes_nothing_second_time(service, container):
    approved_borrow(service, days=1)
    later = NOW + timedelta(days=3)

    assert len(container.overdue_monitor.sweep(later)) == 1
    assert container.overdue_monitor.sweep(later) == []
    assert len(container.transaction_repo.find_by_status(TransactionStatus.OVERDUE)) == 1


def test_check_on_read(service, container):
    tx = approved_borrow(service, days=1)

    same = service.get_transaction(tx.id, now=NOW)
    assert same.status == TransactionStatus.APPROVED

    read = service.get_transaction(tx.id, now=NOW + timedelta(days=2))
    assert read.status == TransactionStatus.OVERDUE
    assert read.overdue_days(NOW + timedelta(days=2)) == 1


def test_check_after_concurrent_change_returns_current(service, container):
    tx = approved_borrow(service, days=1)
    stale = container.transaction_repo.get_by_id(tx.id)
    service.process_return(tx.id, 'u-emp', 'A', 'good', now=NOW + timedelta(hours=1))

    result = container.overdue_monitor.check(stale, NOW + timedelta(days=2))
    assert result.status == TransactionStatus.COMPLETED
