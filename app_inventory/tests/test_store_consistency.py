# -*- coding: utf-8 -*-
"""
Regla de tienda: lo prestado en A se devuelve en A.
"""
from datetime import timedelta

import pytest

from app_inventory.errors import NoOpenBorrowError, StoreMismatchError, ValidationError
from app_inventory.models import Transaction, TransactionStatus, TransactionType
from app_inventory.tests.conftest import NOW, approved_borrow, create_borrow


def test_borrow_approve_return_same_store(service, container):
    """Préstamo en A, aprobado por el encargado, devuelto en A."""
    tx = create_borrow(service)
    assert tx.status == TransactionStatus.PENDING

    tx = service.approve(tx.id, 'u-keeper', now=NOW)
    assert tx.status == TransactionStatus.APPROVED
    assert container.item_repo.get_by_id('laptop-1').quantity == 2

    tx = service.process_return(tx.id, 'u-emp', 'A', 'good', now=NOW + timedelta(days=3))
    assert tx.status == TransactionStatus.COMPLETED
    assert container.item_repo.get_by_id('laptop-1').quantity == 3


def test_return_to_other_store_raises_with_both_stores(service, container):
    tx = approved_borrow(service)
    with pytest.raises(StoreMismatchError) as exc:
        service.process_return(tx.id, 'u-emp', 'B', 'good', now=NOW)

    body = exc.value.to_dict()
    assert body['code'] == 'STORE_MISMATCH'
    assert body['expected_store_id'] == 'A'
    assert body['actual_store_id'] == 'B'
    assert container.transaction_repo.get_by_id(tx.id).status == TransactionStatus.APPROVED


def test_overdue_borrow_still_checked(service, machine, container):
    tx = approved_borrow(service)
    machine.mark_overdue(tx.id, now=NOW + timedelta(days=8))

    with pytest.raises(StoreMismatchError):
        service.process_return(tx.id, 'u-emp', 'B', 'good', now=NOW + timedelta(days=9))
    assert container.transaction_repo.get_by_id(tx.id).status == TransactionStatus.OVERDUE

    done = service.process_return(tx.id, 'u-emp', 'A', 'poor', now=NOW + timedelta(days=9))
    assert done.status == TransactionStatus.COMPLETED


def test_validate_return_without_store(container):
    with pytest.raises(ValidationError) as exc:
        container.store_validator.validate_return('laptop-1', 'u-emp', None)
    assert exc.value.field == 'return_store_id'


def test_validate_return_without_open_borrow(service, container):
    create_borrow(service)  # Pending: todavía no se puede devolver
    with pytest.raises(NoOpenBorrowError):
        container.store_validator.validate_return('laptop-1', 'u-emp', 'A')


def test_validate_return_finds_open_borrow(service, container):
    tx = approved_borrow(service)
    borrow = container.store_validator.validate_return('laptop-1', 'u-emp', 'A')
    assert borrow.id == tx.id


def test_transfers_are_exempt(container):
    transfer = Transaction(
        id='t-1', type=TransactionType.TRANSFER, user_id='u-keeper',
        item_id='laptop-1', quantity=1, status=TransactionStatus.APPROVED,
        from_store_id='A', to_store_id='B'
    )
    assert container.store_validator.is_exempt(transfer)
    container.store_validator.check(transfer, 'B')
