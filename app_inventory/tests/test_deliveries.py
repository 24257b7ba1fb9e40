# -*- coding: utf-8 -*-
"""
Transferencias entre tiendas: aprobación, entrega y llegada del stock.
"""
import pytest

from app_inventory.errors import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from app_inventory.models import DeliveryStatus, ItemStatus, TransactionStatus
from app_inventory.tests.conftest import NOW


def _transfer(service, item_id='laptop-1', quantity=1, to_store='B', approve=True, assignee=None):
    tx = service.create_transaction(
        'u-keeper', item_id=item_id, type='Transfer', quantity=quantity,
        from_store_id='A', to_store_id=to_store, now=NOW
    )
    if approve:
        tx = service.approve(tx.id, 'u-keeper', assignee_id=assignee, now=NOW)
    return tx


def _delivery_of(container, tx):
    return container.delivery_repo.get_by_transaction(tx.id)


def test_transfer_requires_two_different_stores(service):
    with pytest.raises(ValidationError):
        service.create_transaction(
            'u-keeper', item_id='laptop-1', type='Transfer', quantity=1,
            from_store_id='A', now=NOW
        )
    with pytest.raises(ValidationError):
        service.create_transaction(
            'u-keeper', item_id='laptop-1', type='Transfer', quantity=1,
            from_store_id='A', to_store_id='A', now=NOW
        )


def test_approval_creates_pending_delivery(service, container):
    tx = _transfer(service)
    delivery = _delivery_of(container, tx)
    assert delivery.status == DeliveryStatus.PENDING
    assert delivery.assigned_to is None
    assert delivery.from_store_id == 'A' and delivery.to_store_id == 'B'
    assert container.item_repo.get_by_id('laptop-1').quantity == 2


def test_approval_with_invalid_assignee(service, container):
    tx = _transfer(service, approve=False)
    with pytest.raises(ValidationError):
        service.approve(tx.id, 'u-keeper', assignee_id='u-emp', now=NOW)
    with pytest.raises(NotFoundError):
        service.approve(tx.id, 'u-keeper', assignee_id='u-ghost', now=NOW)
    assert container.transaction_repo.get_by_id(tx.id).status == TransactionStatus.PENDING


def test_full_delivery_lifecycle_lands_stock(service, container):
    tx = _transfer(service, quantity=2)
    delivery = _delivery_of(container, tx)

    assigned = service.assign_delivery(delivery.id, 'u-driver', 'u-keeper', notes='Turno tarde', now=NOW)
    assert assigned.assigned_to == 'u-driver'
    assert assigned.assigned_by == 'u-keeper'
    assert assigned.status == DeliveryStatus.PENDING

    picked = service.pickup_delivery(delivery.id, 'u-driver', now=NOW)
    assert picked.status == DeliveryStatus.IN_PROGRESS
    assert picked.pickup_time == NOW

    done, transaction = service.deliver(delivery.id, 'u-driver', now=NOW)
    assert done.status == DeliveryStatus.COMPLETED
    assert done.delivery_time == NOW
    assert transaction.status == TransactionStatus.COMPLETED

    assert container.item_repo.get_by_id('laptop-1').quantity == 1
    # Ya existía una Laptop de la misma categoría en B
    assert container.item_repo.get_by_id('laptop-b').quantity == 3

    assert [n.message for n in container.notification_service.for_user('u-driver')]


def test_transfer_creates_item_in_destination(service, container):
    tx = _transfer(service, item_id='projector-1', assignee='u-driver')
    assert container.item_repo.get_by_id('projector-1').status == ItemStatus.RESERVED

    delivery = _delivery_of(container, tx)
    service.pickup_delivery(delivery.id, 'u-driver', now=NOW)
    service.deliver(delivery.id, 'u-driver', now=NOW)

    landed = container.item_repo.find_in_store('B', 'Proyector', 'av')
    assert landed is not None and landed.quantity == 1
    source = container.item_repo.get_by_id('projector-1')
    assert source.quantity == 0
    assert source.status == ItemStatus.AVAILABLE


def test_delivery_steps_in_order(service, container):
    tx = _transfer(service)
    delivery = _delivery_of(container, tx)

    with pytest.raises(InvalidStateError):
        service.pickup_delivery(delivery.id, 'u-keeper', now=NOW)  # sin asignar
    with pytest.raises(InvalidStateError):
        service.deliver(delivery.id, 'u-keeper', now=NOW)

    service.assign_delivery(delivery.id, 'u-driver', 'u-keeper', now=NOW)
    service.pickup_delivery(delivery.id, 'u-driver', now=NOW)
    with pytest.raises(InvalidStateError):
        service.assign_delivery(delivery.id, 'u-driver', 'u-keeper', now=NOW)
    with pytest.raises(InvalidStateError):
        service.pickup_delivery(delivery.id, 'u-driver', now=NOW)


def test_only_assignee_handles_delivery(service, container):
    tx = _transfer(service, assignee='u-driver')
    delivery = _delivery_of(container, tx)

    with pytest.raises(AuthorizationError):
        service.assign_delivery(delivery.id, 'u-driver', 'u-emp', now=NOW)
    with pytest.raises(AuthorizationError):
        service.pickup_delivery(delivery.id, 'u-emp', now=NOW)
    assert service.pickup_delivery(delivery.id, 'u-driver', now=NOW).status == DeliveryStatus.IN_PROGRESS


def test_failed_completion_keeps_delivery_in_progress(service, container):
    tx = _transfer(service, assignee='u-driver')
    delivery = _delivery_of(container, tx)
    service.pickup_delivery(delivery.id, 'u-driver', now=NOW)

    # Otro proceso dejó la transferencia en un estado que no se puede completar
    current = container.transaction_repo.get_by_id(tx.id)
    container.transaction_repo.save(current.evolve(status=TransactionStatus.CANCELLED))

    with pytest.raises(InvalidStateError):
        service.deliver(delivery.id, 'u-driver', now=NOW)
    assert container.delivery_repo.get_by_id(delivery.id).status == DeliveryStatus.IN_PROGRESS


def test_cancel_transfer_only_before_pickup(service, container):
    tx = _transfer(service, assignee='u-driver')
    delivery = _delivery_of(container, tx)
    service.pickup_delivery(delivery.id, 'u-driver', now=NOW)

    with pytest.raises(InvalidStateError):
        service.cancel(tx.id, 'u-keeper', 'Ya no hace falta', now=NOW)


def test_cancel_pending_delivery_transfer_restores_stock(service, container):
    tx = _transfer(service, item_id='projector-1')
    service.cancel(tx.id, 'u-keeper', 'Error de carga', now=NOW)
    item = container.item_repo.get_by_id('projector-1')
    assert item.quantity == 1
    assert item.status == ItemStatus.AVAILABLE


def test_cancelled_transfer_leaves_no_delivery(service, container):
    tx = _transfer(service)
    delivery = _delivery_of(container, tx)

    service.cancel(tx.id, 'u-keeper', 'Error de carga', now=NOW)

    assert _delivery_of(container, tx) is None
    assert service.delivery_stats()['total'] == 0
    with pytest.raises(NotFoundError):
        service.assign_delivery(delivery.id, 'u-driver', 'u-keeper', now=NOW)

    history = container.audit_service.get_history('deliveries', delivery.id)
    assert history[-1].action_type == 'DELETE'
    assert history[-1].old_value['status'] == 'Pending'


def test_assign_requires_approved_transfer(service, container):
    tx = _transfer(service)
    delivery = _delivery_of(container, tx)

    # La transferencia cambió de estado sin pasar por la entrega
    current = container.transaction_repo.get_by_id(tx.id)
    container.transaction_repo.save(current.evolve(status=TransactionStatus.CANCELLED))

    with pytest.raises(InvalidStateError):
        service.assign_delivery(delivery.id, 'u-driver', 'u-keeper', now=NOW)
    assert container.delivery_repo.get_by_id(delivery.id).assigned_to is None


def test_delivery_queries(service, container):
    first = _transfer(service, assignee='u-driver')
    _transfer(service, item_id='projector-1')

    assert len(service.list_deliveries()) == 2
    mine = service.list_deliveries(assigned_to='u-driver')
    assert [d.transaction_id for d in mine] == [first.id]

    service.pickup_delivery(_delivery_of(container, first).id, 'u-driver', now=NOW)
    stats = service.delivery_stats()
    assert stats == {'Pending': 1, 'In-Progress': 1, 'Completed': 0, 'total': 2}

    with pytest.raises(ValidationError):
        service.list_deliveries(status='Shipped')
    with pytest.raises(NotFoundError):
        service.get_delivery('nope')


def test_delivery_updates_are_audited(service, container):
    tx = _transfer(service, assignee='u-driver')
    delivery = _delivery_of(container, tx)
    service.pickup_delivery(delivery.id, 'u-driver', now=NOW)

    history = container.audit_service.get_history('deliveries', delivery.id)
    assert [e.action_type for e in history] == ['DELIVERY_UPDATE', 'DELIVERY_UPDATE']
    assert history[-1].new_value['status'] == 'In-Progress'
