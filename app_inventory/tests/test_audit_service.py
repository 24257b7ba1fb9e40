# -*- coding: utf-8 -*-
"""
Auditoría: registro best-effort, búsqueda, reportes, integridad y retención.
"""
import json
import logging
import os
from datetime import timedelta

import pytest

from app_inventory.errors import PersistenceError, ValidationError
from app_inventory.models import AuditAction, TransactionStatus
from app_inventory.repositories import AuditRepository
from app_inventory.services import AuditService
from app_inventory.tests.conftest import NOW, approved_borrow, create_borrow


class FailingAuditRepository:
    """Doble de prueba: toda escritura falla."""

    def append_entry(self, entry):
        raise PersistenceError('audit.json no se puede escribir')

    def entries(self):
        return []


@pytest.fixture
def audit(tmp_path):
    return AuditService(AuditRepository(str(tmp_path / 'audit')))


def _seed(audit):
    audit.record('u-keeper', AuditAction.APPROVE, 'transactions', 't1', now=NOW - timedelta(days=40))
    audit.record('u-keeper', AuditAction.APPROVE, 'transactions', 't2', now=NOW - timedelta(days=2))
    audit.record('u-emp', AuditAction.BORROW, 'transactions', 't2', now=NOW - timedelta(days=3))
    audit.record('u-admin', AuditAction.UPDATE, 'items', 'laptop-1', now=NOW - timedelta(hours=1))
    audit.record(None, AuditAction.OVERDUE, 'transactions', 't3', now=NOW - timedelta(hours=2))


# ==============================================================================
# NO BLOQUEANTE
# ==============================================================================

def test_failing_audit_does_not_block_transitions(service, container, monkeypatch, caplog):
    monkeypatch.setattr(container.audit_service, 'audit_repo', FailingAuditRepository())

    with caplog.at_level(logging.ERROR, logger='app_inventory.services.audit_service'):
        tx = create_borrow(service)
        approved = service.approve(tx.id, 'u-keeper', now=NOW)
        returned = service.process_return(tx.id, 'u-emp', 'A', 'good', now=NOW)

        other = create_borrow(service, actor='u-emp2')
        rejected = service.reject(other.id, 'u-keeper', 'No disponible', now=NOW)

    assert approved.status == TransactionStatus.APPROVED
    assert returned.status == TransactionStatus.COMPLETED
    assert rejected.status == TransactionStatus.REJECTED
    assert container.item_repo.get_by_id('laptop-1').quantity == 3
    assert any('No se pudo registrar auditoría' in r.getMessage() for r in caplog.records)


def test_record_returns_none_on_failure():
    audit = AuditService(FailingAuditRepository())
    assert audit.record('u-admin', 'APPROVE', 'transactions', 't1') is None


# ==============================================================================
# REGISTRO Y BÚSQUEDA
# ==============================================================================

def test_record_persists_entry(audit):
    entry = audit.log_update(
        'u-admin', 'items', 'laptop-1', {'quantity': 3}, {'quantity': 2}
    )
    assert entry.action_type == 'UPDATE'

    stored = audit.audit_repo.get_by_id(entry.id)
    assert stored.old_value == {'quantity': 3}
    assert stored.new_value == {'quantity': 2}
    assert stored.timestamp is not None


def test_log_insert_and_delete(audit):
    created = audit.log_insert('u-admin', 'items', 'x', {'name': 'Laptop'})
    deleted = audit.log_delete('u-admin', 'items', 'x', {'name': 'Laptop'})
    assert created.action_type == 'INSERT' and created.old_value is None
    assert deleted.action_type == 'DELETE' and deleted.new_value is None


def test_search_filters(audit):
    _seed(audit)

    entries, total = audit.search(actor_id='u-keeper')
    assert total == 2
    assert [e.target_id for e in entries] == ['t2', 't1']

    _, total = audit.search(action_type='appr')
    assert total == 2

    entries, total = audit.search(target_table='ITEM')
    assert total == 1 and entries[0].target_id == 'laptop-1'

    _, total = audit.search(start=NOW - timedelta(days=5), end=NOW)
    assert total == 4


def test_search_pagination(audit):
    _seed(audit)
    page, total = audit.search(limit=2, offset=1)
    assert total == 5
    assert len(page) == 2
    assert page[0].target_id == 't3'


def test_recent_activity(audit):
    _seed(audit)
    recent = audit.get_recent_activity(NOW, hours=24)
    assert {e.target_id for e in recent} == {'laptop-1', 't3'}


# ==============================================================================
# REPORTES
# ==============================================================================

def test_statistics_by_period(audit):
    _seed(audit)
    stats = audit.statistics(period_days=30, now=NOW)
    assert stats['period'] == '30 days'
    assert stats['total_audits'] == 4
    assert stats['breakdown'][0]['count'] >= stats['breakdown'][-1]['count']
    assert {
        'action_type': 'APPROVE', 'target_table': 'transactions', 'count': 1
    } in stats['breakdown']


def test_entity_report(audit):
    _seed(audit)
    report = audit.entity_report('transactions')
    assert report['total'] == 4
    assert report['by_action'] == {'APPROVE': 2, 'BORROW': 1, 'OVERDUE': 1}
    assert report['by_user']['sistema'] == 1
    assert report['first_at'] < report['last_at']

    with pytest.raises(ValidationError):
        audit.entity_report('')


# ==============================================================================
# INTEGRIDAD Y RETENCIÓN
# ==============================================================================

def test_integrity_check_passes_for_known_users(audit):
    _seed(audit)
    result = audit.integrity_check(lambda uid: uid in ('u-keeper', 'u-emp', 'u-admin'), now=NOW)
    assert result['overall_status'] == 'PASS'
    assert result['issues'] == []


def test_integrity_check_flags_orphans_and_missing_timestamps(audit):
    _seed(audit)
    # Registro legacy sin fecha escrito directamente en el archivo
    raw = audit.audit_repo.get_all()
    raw.append({'id': 'legacy', 'user_id': 'u-admin', 'action_type': 'UPDATE',
                'target_table': 'items', 'target_id': 'x'})
    audit.audit_repo.save_all(raw)

    result = audit.integrity_check(lambda uid: uid in ('u-keeper', 'u-admin'), now=NOW)
    assert result['overall_status'] == 'FAIL'
    checks = {c['name']: c for c in result['checks']}
    assert checks['orphaned_users']['count'] == 1
    assert checks['missing_timestamps']['count'] == 1
    assert {i['entry_id'] for i in result['issues']} >= {'legacy'}


@pytest.mark.parametrize('days', [0, -3, '30', 1.5, True, None])
def test_cleanup_rejects_invalid_days(audit, days):
    with pytest.raises(ValidationError):
        audit.cleanup(days, now=NOW)


def test_cleanup_removes_old_entries(audit):
    _seed(audit)
    removed = audit.cleanup(30, now=NOW)
    assert removed == 1
    assert audit.audit_repo.count() == 4
    assert audit.cleanup(30, now=NOW) == 0


def test_corrupt_audit_file_is_persistence_error(tmp_path):
    folder = tmp_path / 'broken'
    os.makedirs(folder)
    with open(folder / 'audit.json', 'w', encoding='utf-8') as f:
        f.write('{no es json')

    repo = AuditRepository(str(folder))
    with pytest.raises(PersistenceError):
        repo.entries()


def test_unreadable_entries_are_skipped(audit):
    _seed(audit)
    raw = audit.audit_repo.get_all()
    raw.append({'user_id': 'u-admin'})  # sin id
    audit.audit_repo.save_all(raw)
    assert len(audit.audit_repo.entries()) == 5


def test_transitions_write_audit_file(service, container):
    approved_borrow(service)
    path = os.path.join(container.data_dir, 'audit.json')
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    assert {'BORROW', 'APPROVE', 'UPDATE'} <= {e['action_type'] for e in data}
