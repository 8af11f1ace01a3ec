from __future__ import annotations

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Query

pytestmark = pytest.mark.integration

from aibos.core.audit.models import AuditChainHead, AuditLog
from aibos.core.audit.services import GENESIS_HASH, list_entries, record_audit, verify_chain
from aibos.extensions import db
from aibos.tests.factories import bearer, build_books, journal_payload, login, member


def _record(books, action: str, **details):
    entry = record_audit(
        action,
        "journal",
        1,
        tenant_id=books.tenant.id,
        user_id=books.owner.id,
        details=details,
    )
    db.session.commit()
    return entry


def test_entries_chain_to_previous_hash(app, books):
    first = _record(books, "journal.created", amount="10.00")
    second = _record(books, "journal.posted")

    assert second.prev_hash == first.entry_hash
    assert len(second.entry_hash) == 64
    result = verify_chain(books.tenant.id)
    assert result["valid"] is True
    assert result["broken_at"] is None
    assert result["checked"] == AuditLog.query.filter_by(tenant_id=books.tenant.id).count()


def test_each_tenant_has_its_own_chain(app, books):
    other = build_books(email="other@example.com", tenant_name="Other", company_code="OTH")

    heads = {}
    for tenant_id in (books.tenant.id, other.tenant.id):
        heads[tenant_id] = AuditLog.query.filter_by(tenant_id=tenant_id).order_by(AuditLog.id).first()

    assert heads[books.tenant.id].prev_hash == GENESIS_HASH
    assert heads[other.tenant.id].prev_hash == GENESIS_HASH
    assert verify_chain(books.tenant.id)["valid"] is True
    assert verify_chain(other.tenant.id)["valid"] is True


@pytest.mark.parametrize(
    "statement",
    [
        "UPDATE audit_log SET action = 'journal.deleted' WHERE id = :id",
        "UPDATE audit_log SET details = '{\"amount\": \"99.00\"}' WHERE id = :id",
    ],
)
def test_tampering_breaks_the_chain(app, books, statement):
    tampered = _record(books, "journal.created", amount="10.00")
    _record(books, "journal.posted")
    tampered_id = tampered.id

    db.session.execute(text(statement), {"id": tampered_id})
    db.session.commit()
    db.session.expire_all()

    result = verify_chain(books.tenant.id)
    assert result["valid"] is False
    assert result["broken_at"] == tampered_id


def test_deleting_an_entry_breaks_the_chain(app, books):
    _record(books, "journal.created")
    removed = _record(books, "journal.posted")
    follower = _record(books, "journal.reversed")
    follower_id = follower.id

    db.session.execute(text("DELETE FROM audit_log WHERE id = :id"), {"id": removed.id})
    db.session.commit()
    db.session.expire_all()

    assert verify_chain(books.tenant.id)["broken_at"] == follower_id


def test_list_entries_filters(app, books):
    _record(books, "journal.created")
    _record(books, "journal.posted")

    posted = list_entries(books.tenant.id, action="journal.posted").all()
    assert [e.action for e in posted] == ["journal.posted"]
    newest_first = list_entries(books.tenant.id, resource="journal").all()
    assert newest_first[0].action == "journal.posted"


def test_rolled_back_change_leaves_no_entry(app, books):
    before = AuditLog.query.count()
    record_audit("journal.created", "journal", 5, tenant_id=books.tenant.id, user_id=books.owner.id)
    db.session.rollback()

    assert AuditLog.query.count() == before


def _head(books) -> AuditChainHead:
    return db.session.get(AuditChainHead, f"tenant:{books.tenant.id}")


def test_chain_head_follows_the_newest_entry(app, books):
    _record(books, "journal.created")
    second = _record(books, "journal.posted")

    head = _head(books)
    assert head.last_entry_id == second.id
    assert head.last_hash == second.entry_hash


def test_chain_head_is_row_locked_while_appending(app, books, monkeypatch):
    locked = []
    original_with_for_update = Query.with_for_update

    def _wrapped_with_for_update(self, *args, **kwargs):
        locked.append(self.column_descriptions[0]["entity"])
        return original_with_for_update(self, *args, **kwargs)

    monkeypatch.setattr(Query, "with_for_update", _wrapped_with_for_update)

    _record(books, "journal.created")

    assert AuditChainHead in locked


def test_missing_chain_head_is_rebuilt_from_the_newest_entry(app, books):
    _record(books, "journal.created")
    latest = _record(books, "journal.posted")
    db.session.execute(text("DELETE FROM audit_chain_head"))
    db.session.commit()
    db.session.expire_all()

    follower = _record(books, "journal.reversed")

    assert follower.prev_hash == latest.entry_hash
    assert verify_chain(books.tenant.id)["valid"] is True


def test_rolled_back_entry_does_not_move_the_head(app, books):
    kept = _record(books, "journal.created")
    record_audit("journal.posted", "journal", 1, tenant_id=books.tenant.id, user_id=books.owner.id)
    db.session.rollback()

    follower = _record(books, "journal.reversed")

    assert follower.prev_hash == kept.entry_hash
    assert verify_chain(books.tenant.id)["valid"] is True


def test_audit_endpoints(client, books, owner_headers):
    cash, sales = books.accounts["1000"], books.accounts["4000"]
    client.post("/api/v1/journals", json=journal_payload(cash, sales, post=True), headers=owner_headers)

    listing = client.get("/api/v1/audit?resource=journal", headers=owner_headers)
    assert listing.status_code == 200
    actions = {entry["action"] for entry in listing.get_json()["entries"]}
    assert {"journal.created", "journal.posted"} <= actions
    entry = listing.get_json()["entries"][0]
    assert entry["user_id"] == books.owner.id

    detail = client.get(f"/api/v1/audit/{entry['id']}", headers=owner_headers)
    assert detail.get_json()["entry"]["entry_hash"] == entry["entry_hash"]

    verify = client.get("/api/v1/audit/verify", headers=owner_headers)
    assert verify.get_json()["valid"] is True

    member(books, "viewer@example.com", "viewer")
    viewer = bearer(login(client, "viewer@example.com", company_id=books.company.id)["access_token"])
    forbidden = client.get("/api/v1/audit", headers=viewer)
    assert forbidden.status_code == 403
    assert forbidden.get_json()["details"]["missing"] == ["audit:view"]


def test_audit_entries_are_tenant_private(client, books, owner_headers):
    other = build_books(email="other@example.com", tenant_name="Other", company_code="OTH")
    foreign = AuditLog.query.filter_by(tenant_id=other.tenant.id).first()

    resp = client.get(f"/api/v1/audit/{foreign.id}", headers=owner_headers)
    assert resp.status_code == 404
