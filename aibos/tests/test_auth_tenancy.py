from __future__ import annotations

import pytest

pytestmark = pytest.mark.integration

from aibos.core.audit.models import AuditLog
from aibos.core.auth.models import JWTBlocklist
from aibos.core.tenancy.models import Membership
from aibos.core.tenancy.services import create_tenant
from aibos.core.utils.errors import DomainError
from aibos.extensions import db
from aibos.tests.factories import DEFAULT_PASSWORD, bearer, build_books, journal_payload, login, make_user, member


def _register(client, email="new@example.com", **fields):
    return client.post(
        "/api/v1/auth/register",
        json={"email": email, "password": DEFAULT_PASSWORD, "full_name": "New User", **fields},
    )


def test_register_with_tenant_issues_scoped_tokens(client, app):
    resp = _register(client, tenant_name="Wayne Enterprises")

    assert resp.status_code == 201, resp.get_json()
    body = resp.get_json()
    assert body["scope"]["role"] == "admin"
    assert body["scope"]["tenant_id"] is not None
    # No company yet, so the scope is tenant-wide.
    assert body["scope"]["company_id"] is None
    assert body["user"]["memberships"][0]["tenant_name"] == "Wayne Enterprises"
    assert body["refresh_token"]


def test_register_without_tenant_then_open_one(client, app):
    resp = _register(client)
    body = resp.get_json()
    assert resp.status_code == 201
    assert body["scope"] == {}
    headers = bearer(body["access_token"])

    blocked = client.get("/api/v1/companies", headers=headers)
    assert blocked.status_code == 403
    assert blocked.get_json()["error"] == "tenant_required"

    opened = client.post("/api/v1/tenants", json={"name": "Stark Industries"}, headers=headers)
    assert opened.status_code == 201
    assert opened.get_json()["tenant"]["slug"] == "stark-industries"
    scoped = bearer(opened.get_json()["access_token"])

    company = client.post(
        "/api/v1/companies",
        json={"code": "stk", "name": "Stark US", "base_currency": "usd", "seed_chart": True},
        headers=scoped,
    )
    assert company.status_code == 201, company.get_json()
    assert company.get_json()["company"]["code"] == "STK"
    assert company.get_json()["accounts_seeded"] > 20


def test_duplicate_registration_conflicts(client, app):
    _register(client)
    again = _register(client, email="NEW@example.com")

    assert again.status_code == 409
    assert again.get_json()["error"] == "email_already_exists"


def test_failed_login_is_audited_on_system_chain(client, books):
    resp = client.post("/api/v1/auth/login", json={"email": books.owner.email, "password": "wrong-password"})

    assert resp.status_code == 401
    assert resp.get_json()["error"] == "invalid_credentials"
    entry = AuditLog.query.filter_by(action="auth.login", outcome="failure").one()
    assert entry.tenant_id is None
    assert entry.details["email"] == books.owner.email


def test_login_resolves_company_scope(client, books):
    body = login(client, books.owner.email)

    assert body["scope"] == {"tenant_id": books.tenant.id, "company_id": books.company.id, "role": "admin"}
    success = AuditLog.query.filter_by(action="auth.login", outcome="success").one()
    assert success.tenant_id == books.tenant.id


def test_refresh_and_logout(client, books):
    tokens = login(client, books.owner.email, company_id=books.company.id)
    refresh_headers = bearer(tokens["refresh_token"])

    refreshed = client.post("/api/v1/auth/refresh", headers=refresh_headers)
    assert refreshed.status_code == 200
    assert refreshed.get_json()["scope"]["company_id"] == books.company.id

    # Access tokens cannot refresh.
    wrong_kind = client.post("/api/v1/auth/refresh", headers=bearer(tokens["access_token"]))
    assert wrong_kind.status_code == 401

    logout = client.post("/api/v1/auth/logout", headers=refresh_headers)
    assert logout.status_code == 200
    assert JWTBlocklist.query.count() == 1

    revoked = client.post("/api/v1/auth/refresh", headers=refresh_headers)
    assert revoked.status_code == 401
    assert revoked.get_json()["error"] == "unauthorized"


def test_refresh_rechecks_membership(client, books):
    member(books, "clerk@example.com", "clerk")
    tokens = login(client, "clerk@example.com", company_id=books.company.id)

    Membership.query.filter_by(company_id=books.company.id, role="clerk").delete()
    db.session.commit()

    resp = client.post("/api/v1/auth/refresh", headers=bearer(tokens["refresh_token"]))
    assert resp.status_code == 403
    assert resp.get_json()["error"] == "forbidden"

    # The old access token no longer maps to a membership either.
    stale = client.get("/api/v1/journals", headers=bearer(tokens["access_token"]))
    assert stale.status_code == 403


def test_me_returns_user_and_scope(client, books, owner_headers):
    resp = client.get("/api/v1/auth/me", headers=owner_headers)

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["user"]["email"] == books.owner.email
    assert body["scope"]["role"] == "admin"
    assert body["csrf_token"]

    anonymous = client.get("/api/v1/auth/me")
    assert anonymous.status_code == 401


def test_switch_company_within_tenant(client, books, owner_headers):
    created = client.post(
        "/api/v1/companies",
        json={"code": "ACME-EU", "name": "Acme Europe", "base_currency": "EUR", "fiscal_year_end": "06-30"},
        headers=owner_headers,
    )
    assert created.status_code == 201
    second = created.get_json()["company"]

    switched = client.post("/api/v1/auth/switch", json={"company_id": second["id"]}, headers=owner_headers)
    assert switched.status_code == 200
    assert switched.get_json()["scope"]["company_id"] == second["id"]

    eu_headers = bearer(switched.get_json()["access_token"])
    me = client.get("/api/v1/auth/me", headers=eu_headers)
    assert me.get_json()["scope"]["company_id"] == second["id"]

    listing = client.get("/api/v1/companies", headers=eu_headers)
    assert [c["code"] for c in listing.get_json()["companies"]] == ["ACME", "ACME-EU"]


def test_cannot_switch_into_another_tenant(client, books, owner_headers):
    other = build_books(email="rival@example.com", tenant_name="Rival", company_code="RIV")

    resp = client.post("/api/v1/auth/switch", json={"company_id": other.company.id}, headers=owner_headers)
    assert resp.status_code == 403
    assert resp.get_json()["error"] == "forbidden"

    foreign = client.get(f"/api/v1/companies/{other.company.id}", headers=owner_headers)
    assert foreign.status_code == 404


def test_company_validation(client, books, owner_headers):
    bad_year_end = client.post(
        "/api/v1/companies",
        json={"code": "X1", "name": "Bad", "base_currency": "USD", "fiscal_year_end": "06-15"},
        headers=owner_headers,
    )
    assert bad_year_end.status_code == 400
    assert bad_year_end.get_json()["error"] == "validation_error"

    bad_currency = client.post(
        "/api/v1/companies",
        json={"code": "X2", "name": "Bad", "base_currency": "ZZZ"},
        headers=owner_headers,
    )
    assert bad_currency.status_code == 400
    assert bad_currency.get_json()["error"] == "invalid_currency"

    duplicate = client.post(
        "/api/v1/companies",
        json={"code": "acme", "name": "Again", "base_currency": "USD"},
        headers=owner_headers,
    )
    assert duplicate.status_code == 409


def test_company_policy_update(client, books, owner_headers):
    resp = client.patch(
        f"/api/v1/companies/{books.company.id}",
        json={"approval_threshold": "2500.00", "name": "Acme Renamed"},
        headers=owner_headers,
    )
    assert resp.status_code == 200
    company = resp.get_json()["company"]
    assert company["name"] == "Acme Renamed"
    assert company["approval_threshold"] == "2500.00"

    cleared = client.patch(
        f"/api/v1/companies/{books.company.id}", json={"clear_threshold": True}, headers=owner_headers
    )
    assert cleared.get_json()["company"]["approval_threshold"] is None
    assert AuditLog.query.filter_by(action="company.policy_updated").count() == 2


def test_members_endpoint(client, books, owner_headers):
    make_user("analyst@example.com")

    resp = client.post(
        "/api/v1/members",
        json={"email": "analyst@example.com", "role": "viewer", "company_id": books.company.id},
        headers=owner_headers,
    )
    assert resp.status_code == 201
    assert resp.get_json()["membership"]["role"] == "viewer"

    analyst = bearer(login(client, "analyst@example.com")["access_token"])
    denied = client.post(
        "/api/v1/members",
        json={"email": books.owner.email, "role": "viewer"},
        headers=analyst,
    )
    assert denied.status_code == 403
    assert denied.get_json()["details"]["missing"] == ["company:manage"]

    unknown = client.post(
        "/api/v1/members", json={"email": "ghost@example.com", "role": "viewer"}, headers=owner_headers
    )
    assert unknown.status_code == 404


def test_garbage_token_is_unauthorized(client, books):
    resp = client.get("/api/v1/journals", headers=bearer("not-a-jwt"))
    assert resp.status_code == 401
    assert resp.get_json()["error"] == "unauthorized"


def test_explicit_tenant_slug_must_be_free(client, books, app):
    founder = make_user("founder@example.com")

    with pytest.raises(DomainError) as exc:
        create_tenant(founder, "Acme Again", slug="Acme Holdings")
    assert exc.value.code == "slug_taken"

    assert create_tenant(founder, "Acme Holdings").slug == "acme-holdings-2"

    headers = bearer(login(client, "founder@example.com")["access_token"])
    taken = client.post("/api/v1/tenants", json={"name": "Acme Three", "slug": "acme-holdings"}, headers=headers)
    assert taken.status_code == 409
    assert taken.get_json()["error"] == "slug_taken"


def test_csrf_check_applies_to_cookie_tokens_only(client, books, app):
    app.config["WTF_CSRF_ENABLED"] = True
    body = login(client, books.owner.email, company_id=books.company.id)
    cash, sales = books.accounts["1000"], books.accounts["4000"]

    with_bearer = client.post(
        "/api/v1/journals", json=journal_payload(cash, sales), headers=bearer(body["access_token"])
    )
    assert with_bearer.status_code == 201, with_bearer.get_json()

    client.set_cookie("access_token_cookie", body["access_token"])
    missing = client.post("/api/v1/journals", json=journal_payload(cash, sales))
    assert missing.status_code == 403
    assert missing.get_json()["error"] == "csrf_failed"

    forged = client.post("/api/v1/journals", json=journal_payload(cash, sales), headers={"X-CSRF-Token": "0" * 64})
    assert forged.status_code == 403

    accepted = client.post(
        "/api/v1/journals", json=journal_payload(cash, sales), headers={"X-CSRF-Token": body["csrf_token"]}
    )
    assert accepted.status_code == 201, accepted.get_json()
