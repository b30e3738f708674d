from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest

from framecraft_identity.domain.errors import Forbidden, InvalidTenantOverride, TenantIsolationViolation
from framecraft_identity.security.tokens import AccessClaims
from framecraft_identity.tenancy.enforcer import IsolationEnforcer
from framecraft_identity.tenancy.scope import RequestScope, TenantContextResolver


def _customer(name: str, **extra) -> dict:
    now = datetime.now(timezone.utc)
    return {
        "customer_id": str(uuid.uuid4()),
        "name": name,
        "is_active": True,
        "created_at": now,
        "updated_at": now,
        **extra,
    }


def _claims(*, tenant_id: str | None = None, is_privileged: bool = False) -> AccessClaims:
    return AccessClaims(
        account_id=str(uuid.uuid4()),
        email="caller@example.com",
        display_name="caller",
        tenant_id=tenant_id,
        is_privileged=is_privileged,
    )


@pytest.fixture
def tenants(make_tenant):
    return make_tenant("alpha"), make_tenant("beta")


@pytest.fixture
def enforcer_for(rows):
    def _enforcer(tenant_id: str | None = None, *, privileged: bool = False, switch_to: str | None = None):
        scope = RequestScope(is_privileged=privileged, tenant_id=tenant_id)
        if switch_to:
            scope.switch_to(switch_to)
        return IsolationEnforcer(rows, scope)

    return _enforcer


def test_insert_is_stamped_with_scope_tenant(rows, tenants, enforcer_for):
    alpha, _ = tenants
    created = enforcer_for(alpha.tenant_id).insert("customers", _customer("Jo"))

    assert created["tenant_id"] == alpha.tenant_id
    assert created["is_deleted"] is False
    assert rows.fetch("customers")[0]["tenant_id"] == alpha.tenant_id


def test_insert_without_any_tenant_is_a_violation(rows, enforcer_for):
    with pytest.raises(TenantIsolationViolation):
        enforcer_for(None).insert("customers", _customer("Jo"))

    assert rows.fetch("customers") == []


def test_privileged_insert_without_tenant_is_a_violation(rows, enforcer_for):
    with pytest.raises(TenantIsolationViolation):
        enforcer_for(None, privileged=True).insert("customers", _customer("Jo"))

    assert rows.fetch("customers") == []


def test_insert_into_foreign_tenant_is_a_violation(rows, tenants, enforcer_for):
    alpha, beta = tenants

    with pytest.raises(TenantIsolationViolation):
        enforcer_for(alpha.tenant_id).insert("customers", _customer("Jo", tenant_id=beta.tenant_id))

    assert rows.fetch("customers") == []


def test_privileged_account_rows_are_exempt_from_stamping(tenants, enforcer_for):
    alpha, _ = tenants
    row = {
        "account_id": str(uuid.uuid4()),
        "email": "root@example.com",
        "display_name": "root",
        "password_hash": "x",
        "is_active": True,
        "is_privileged": True,
        "created_at": datetime.now(timezone.utc),
    }

    created = enforcer_for(alpha.tenant_id, privileged=True).insert("accounts", row)

    assert created["tenant_id"] is None


def test_reads_only_return_rows_of_scope_tenant(tenants, enforcer_for):
    alpha, beta = tenants
    mine = enforcer_for(alpha.tenant_id).insert("customers", _customer("Mine"))
    theirs = enforcer_for(beta.tenant_id).insert("customers", _customer("Theirs"))

    enforcer = enforcer_for(alpha.tenant_id)
    assert [row["customer_id"] for row in enforcer.find("customers")] == [mine["customer_id"]]
    assert enforcer.get("customers", theirs["customer_id"]) is None
    with pytest.raises(Forbidden):
        enforcer.require("customers", theirs["customer_id"])
    assert enforcer.count("customers") == 1


def test_scope_without_tenant_sees_nothing(tenants, enforcer_for):
    alpha, _ = tenants
    enforcer_for(alpha.tenant_id).insert("customers", _customer("Jo"))

    assert enforcer_for(None).find("customers") == []


def test_privileged_scope_reads_across_tenants(tenants, enforcer_for):
    alpha, beta = tenants
    enforcer_for(alpha.tenant_id).insert("customers", _customer("A"))
    enforcer_for(beta.tenant_id).insert("customers", _customer("B"))

    names = {row["name"] for row in enforcer_for(None, privileged=True).find("customers")}
    assert names == {"A", "B"}

    with_claim = enforcer_for(alpha.tenant_id, privileged=True)
    assert with_claim.scope.filtering_enabled is False
    assert with_claim.count("customers") == 2


def test_privileged_switch_confines_reads_to_target_tenant(tenants, enforcer_for):
    alpha, beta = tenants
    enforcer_for(alpha.tenant_id).insert("customers", _customer("A"))
    enforcer_for(beta.tenant_id).insert("customers", _customer("B"))

    switched = enforcer_for(None, privileged=True, switch_to=beta.tenant_id)

    assert [row["name"] for row in switched.find("customers")] == ["B"]
    assert switched.insert("customers", _customer("B2"))["tenant_id"] == beta.tenant_id


def test_soft_delete_hides_row_but_keeps_it(rows, tenants, enforcer_for):
    alpha, beta = tenants
    mine = enforcer_for(alpha.tenant_id).insert("customers", _customer("Mine"))
    theirs = enforcer_for(beta.tenant_id).insert("customers", _customer("Theirs"))
    enforcer = enforcer_for(alpha.tenant_id)

    assert enforcer.soft_delete("customers", mine["customer_id"]) is True
    assert enforcer.soft_delete("customers", theirs["customer_id"]) is False

    assert enforcer.find("customers") == []
    stored = {row["customer_id"]: row for row in rows.fetch("customers")}
    assert stored[mine["customer_id"]]["is_deleted"] is True
    assert stored[mine["customer_id"]]["deleted_at"] is not None
    assert stored[theirs["customer_id"]]["is_deleted"] is False


def test_update_is_scoped_and_guards_tenant_columns(rows, tenants, enforcer_for):
    alpha, beta = tenants
    mine = enforcer_for(alpha.tenant_id).insert("customers", _customer("Mine"))
    theirs = enforcer_for(beta.tenant_id).insert("customers", _customer("Theirs"))
    enforcer = enforcer_for(alpha.tenant_id)

    assert enforcer.update("customers", mine["customer_id"], {"notes": "vip"}) is True
    assert enforcer.update("customers", theirs["customer_id"], {"notes": "hijack"}) is False
    assert enforcer.get("customers", mine["customer_id"])["notes"] == "vip"
    assert rows.fetch("customers", {"customer_id": theirs["customer_id"]})[0]["notes"] is None

    for column in ("tenant_id", "is_deleted", "customer_id"):
        with pytest.raises(ValueError):
            enforcer.update("customers", mine["customer_id"], {column: beta.tenant_id})


def test_enforcer_rejects_unscoped_tables(enforcer_for):
    with pytest.raises(ValueError):
        enforcer_for(None, privileged=True).find("tenants")


def test_scope_is_sealed_after_first_access(tenants, enforcer_for):
    alpha, beta = tenants
    enforcer = enforcer_for(alpha.tenant_id)
    enforcer.find("customers")

    assert enforcer.scope.sealed
    with pytest.raises(RuntimeError):
        enforcer.scope.assign_tenant(beta.tenant_id)


def test_only_privileged_scopes_can_switch(tenants):
    _, beta = tenants
    with pytest.raises(Forbidden):
        RequestScope().switch_to(beta.tenant_id)


def test_resolver_uses_token_claim_for_regular_callers(store, tenants):
    alpha, beta = tenants
    resolver = TenantContextResolver(store)

    scope = resolver.resolve(_claims(tenant_id=alpha.tenant_id), override=beta.tenant_id)

    assert scope.tenant_id == alpha.tenant_id
    assert scope.filtering_enabled is True
    assert scope.switched_tenant_id is None


def test_resolver_honours_privileged_override(store, tenants):
    alpha, beta = tenants
    resolver = TenantContextResolver(store)

    scope = resolver.resolve(_claims(tenant_id=alpha.tenant_id, is_privileged=True), override=beta.tenant_id)

    assert scope.tenant_id == beta.tenant_id
    assert scope.filtering_enabled is True


def test_resolver_privileged_without_override_is_unfiltered(store, tenants):
    alpha, _ = tenants
    resolver = TenantContextResolver(store)

    with_claim = resolver.resolve(_claims(tenant_id=alpha.tenant_id, is_privileged=True))
    without_claim = resolver.resolve(_claims(is_privileged=True))

    assert with_claim.tenant_id == alpha.tenant_id
    assert with_claim.filtering_enabled is False
    assert without_claim.tenant_id is None
    assert without_claim.filtering_enabled is False


@pytest.mark.parametrize("override", ["not-a-uuid", str(uuid.uuid4())])
def test_resolver_lenient_override_falls_back_to_claim(store, tenants, override):
    alpha, _ = tenants
    resolver = TenantContextResolver(store)

    scope = resolver.resolve(_claims(tenant_id=alpha.tenant_id, is_privileged=True), override=override)

    assert scope.tenant_id == alpha.tenant_id
    assert scope.switched_tenant_id is None


@pytest.mark.parametrize("override", ["not-a-uuid", str(uuid.uuid4())])
def test_resolver_strict_override_rejects_unknown_tenant(store, override):
    resolver = TenantContextResolver(store, strict_override=True)

    with pytest.raises(InvalidTenantOverride):
        resolver.resolve(_claims(is_privileged=True), override=override)


def test_resolver_ignores_deleted_tenant_claim(store, tenants):
    alpha, _ = tenants
    store.update_tenant(alpha.tenant_id, {"is_deleted": True, "deleted_at": datetime.now(timezone.utc)})

    scope = TenantContextResolver(store).resolve(_claims(tenant_id=alpha.tenant_id))

    assert scope.tenant_id is None
    assert scope.filtering_enabled is True
