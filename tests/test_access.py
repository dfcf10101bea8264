from __future__ import annotations

import pytest

from audit_log.access import (
    ANY_ROLE,
    AccessGrant,
    Authorization,
    PermissionContext,
    get_permission_context,
    reset_permission_context,
    set_permission_context,
)


def test_skip_revokes_grant_on_exit() -> None:
    with Authorization().skip("cleanup") as grant:
        assert grant.active
        assert grant.reason == "cleanup"

    assert grant.active is False


def test_skip_revokes_grant_on_error() -> None:
    captured: list[AccessGrant] = []

    with pytest.raises(ValueError):
        with Authorization().skip() as grant:
            captured.append(grant)
            raise ValueError("boom")

    assert captured[0].active is False


def test_with_bypass_returns_block_result() -> None:
    grants: list[AccessGrant] = []

    def block(grant: AccessGrant) -> int:
        grants.append(grant)
        assert grant.active
        return 42

    assert Authorization().with_bypass(block, reason="read") == 42
    assert grants[0].reason == "read"
    assert not grants[0].active


def test_each_scope_issues_a_new_grant() -> None:
    authorization = Authorization()
    with authorization.skip() as first, authorization.skip() as second:
        assert first.grant_id != second.grant_id
    assert not first.active and not second.active


def test_permission_context_lifecycle() -> None:
    assert get_permission_context().roles == ()

    token = set_permission_context(PermissionContext(roles=["admin"]))
    assert get_permission_context().roles == ("admin",)

    reset_permission_context(token)
    assert get_permission_context().roles == ()


def test_permission_context_allows() -> None:
    ctx = PermissionContext(roles=("team:1", "user:7"))

    assert ctx.allows(["user:7"])
    assert ctx.allows([ANY_ROLE])
    assert not ctx.allows(["team:2"])
    assert not ctx.allows([])
    assert PermissionContext().allows([ANY_ROLE])
