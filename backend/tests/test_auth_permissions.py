from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from vhc.auth import ROLE_PERMISSIONS, check_permission, create_access_token, decode_token
from vhc.domain_errors import Forbidden
from vhc.models import USER_ROLES
from vhc.security import require_permission


def _user(role: str):
    return SimpleNamespace(role=role)


def test_every_role_has_the_same_permission_keys() -> None:
    assert set(ROLE_PERMISSIONS) == set(USER_ROLES)
    keysets = {frozenset(perms) for perms in ROLE_PERMISSIONS.values()}
    assert len(keysets) == 1


@pytest.mark.parametrize(
    ("role", "allowed"),
    [
        ("super_admin", True),
        ("org_admin", True),
        ("site_admin", True),
        ("service_advisor", False),
        ("technician", False),
    ],
)
def test_only_admins_can_skip_checkin(role: str, allowed: bool) -> None:
    assert check_permission(_user(role), "canSkipCheckin") is allowed


def test_technician_inspects_but_does_not_send() -> None:
    tech = _user("technician")

    assert check_permission(tech, "canInspect")
    assert not check_permission(tech, "canSendToCustomer")
    assert not check_permission(tech, "canRecordDecisions")


def test_unknown_role_is_denied() -> None:
    assert check_permission(_user("valet"), "canViewHealthChecks") is False


def test_require_permission_raises_forbidden() -> None:
    with pytest.raises(Forbidden) as exc:
        require_permission(_user("technician"), "canCloseHealthChecks")

    assert exc.value.http_status == 403
    assert exc.value.details == {"permission": "canCloseHealthChecks"}


def test_access_token_round_trip() -> None:
    token = create_access_token({"sub": "3f1c2b1e-0000-4000-8000-000000000001", "ver": 0})

    payload = decode_token(token)

    assert payload["sub"] == "3f1c2b1e-0000-4000-8000-000000000001"
    assert payload["type"] == "access"


def test_expired_token_is_rejected() -> None:
    token = create_access_token({"sub": "x"}, expires_delta=timedelta(minutes=-10))

    with pytest.raises(HTTPException) as exc:
        decode_token(token)

    assert exc.value.status_code == 401
    assert exc.value.detail == "Token expired"
