from __future__ import annotations

from types import SimpleNamespace

import pytest

from medwaste.auth import ROLE_PERMISSIONS, check_permission


@pytest.mark.parametrize(
    ("role", "expected"),
    [
        (
            "admin",
            {
                "canViewAll": True,
                "canViewHandoffs": True,
                "canCreateHandoffs": True,
                "canCreateFacilityHandoffs": True,
                "canCreateIncinerationHandoffs": True,
                "canConfirmHandoffs": True,
                "canDisputeHandoffs": True,
                "canResolveDisputes": True,
                "canResendNotifications": True,
                "canViewNotificationLogs": True,
            },
        ),
        (
            "supervisor",
            {
                "canViewAll": False,
                "canViewHandoffs": True,
                "canCreateHandoffs": True,
                "canCreateFacilityHandoffs": True,
                "canCreateIncinerationHandoffs": False,
                "canConfirmHandoffs": True,
                "canDisputeHandoffs": True,
                "canResolveDisputes": True,
                "canResendNotifications": True,
                "canViewNotificationLogs": True,
            },
        ),
        (
            "driver",
            {
                "canViewAll": False,
                "canViewHandoffs": True,
                "canCreateHandoffs": True,
                "canCreateFacilityHandoffs": False,
                "canCreateIncinerationHandoffs": True,
                "canConfirmHandoffs": True,
                "canDisputeHandoffs": True,
                "canResolveDisputes": False,
                "canResendNotifications": False,
                "canViewNotificationLogs": False,
            },
        ),
        (
            "incinerator_operator",
            {
                "canViewAll": False,
                "canViewHandoffs": False,
                "canCreateHandoffs": False,
                "canCreateFacilityHandoffs": False,
                "canCreateIncinerationHandoffs": False,
                "canConfirmHandoffs": False,
                "canDisputeHandoffs": False,
                "canResolveDisputes": False,
                "canResendNotifications": False,
                "canViewNotificationLogs": False,
            },
        ),
    ],
)
def test_role_permission_matrix(role: str, expected: dict[str, bool]) -> None:
    assert ROLE_PERMISSIONS[role] == expected
    user = SimpleNamespace(role=role)
    for permission, allowed in expected.items():
        assert check_permission(user, permission) is allowed


def test_unknown_role_has_no_permissions() -> None:
    assert check_permission(SimpleNamespace(role="visitor"), "canViewHandoffs") is False


def test_unknown_permission_is_denied() -> None:
    assert check_permission(SimpleNamespace(role="admin"), "canLaunchRockets") is False
