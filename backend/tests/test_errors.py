"""
Tests for error payloads
"""

from hostpanel.core.errors import (
    ConflictError,
    NotFoundError,
    ProvisioningError,
    UnauthorizedError,
    ValidationError,
)


def test_kinds_and_status_codes():
    assert (ValidationError("x").kind, ValidationError("x").status_code) == ("ValidationError", 422)
    assert (NotFoundError("x").kind, NotFoundError("x").status_code) == ("NotFound", 404)
    assert (ConflictError("x").kind, ConflictError("x").status_code) == ("Conflict", 409)
    assert (UnauthorizedError("x").kind, UnauthorizedError("x").status_code) == ("Unauthorized", 401)
    assert UnauthorizedError("x", status_code=403).status_code == 403


def test_provisioning_detail_hidden_from_customers():
    error = ProvisioningError("面板返回 HTTP 500: InternalServerError panel exploded", order_id=3)

    body = error.to_dict(is_admin=False)

    assert body["kind"] == "ProvisioningError"
    assert body["message"] == ProvisioningError.public_message
    assert "panel exploded" not in body["message"]
    assert body["order_id"] == 3


def test_provisioning_detail_shown_to_admins():
    error = ProvisioningError("面板返回 HTTP 500: InternalServerError panel exploded", order_id=3)

    assert "panel exploded" in error.to_dict(is_admin=True)["message"]


def test_plain_errors_ignore_admin_flag():
    assert ConflictError("订单已取消").to_dict(is_admin=True) == {"kind": "Conflict", "message": "订单已取消"}
