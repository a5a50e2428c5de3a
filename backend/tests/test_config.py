"""
Settings and schema configuration tests.
"""

from datetime import datetime

import pytest
from pydantic import ValidationError

from backend.app.core.config import Settings
from backend.app.models.audit_log import AuditLog
from backend.app.schemas.audit import AuditLogResponse


def test_settings_are_frozen(test_settings):
    assert Settings.model_config["frozen"] is True
    with pytest.raises(ValidationError):
        test_settings.refund_cutoff_minutes = 0


def test_settings_read_the_environment(monkeypatch):
    monkeypatch.setenv("GATEWAY_CLAIM_TTL_SECONDS", "45")
    monkeypatch.setenv("route_search_radius_km", "2.5")

    settings = Settings(_env_file=None)

    assert settings.gateway_claim_ttl_seconds == 45
    assert settings.route_search_radius_km == 2.5


def test_audit_response_reads_orm_rows():
    row = AuditLog(
        id=7,
        action="ROUTE_CREATED",
        result="FAILED",
        user_id=10,
        ip_address="127.0.0.1",
        user_agent="pytest",
        meta_data={"error_code": "ERR_NOT_FOUND_001"},
        timestamp=datetime(2025, 1, 15, 8, 0),
    )

    response = AuditLogResponse.model_validate(row)

    assert response.id == 7
    assert response.meta_data == {"error_code": "ERR_NOT_FOUND_001"}
