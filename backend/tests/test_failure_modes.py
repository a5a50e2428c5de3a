"""
Failure Injection Tests.

Validates resilience against component failures.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from backend.app.core.reliability import CircuitBreaker, CircuitOpenError
from backend.app.services.audit import AuditAction, AuditService
from backend.app.workers.route_finalizer import RouteFinalizer


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_circuit_breaker_activates():
    """Test that circuit breaker opens after threshold failures."""
    cb = CircuitBreaker(failure_threshold=2, reset_timeout=1)

    async def failing_func():
        raise ValueError("Boom")

    # Fail 1
    with pytest.raises(ValueError):
        await cb.call(failing_func)

    # Fail 2 (Threshold reached)
    with pytest.raises(ValueError):
        await cb.call(failing_func)

    # Call 3 (Should be CircuitOpenError)
    with pytest.raises(CircuitOpenError):
        await cb.call(failing_func)


@pytest.mark.asyncio
async def test_circuit_breaker_half_open_trial_call():
    clock = FakeClock()
    cb = CircuitBreaker(failure_threshold=1, reset_timeout=10, clock=clock)

    async def failing_func():
        raise ValueError("Boom")

    async def healthy_func():
        return "ok"

    with pytest.raises(ValueError):
        await cb.call(failing_func)
    assert cb.state == "OPEN"

    # Trial call after the timeout fails: straight back to OPEN
    clock.now += 11
    with pytest.raises(ValueError):
        await cb.call(failing_func)
    assert cb.state == "OPEN"

    # Trial call succeeds: CLOSED again
    clock.now += 11
    assert await cb.call(healthy_func) == "ok"
    assert cb.state == "CLOSED"
    assert cb.failures == 0


@pytest.mark.asyncio
async def test_audit_failure_does_not_propagate():
    """A broken audit store is logged, never raised into the business flow."""
    session = AsyncMock()
    session.add = MagicMock()
    session.commit.side_effect = OperationalError("INSERT", {}, Exception("disk full"))
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = session

    await AuditService(factory).log_event(AuditAction.BOOKING_CREATED, 1, metadata={"booking_id": "BKG_X"})

    session.add.assert_called_once()


@pytest.mark.asyncio
async def test_route_finalizer_survives_database_errors():
    routes = MagicMock()
    routes.auto_finalize_expired_routes = AsyncMock(
        side_effect=[OperationalError("SELECT", {}, Exception("db down")), ["RTE_AAAAAAAA"]]
    )
    finalizer = RouteFinalizer(routes, interval_seconds=60)

    assert await finalizer.run_once() == []
    assert await finalizer.run_once() == ["RTE_AAAAAAAA"]


@pytest.mark.asyncio
async def test_route_finalizer_start_stop():
    routes = MagicMock()
    routes.auto_finalize_expired_routes = AsyncMock(return_value=[])
    finalizer = RouteFinalizer(routes, interval_seconds=3600)

    finalizer.start()
    await finalizer.stop()
    await finalizer.stop()
