"""Pytest configuration for gateway tests."""

from __future__ import annotations

import asyncio
import importlib.util
import inspect
import logging
import sys
from pathlib import Path

import pytest

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
if str(PACKAGE_ROOT) not in sys.path:
    sys.path.insert(0, str(PACKAGE_ROOT))

from opcuagateway.config.model import MetricDescriptor, RuntimeConfig  # noqa: E402

_HAS_PYTEST_ASYNCIO = importlib.util.find_spec("pytest_asyncio") is not None


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "asyncio: mark test to run on asyncio loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Fallback asyncio runner when pytest-asyncio is unavailable."""
    if _HAS_PYTEST_ASYNCIO:
        return None
    if "asyncio" not in pyfuncitem.keywords:
        return None
    test_function = pyfuncitem.obj
    if not inspect.iscoroutinefunction(test_function):
        return None

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        kwargs = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
        loop.run_until_complete(test_function(**kwargs))
    finally:
        try:
            loop.run_until_complete(loop.shutdown_asyncgens())
        except (RuntimeError, ValueError):
            pass
        loop.close()
        asyncio.set_event_loop(None)
    return True


@pytest.fixture(autouse=True)
def reset_logging_handlers():
    """Close and remove all logging handlers after each test to prevent ResourceWarnings."""
    yield
    root = logging.getLogger()
    for handler in root.handlers[:]:
        try:
            handler.close()
        except (OSError, RuntimeError):
            pass
        root.removeHandler(handler)


@pytest.fixture()
def temp_metric() -> MetricDescriptor:
    return MetricDescriptor(node_id="ns=1;s=Temp", topic="plant/temp", mode="pub", interval=1000)


@pytest.fixture()
def setpoint_metric() -> MetricDescriptor:
    return MetricDescriptor(node_id="ns=1;s=Setpoint", topic="plant/setpoint/cmd", mode="sub")


@pytest.fixture()
def runtime_config(temp_metric: MetricDescriptor, setpoint_metric: MetricDescriptor) -> RuntimeConfig:
    return RuntimeConfig(
        opcua_url="opc.tcp://localhost:4840/freeopcua/server/",
        metrics=(temp_metric, setpoint_metric),
        opcua_certificate="/tmp/opcuagateway-tests/cert.pem",
        opcua_private_key="/tmp/opcuagateway-tests/key.pem",
        operation_timeout=1.0,
        mqtt_host="localhost",
        mqtt_port=1883,
        mqtt_user=None,
        mqtt_pass=None,
        mqtt_tls=False,
    )
