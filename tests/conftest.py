import asyncio
import inspect
import sys
from pathlib import Path

import httpx
import pytest

ROOT = Path(__file__).resolve().parent.parent
for path in (ROOT / "src", ROOT / "tests"):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from fake_billing_api import FakeBillingApi  # noqa: E402
from invokta_session.config import Settings  # noqa: E402
from invokta_session.controller import SessionController  # noqa: E402
from invokta_session.storage import CredentialStore, MemoryStorage  # noqa: E402

BASE_URL = "http://testserver"


@pytest.fixture
def test_settings():
    return Settings(API_BASE_URL=BASE_URL, FEDERATED_LOGIN_WATCHDOG_SECONDS=1.0)


@pytest.fixture
def backend():
    api = FakeBillingApi()
    api.add_user("ada@example.com", "Sup3r-Secret!", firstName="Ada", lastName="Byron")
    return api


@pytest.fixture
def http(backend):
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=backend.app), base_url=BASE_URL)
    yield client
    asyncio.run(client.aclose())


@pytest.fixture
def store(test_settings):
    return CredentialStore(MemoryStorage(), cfg=test_settings)


@pytest.fixture
def routes():
    return []


@pytest.fixture
def controller(test_settings, store, http, routes):
    return SessionController(cfg=test_settings, store=store, http=http, navigate=routes.append)


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
