import os
import pathlib
import sys
import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import dwnclient`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from dwnclient.agent import Agent  # noqa: E402
from dwnclient.api import DwnApi  # noqa: E402
from dwnclient.config import DwnConfig  # noqa: E402
from dwnclient.node import MemoryNode, MemoryTransport  # noqa: E402

REMOTE_ENDPOINT = "memory://dwn.example"


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "network: tests that bind a local HTTP server (skipped if DWN_SKIP_NETWORK=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    skip_network = _env_flag('DWN_SKIP_NETWORK')

    for item in items:
        if 'network' in item.keywords and skip_network:
            item.add_marker(pytest.mark.skip(reason='network tests skipped; unset DWN_SKIP_NETWORK to enable'))


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Tests must not see a pinned clock or DWN_* overrides from the caller's shell."""
    monkeypatch.delenv("SOURCE_DATE_EPOCH", raising=False)
    for name in list(os.environ):
        if name.startswith("DWN_") and name != "DWN_SKIP_NETWORK":
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config() -> DwnConfig:
    return DwnConfig()


@pytest.fixture
def agent(config) -> Agent:
    return Agent(config=config)


@pytest.fixture
def remote_node(config) -> MemoryNode:
    return MemoryNode(config)


@pytest.fixture
def memory_transport(agent, remote_node) -> MemoryTransport:
    transport = MemoryTransport()
    transport.mount(REMOTE_ENDPOINT, remote_node)
    agent.register_transport("memory", transport)
    return transport


@pytest.fixture
def alice(agent, memory_transport) -> DwnApi:
    return DwnApi(agent, agent.create_identity([REMOTE_ENDPOINT]))


@pytest.fixture
def bob(agent, memory_transport) -> DwnApi:
    return DwnApi(agent, agent.create_identity([REMOTE_ENDPOINT]))
