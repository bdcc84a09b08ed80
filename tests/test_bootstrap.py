# tests/test_bootstrap.py

from __future__ import annotations

import pytest

from sorotask_keeper.cli.bootstrap import build_keeper, create_initial_state, load_signer
from sorotask_keeper.core.errors import ConfigurationError

from .fakes import FakeSigner


class NotASigner:
    def sign(self, envelope, simulation):
        return envelope


def test_create_initial_state_creates_local_stores(settings) -> None:
    settings.data_dir = settings.data_dir / "nested"
    settings.registry_db_path = settings.data_dir / "registry.sqlite3"
    settings.execution_log_path = settings.data_dir / "executions.sqlite3"

    state = create_initial_state(settings=settings)

    assert state.keeper_id == "keeper-a"
    assert settings.registry_db_path.exists()
    assert settings.execution_log_path.exists()
    assert state.registry.count_tasks() == 0


def test_load_signer_resolves_factory() -> None:
    assert isinstance(load_signer("tests.fakes:FakeSigner"), FakeSigner)


@pytest.mark.parametrize(
    "factory_path",
    ["", "no_colon", "tests.fakes:Missing", "tests.no_such_module:Factory", "tests.test_bootstrap:NotASigner"],
)
def test_load_signer_rejects_bad_factory_paths(factory_path: str) -> None:
    with pytest.raises(ConfigurationError):
        load_signer(factory_path)


def test_build_keeper_requires_rpc_url(state) -> None:
    with pytest.raises(ConfigurationError):
        build_keeper(state, signer=FakeSigner())


@pytest.mark.asyncio
async def test_build_keeper_wires_runtime(state) -> None:
    state.settings.rpc_url = "https://rpc.test"

    runtime = build_keeper(state, signer=FakeSigner())
    try:
        assert runtime.coordinator.keeper_id == "keeper-a"
        assert runtime.client.registry is state.registry
        assert runtime.client.invoker is runtime.invoker
    finally:
        await runtime.invoker.aclose()
