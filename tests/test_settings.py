from __future__ import annotations

import asyncio

import pytest

from lfortran_lsp.config import CONFIG_SECTION
from lfortran_lsp.exceptions import NeverThrown
from lfortran_lsp.schema import DEFAULT_MAX_NUMBER_OF_PROBLEMS, Settings
from lfortran_lsp.settings import SettingsResolver, settings_from_payload


class CountingPull:
    def __init__(self, payload: object = None, *, error: Exception | None = None) -> None:
        self.payload = payload if payload is not None else [{"maxNumberOfProblems": 7}]
        self.error = error
        self.calls: list[str] = []

    async def __call__(self, uri: str) -> object:
        self.calls.append(uri)
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.payload


def test_defaults() -> None:
    settings = Settings()
    assert settings.max_number_of_problems == DEFAULT_MAX_NUMBER_OF_PROBLEMS == 1000
    assert settings.compiler.lfortran_path == "lfortran"
    assert settings.compiler.timeout is None


@pytest.mark.parametrize(
    "payload",
    [
        {"maxNumberOfProblems": 3, "compiler": {"lfortranPath": "/opt/lf"}},
        {"maxDiagnostics": 3, "compiler": {"path": "/opt/lf"}},
        {"max_number_of_problems": 3, "compiler": {"executablePath": "/opt/lf"}},
        {"maxNumberOfProblems": 3, "compilerPath": "/opt/lf"},
    ],
)
def test_payload_aliases(payload: dict[str, object]) -> None:
    settings = settings_from_payload(payload)
    assert settings.max_number_of_problems == 3
    assert settings.compiler.lfortran_path == "/opt/lf"


def test_flat_compiler_path_does_not_override_nested_value() -> None:
    settings = settings_from_payload(
        {"compilerPath": "/flat", "compiler": {"lfortranPath": "/nested"}}
    )
    assert settings.compiler.lfortran_path == "/nested"


@pytest.mark.parametrize(
    "payload",
    [
        {"maxNumberOfProblems": -1},
        {"maxNumberOfProblems": "lots"},
        {"compiler": {"lfortranPath": ""}},
        {"compiler": {"timeout": 0}},
        "not a table",
        42,
    ],
)
def test_malformed_payload_falls_back_to_defaults(payload: object) -> None:
    defaults = {"compiler": {"lfortranPath": "/from/toml"}}
    settings = settings_from_payload(payload, defaults)
    assert settings.max_number_of_problems == 1000
    assert settings.compiler.lfortran_path == "/from/toml"


def test_invalid_defaults_fall_back_to_builtin() -> None:
    settings = settings_from_payload({}, {"maxNumberOfProblems": -5})
    assert settings == Settings()


def test_list_payload_uses_first_item() -> None:
    assert settings_from_payload([{"maxNumberOfProblems": 9}, {}]).max_number_of_problems == 9
    assert settings_from_payload([]) == Settings()


def test_push_mode_updates_global_settings() -> None:
    resolver = SettingsResolver(defaults={"compiler": {"lfortranPath": "/from/toml"}})
    resolver.on_configuration_changed({CONFIG_SECTION: {"maxNumberOfProblems": 5}})
    settings = asyncio.run(resolver.get_settings("file:///a.f90"))
    assert settings.max_number_of_problems == 5
    assert settings.compiler.lfortran_path == "/from/toml"

    resolver.on_configuration_changed({CONFIG_SECTION: {"maxNumberOfProblems": -2}})
    assert resolver.global_settings.max_number_of_problems == 1000

    resolver.on_configuration_changed({"unrelated": {}})
    assert resolver.global_settings.compiler.lfortran_path == "/from/toml"


def test_push_mode_never_pulls() -> None:
    pull = CountingPull()
    resolver = SettingsResolver(pull, pull_supported=False)
    asyncio.run(resolver.get_settings("file:///a.f90"))
    assert pull.calls == []


def test_concurrent_requests_share_one_pull() -> None:
    pull = CountingPull()
    resolver = SettingsResolver(pull, pull_supported=True)

    async def scenario() -> list[Settings]:
        return await asyncio.gather(
            *(resolver.get_settings("file:///a.f90") for _ in range(5))
        )

    results = asyncio.run(scenario())
    assert pull.calls == ["file:///a.f90"]
    assert {result.max_number_of_problems for result in results} == {7}


def test_pull_results_are_cached_per_uri() -> None:
    pull = CountingPull()
    resolver = SettingsResolver(pull, pull_supported=True)

    async def scenario() -> None:
        await resolver.get_settings("file:///a.f90")
        await resolver.get_settings("file:///a.f90")
        await resolver.get_settings("file:///b.f90")

    asyncio.run(scenario())
    assert pull.calls == ["file:///a.f90", "file:///b.f90"]
    assert sorted(resolver.cached_uris) == ["file:///a.f90", "file:///b.f90"]


def test_configuration_change_invalidates_pulled_settings() -> None:
    pull = CountingPull()
    resolver = SettingsResolver(pull, pull_supported=True)

    async def scenario() -> Settings:
        await resolver.get_settings("file:///a.f90")
        resolver.on_configuration_changed({CONFIG_SECTION: {"maxNumberOfProblems": 1}})
        assert resolver.cached_uris == []
        pull.payload = [{"maxNumberOfProblems": 11}]
        return await resolver.get_settings("file:///a.f90")

    settings = asyncio.run(scenario())
    assert pull.calls == ["file:///a.f90", "file:///a.f90"]
    assert settings.max_number_of_problems == 11


def test_document_close_evicts_cache_entry() -> None:
    pull = CountingPull()
    resolver = SettingsResolver(pull, pull_supported=True)

    async def scenario() -> None:
        await resolver.get_settings("file:///a.f90")
        resolver.on_document_closed("file:///a.f90")
        resolver.on_document_closed("file:///never-opened.f90")
        await resolver.get_settings("file:///a.f90")

    asyncio.run(scenario())
    assert pull.calls == ["file:///a.f90", "file:///a.f90"]


def test_failed_pull_uses_global_settings(caplog) -> None:
    pull = CountingPull(error=RuntimeError("client went away"))
    resolver = SettingsResolver(pull, pull_supported=True)
    settings = asyncio.run(resolver.get_settings("file:///a.f90"))
    assert settings == resolver.global_settings
    assert "Failed to pull configuration" in caplog.text


def test_pulled_settings_merge_over_toml_defaults() -> None:
    pull = CountingPull([{"maxNumberOfProblems": 3}])
    resolver = SettingsResolver(pull)
    resolver.configure(
        pull_supported=True, defaults={"compiler": {"lfortranPath": "/from/toml"}}
    )
    settings = asyncio.run(resolver.get_settings("file:///a.f90"))
    assert settings.max_number_of_problems == 3
    assert settings.compiler.lfortran_path == "/from/toml"


@pytest.mark.parametrize(
    "payload",
    [
        {"maxDiagnostics": 50},
        {"max_number_of_problems": 50},
        {"maxNumberOfProblems": 50},
    ],
)
def test_client_problem_limit_overrides_toml_under_any_alias(payload: dict[str, object]) -> None:
    settings = settings_from_payload(payload, {"maxNumberOfProblems": 5})
    assert settings.max_number_of_problems == 50


@pytest.mark.parametrize(
    "payload",
    [
        {"compilerPath": "/opt/lfortran/bin/lfortran"},
        {"compiler": {"path": "/opt/lfortran/bin/lfortran"}},
        {"compiler": {"executablePath": "/opt/lfortran/bin/lfortran"}},
        {"compiler": {"lfortranPath": "/opt/lfortran/bin/lfortran"}},
    ],
)
def test_client_compiler_path_overrides_toml_under_any_alias(
    payload: dict[str, object],
) -> None:
    defaults = {"compiler": {"lfortranPath": "/usr/bin/lfortran", "timeout": 9}}
    settings = settings_from_payload(payload, defaults)
    assert settings.compiler.lfortran_path == "/opt/lfortran/bin/lfortran"
    assert settings.compiler.timeout == 9


def test_toml_aliases_apply_when_client_is_silent() -> None:
    settings = settings_from_payload({}, {"maxDiagnostics": 5, "compilerPath": "/usr/bin/lfortran"})
    assert settings.max_number_of_problems == 5
    assert settings.compiler.lfortran_path == "/usr/bin/lfortran"


def test_fetch_without_pull_callback_is_unreachable() -> None:
    resolver = SettingsResolver(pull_supported=True)
    with pytest.raises(NeverThrown):
        asyncio.run(resolver._fetch("file:///a.f90"))
