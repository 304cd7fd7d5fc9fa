"""
Test conftest — isolate token and presence environment variables so that
settings tests are not affected by a real token in the developer's or CI
environment.
"""
import pytest

_ENV_VARS = [
    "DISCORD_TOKEN",
    "STATUS",
    "CUSTOM_STATUS",
    "STAYONLINE_CONFIG",
]


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    """Remove stayonline env vars for every test so Settings() behaves as if
    nothing is configured unless the test explicitly provides it.
    Also disables .env file loading so a local .env does not leak a real
    token into tests."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    import config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
