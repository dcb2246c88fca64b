"""
Unit Tests for Configuration
=============================

Tests for cors_proxy/config.py and configuration checks at startup.

Run tests:
----------
    pytest cors_proxy/tests/test_config.py -v
"""

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError
import httpx

from cors_proxy.config import Settings, get_settings, validate_configuration
from cors_proxy.main import create_app


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the developer's shell and .env out of these tests"""
    for name in Settings.model_fields:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


# ============================================================================
# Default and Environment Tests
# ============================================================================

def test_default_settings():
    settings = make_settings()

    assert settings.PROXY_PORT == 3000
    assert settings.TARGET_HOST == "learn.tijusacademy.com"
    assert settings.TARGET_PORT == 443
    assert settings.target_base_url == "https://learn.tijusacademy.com"
    assert settings.local_url == "http://localhost:3000"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("PROXY_PORT", "4010")
    monkeypatch.setenv("TARGET_HOST", "API.Example.com ")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = get_settings()

    assert settings.PROXY_PORT == 4010
    assert settings.TARGET_HOST == "api.example.com"
    assert settings.LOG_LEVEL == "DEBUG"


def test_get_settings_is_cached():
    assert get_settings() is get_settings()


def test_upstream_timeout_built_from_settings():
    settings = make_settings(UPSTREAM_TIMEOUT_SECONDS=12.5, UPSTREAM_CONNECT_TIMEOUT_SECONDS=2.0)

    timeout = settings.upstream_timeout

    assert isinstance(timeout, httpx.Timeout)
    assert timeout.connect == 2.0
    assert timeout.read == 12.5


def test_non_default_port_in_target_url():
    settings = make_settings(TARGET_HOST="staging.example.com", TARGET_PORT=8443)

    assert settings.target_base_url == "https://staging.example.com:8443"


# ============================================================================
# Validator Tests
# ============================================================================

@pytest.mark.parametrize(
    "target_host",
    [
        "https://api.example.com",
        "api.example.com/v1",
        "api.example.com:443",
        "user@api.example.com",
        "api example.com",
        "   ",
    ]
)
def test_target_host_must_be_bare_hostname(target_host):
    with pytest.raises(ValidationError):
        make_settings(TARGET_HOST=target_host)


def test_invalid_log_level_rejected():
    with pytest.raises(ValidationError):
        make_settings(LOG_LEVEL="LOUD")


def test_allow_methods_must_include_options():
    with pytest.raises(ValidationError):
        make_settings(ALLOW_METHODS="GET, POST")


def test_allow_methods_normalized():
    settings = make_settings(ALLOW_METHODS="get,post , options")

    assert settings.ALLOW_METHODS == "GET, POST, OPTIONS"


@pytest.mark.parametrize("port", [0, 70000])
def test_proxy_port_range(port):
    with pytest.raises(ValidationError):
        make_settings(PROXY_PORT=port)


# ============================================================================
# validate_configuration Tests
# ============================================================================

def test_validate_configuration_default_is_valid_with_warning():
    status = validate_configuration(make_settings())

    assert status["valid"] is True
    assert status["errors"] == []
    assert any("every interface" in warning for warning in status["warnings"])
    assert status["target"] == "https://learn.tijusacademy.com"


def test_validate_configuration_detects_self_loop():
    settings = make_settings(TARGET_HOST="localhost", TARGET_PORT=3000, PROXY_PORT=3000)

    status = validate_configuration(settings)

    assert status["valid"] is False
    assert "proxy itself" in status["errors"][0]


def test_validate_configuration_warns_on_disabled_timeouts():
    settings = make_settings(PROXY_HOST="127.0.0.1", UPSTREAM_TIMEOUT_SECONDS=0)

    status = validate_configuration(settings)

    assert status["valid"] is True
    assert status["warnings"] == [
        "Upstream timeouts are disabled; a stalled upstream will hold requests open"
    ]


def test_startup_refuses_invalid_configuration():
    settings = make_settings(TARGET_HOST="127.0.0.1", TARGET_PORT=3000, PROXY_PORT=3000)
    app = create_app(settings, transport=httpx.MockTransport(lambda request: httpx.Response(200)))

    with pytest.raises(RuntimeError, match="proxy itself"):
        with TestClient(app):
            pass
