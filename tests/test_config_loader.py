"""Tests for loading simulator settings from INI files and the environment."""

import pytest
from pydantic import ValidationError

from smtp_simulator.config_loader import SimulatorSettings, load_settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("CONFIG", "PACKET_LOSS", "PORT", "API_TOKEN", "LOG_LEVEL", "MAX_RETRIES", "PROBE_INTERVAL"):
        monkeypatch.delenv(f"SMTPSIM_{name}", raising=False)


def test_defaults_when_file_missing(tmp_path):
    settings = load_settings(tmp_path / "missing.ini")

    assert settings == SimulatorSettings()
    assert settings.api_token is None
    assert settings.log_level == "INFO"


def test_values_read_from_ini(tmp_path):
    config_file = tmp_path / "sim.ini"
    config_file.write_text("""
[timing]
probe_interval = 0.25
recovery_interval = 0.1

[transport]
loss_decay = 0.5
max_retries = 4

[message]
sender = alice@example.com
packet_loss = 20

[server]
port = 9000
api_token = secret

[logging]
level = debug
""")

    settings = load_settings(config_file)

    assert settings.probe_interval == 0.25
    assert settings.recovery_interval == 0.1
    assert settings.loss_decay == 0.5
    assert settings.max_retries == 4
    assert settings.sender == "alice@example.com"
    assert settings.packet_loss == 20
    assert settings.port == 9000
    assert settings.api_token == "secret"
    assert settings.log_level == "DEBUG"
    assert settings.timings.probe_interval == 0.25


def test_environment_fallback(tmp_path, monkeypatch):
    monkeypatch.setenv("SMTPSIM_PACKET_LOSS", "35")
    monkeypatch.setenv("SMTPSIM_API_TOKEN", "from-env")
    monkeypatch.setenv("SMTPSIM_PROBE_INTERVAL", "0.5")

    settings = load_settings(tmp_path / "missing.ini")

    assert settings.packet_loss == 35
    assert settings.api_token == "from-env"
    assert settings.probe_interval == 0.5


def test_ini_takes_precedence_over_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("SMTPSIM_PORT", "7000")
    config_file = tmp_path / "sim.ini"
    config_file.write_text("[server]\nport = 8100\n")

    assert load_settings(config_file).port == 8100


def test_config_path_from_environment(tmp_path, monkeypatch):
    config_file = tmp_path / "env.ini"
    config_file.write_text("[transport]\nmax_retries = 2\n")
    monkeypatch.setenv("SMTPSIM_CONFIG", str(config_file))

    assert load_settings().max_retries == 2


def test_invalid_numbers_fall_back_to_defaults(tmp_path):
    config_file = tmp_path / "bad.ini"
    config_file.write_text("[message]\npacket_loss = lots\n[transport]\nmax_retries = many\n")

    settings = load_settings(config_file)

    assert settings.packet_loss == SimulatorSettings().packet_loss
    assert settings.max_retries == SimulatorSettings().max_retries


def test_default_message_ignores_none_overrides():
    settings = SimulatorSettings(sender="alice@example.com", packet_loss=5)

    config = settings.default_message(subject="Hello", sender=None, packet_loss=None)

    assert config.sender == "alice@example.com"
    assert config.subject == "Hello"
    assert config.packet_loss == 5


def test_default_message_validates_values():
    with pytest.raises(ValidationError):
        SimulatorSettings().default_message(packet_loss=250)


def test_message_defaults_mirror_message_section(tmp_path):
    config_file = tmp_path / "sim.ini"
    config_file.write_text("[message]\nrecipient = bob@corp.example\nnetwork_delay = 250\n")

    defaults = load_settings(config_file).message_defaults

    assert defaults["recipient"] == "bob@corp.example"
    assert defaults["network_delay"] == 250
    assert set(defaults) == {
        "sender", "recipient", "subject", "body", "server_delay", "network_delay", "packet_loss",
    }
