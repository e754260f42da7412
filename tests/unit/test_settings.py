"""
Unit tests for provisioning settings.
"""
import pytest

from keezer.CONFIG.settings import ProvisionSettings
from keezer.exceptions import ConfigurationError


def test_defaults():
    settings = ProvisionSettings.from_env(environ={})
    assert settings.stack_dir == "/opt/keezer-base"
    assert settings.tz == "Pacific/Auckland"
    assert settings.mysql_db == "keezer"
    assert settings.mysql_user == "keezeruser"
    assert settings.mqtt_user == "keezer"
    assert settings.mysql_image == "mysql:8.0"
    assert settings.mysql_image_fallbacks == ["mysql:8"]
    assert settings.pull_attempts == 4
    assert settings.pull_initial_delay == 2.0
    assert settings.compose_file == "/opt/keezer-base/docker-compose.yml"


def test_environment_overrides():
    settings = ProvisionSettings.from_env(environ={
        "STACK_DIR": "/srv/keezer",
        "MQTT_PASS": "s3cret",
        "PULL_ATTEMPTS": "2",
        "NODERED_IMAGE_FALLBACKS": "nodered/node-red:3.1, nodered/node-red:3.0",
        "LOG_LEVEL": "debug",
        "UNRELATED": "ignored",
    })
    assert settings.stack_dir == "/srv/keezer"
    assert settings.mqtt_pass == "s3cret"
    assert settings.pull_attempts == 2
    assert settings.nodered_image_fallbacks == ["nodered/node-red:3.1", "nodered/node-red:3.0"]
    assert settings.log_level == "DEBUG"


def test_empty_value_keeps_default():
    settings = ProvisionSettings.from_env(environ={"TZ": ""})
    assert settings.tz == "Pacific/Auckland"


def test_env_file_then_environment(tmp_path):
    env_file = tmp_path / "keezer.env"
    env_file.write_text("MYSQL_DB=brewery\nMQTT_USER=tap\n")
    settings = ProvisionSettings.from_env(environ={"MQTT_USER": "cellar"}, env_file=str(env_file))
    assert settings.mysql_db == "brewery"
    assert settings.mqtt_user == "cellar"


def test_missing_env_file(tmp_path):
    with pytest.raises(ConfigurationError):
        ProvisionSettings.from_env(environ={}, env_file=str(tmp_path / "nope.env"))


def test_invalid_value_names_variable():
    with pytest.raises(ConfigurationError) as excinfo:
        ProvisionSettings.from_env(environ={"PULL_ATTEMPTS": "zero"})
    assert "PULL_ATTEMPTS" in str(excinfo.value)


def test_out_of_range_value():
    with pytest.raises(ConfigurationError):
        ProvisionSettings.from_env(environ={"START_CONCURRENCY": "0"})
