# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Unit tests for the config materializer.
"""
import os
import stat

import pytest
import yaml
from dotenv import dotenv_values

from keezer.CONFIG.keezer_stack import build_keezer_stack
from keezer.MANAGERS.config_materializer import ConfigMaterializer, render_env
from keezer.MODELS.stack_description import ConfigFile
from keezer.exceptions import WriteError


def read_tree(root):
    contents = {}
    for dirpath, _, files in os.walk(root):
        for name in files:
            path = os.path.join(dirpath, name)
            with open(path, "rb") as f:
                contents[os.path.relpath(path, root)] = (f.read(), os.stat(path).st_mode & 0o777)
    return contents


class TestConfigMaterializer:
    """Tests for ConfigMaterializer."""

    def test_writes_all_artifacts(self, settings, tmp_path):
        target = tmp_path / "stack"
        report = ConfigMaterializer().materialize(build_keezer_stack(settings), str(target))

        assert set(report.written) == {
            "docker-compose.yml",
            ".env",
            "initdb/01_kegs.sql",
            "mosquitto/config/mosquitto.conf",
            "mosquitto/config/passwd",
        }
        assert report.changed
        assert (target / "nodered").is_dir()

        compose = yaml.safe_load((target / "docker-compose.yml").read_text())
        assert compose["name"] == "keezer"
        assert list(compose["services"]) == ["mysql", "mosquitto", "nodered"]
        assert compose["services"]["nodered"]["depends_on"] == ["mosquitto", "mysql"]
        assert compose["services"]["mysql"]["environment"]["MYSQL_ROOT_PASSWORD"] == "${MYSQL_ROOT_PASSWORD}"
        assert compose["services"]["mysql"]["healthcheck"]["interval"] == "10s"
        assert set(compose["volumes"]) == {"mysql-data", "mosq-data", "mosq-log"}

    def test_env_file_round_trips_through_dotenv(self, settings, tmp_path):
        ConfigMaterializer().materialize(build_keezer_stack(settings), str(tmp_path))
        values = dotenv_values(tmp_path / ".env")
        assert values["MYSQL_DATABASE"] == "keezer"
        assert values["MQTT_PASSWORD"] == "password"
        assert values["TZ"] == "Pacific/Auckland"
        assert stat.S_IMODE(os.stat(tmp_path / ".env").st_mode) == 0o600

    def test_env_quoting(self):
        rendered = render_env({"B": "it's", "A": "plain"})
        assert rendered == "A='plain'\nB='it\\'s'\n"

    def test_kegs_seed(self, settings, tmp_path):
        ConfigMaterializer().materialize(build_keezer_stack(settings), str(tmp_path))
        sql = (tmp_path / "initdb" / "01_kegs.sql").read_text()
        assert "CREATE TABLE IF NOT EXISTS kegs" in sql
        assert "(1,'Keg 1',50.00,1)," in sql
        assert "(6,'Keg 6',50.00,6);" in sql

    def test_second_run_is_byte_identical(self, settings, tmp_path):
        stack = build_keezer_stack(settings)
        ConfigMaterializer().materialize(stack, str(tmp_path))
        before = read_tree(tmp_path)

        report = ConfigMaterializer().materialize(stack, str(tmp_path))

        assert read_tree(tmp_path) == before
        assert report.written == []
        assert not report.changed

    def test_changed_file_rewritten(self, settings, tmp_path):
        stack = build_keezer_stack(settings)
        ConfigMaterializer().materialize(stack, str(tmp_path))
        (tmp_path / "mosquitto" / "config" / "mosquitto.conf").write_text("edited\n")

        report = ConfigMaterializer().materialize(stack, str(tmp_path))

        assert report.written == ["mosquitto/config/mosquitto.conf"]
        assert "allow_anonymous false" in (tmp_path / "mosquitto" / "config" / "mosquitto.conf").read_text()

    def test_create_only_file_is_not_overwritten(self, settings, tmp_path):
        stack = build_keezer_stack(settings)
        ConfigMaterializer().materialize(stack, str(tmp_path))
        passwd = tmp_path / "mosquitto" / "config" / "passwd"
        passwd.write_text("keezer:$7$hash\n")

        ConfigMaterializer().materialize(stack, str(tmp_path))

        assert passwd.read_text() == "keezer:$7$hash\n"

    def test_template_error_writes_nothing(self, settings, tmp_path):
        stack = build_keezer_stack(settings)
        stack.config_files.append(ConfigFile(path="broken.conf", template="{{ undefined_name }}"))
        target = tmp_path / "stack"

        with pytest.raises(WriteError) as excinfo:
            ConfigMaterializer().materialize(stack, str(target))

        assert excinfo.value.path == "broken.conf"
        assert not target.exists()

    def test_unwritable_target(self, settings, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        with pytest.raises(WriteError):
            ConfigMaterializer().materialize(build_keezer_stack(settings), str(blocker / "stack"))
