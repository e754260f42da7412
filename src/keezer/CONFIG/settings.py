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
Provisioning settings, built once per process from environment overrides.
"""
import os
from typing import Dict, List, Mapping, Optional

from dotenv import dotenv_values
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..exceptions import ConfigurationError


class ProvisionSettings(BaseModel):
    """
    Every tunable of a provisioning run. Field aliases are the environment
    variable names that override them.
    """
    stack_dir: str = Field("/opt/keezer-base", alias="STACK_DIR")
    project_name: str = Field("keezer", alias="COMPOSE_PROJECT_NAME")
    tz: str = Field("Pacific/Auckland", alias="TZ")

    # MySQL
    mysql_db: str = Field("keezer", alias="MYSQL_DB")
    mysql_user: str = Field("keezeruser", alias="MYSQL_USER")
    mysql_pass: str = Field("password1", alias="MYSQL_PASS")
    mysql_root_pass: str = Field("password1", alias="MYSQL_ROOT_PASS")

    # MQTT (Mosquitto)
    mqtt_user: str = Field("keezer", alias="MQTT_USER")
    mqtt_pass: str = Field("password", alias="MQTT_PASS")

    # Images
    mysql_image: str = Field("mysql:8.0", alias="MYSQL_IMAGE")
    mysql_image_fallbacks: List[str] = Field(["mysql:8"], alias="MYSQL_IMAGE_FALLBACKS")
    mosquitto_image: str = Field("eclipse-mosquitto:2", alias="MOSQUITTO_IMAGE")
    mosquitto_image_fallbacks: List[str] = Field(
        ["eclipse-mosquitto:latest"], alias="MOSQUITTO_IMAGE_FALLBACKS"
    )
    nodered_image: str = Field("nodered/node-red:latest", alias="NODERED_IMAGE")
    nodered_image_fallbacks: List[str] = Field(["nodered/node-red:4.0"], alias="NODERED_IMAGE_FALLBACKS")

    # Retry budgets
    pull_attempts: int = Field(4, alias="PULL_ATTEMPTS", ge=1)
    pull_initial_delay: float = Field(2.0, alias="PULL_INITIAL_DELAY", ge=0)
    post_config_attempts: int = Field(5, alias="POST_CONFIG_ATTEMPTS", ge=1)
    post_config_delay: float = Field(3.0, alias="POST_CONFIG_DELAY", ge=0)
    start_concurrency: int = Field(4, alias="START_CONCURRENCY", ge=1)

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = {"populate_by_name": True, "frozen": True}

    @field_validator(
        "mysql_image_fallbacks", "mosquitto_image_fallbacks", "nodered_image_fallbacks",
        mode="before",
    )
    @classmethod
    def _split_list(cls, value):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @classmethod
    def env_names(cls) -> List[str]:
        return [field.alias for field in cls.model_fields.values() if field.alias]

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        env_file: Optional[str] = None,
    ) -> "ProvisionSettings":
        """
        Builds settings from an optional dotenv file and the process environment.
        The process environment wins over the file; unset values keep their defaults.

        :param environ: Environment to read; defaults to os.environ.
        :param env_file: Optional dotenv file with overrides.
        :return: Validated settings.
        :raises ConfigurationError: If an override does not validate.
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, str] = {}

        if env_file:
            if not os.path.exists(env_file):
                raise ConfigurationError(f"Environment file {env_file} not found")
            for key, value in dotenv_values(env_file).items():
                if value is not None:
                    values[key] = value

        for name in cls.env_names():
            if name in environ and environ[name] != "":
                values[name] = environ[name]

        known = set(cls.env_names())
        try:
            return cls.model_validate({k: v for k, v in values.items() if k in known})
        except ValidationError as e:
            error = e.errors()[0]
            variable = error["loc"][0] if error.get("loc") else "?"
            raise ConfigurationError(f"Invalid value for {variable}: {error['msg']}") from e

    @property
    def compose_file(self) -> str:
        return os.path.join(self.stack_dir, "docker-compose.yml")
