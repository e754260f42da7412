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
The Keezer base stack: MySQL, Mosquitto and Node-RED.
"""
from typing import List

from .settings import ProvisionSettings
from ..MODELS.service_definition import ServiceSpec, HealthCheck, VolumeMount
from ..MODELS.stack_description import StackDescription, ConfigFile
from ..MANAGERS.post_up_configurator import PostUpStep

KEGS_SQL_TEMPLATE = """\
-- Minimal Keezer base: only the kegs table
CREATE TABLE IF NOT EXISTS kegs (
  id INT PRIMARY KEY,
  name VARCHAR(64) NULL,
  capacity_liters DECIMAL(6,2) NULL,
  tap_number INT NULL,
  created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);
-- Optional: seed some keg rows you can edit later
INSERT IGNORE INTO kegs (id, name, capacity_liters, tap_number)
VALUES
{% for n in range(1, keg_count + 1) -%}
({{ n }},'Keg {{ n }}',{{ "%.2f"|format(capacity_liters) }},{{ n }}){{ "," if not loop.last else ";" }}
{% endfor %}"""

MOSQUITTO_CONF_TEMPLATE = """\
persistence true
persistence_location /mosquitto/data/

listener {{ mqtt_port }}
allow_anonymous false
password_file /mosquitto/config/passwd

# sane limits
max_inflight_messages 50
max_queued_messages 1000
autosave_interval 180
"""

KEG_COUNT = 6
KEG_CAPACITY_LITERS = 50.0
MQTT_PORT = 1883


def build_keezer_stack(settings: ProvisionSettings) -> StackDescription:
    """
    Builds the stack description for the Keezer base services.

    :param settings: Provisioning settings.
    :return: The stack description.
    """
    mysql = ServiceSpec(
        name="mysql",
        image=settings.mysql_image,
        fallback_images=settings.mysql_image_fallbacks,
        container_name=f"{settings.project_name}-mysql",
        environment={
            "MYSQL_DATABASE": "${MYSQL_DATABASE}",
            "MYSQL_USER": "${MYSQL_USER}",
            "MYSQL_PASSWORD": "${MYSQL_PASSWORD}",
            "MYSQL_ROOT_PASSWORD": "${MYSQL_ROOT_PASSWORD}",
            "TZ": "${TZ}",
        },
        volumes=[
            VolumeMount(source="./initdb", target="/docker-entrypoint-initdb.d"),
            VolumeMount(source="mysql-data", target="/var/lib/mysql"),
        ],
        ports=["3306:3306"],
        health_check=HealthCheck(
            test=["CMD-SHELL", "mysqladmin ping -h localhost -u root -p$$MYSQL_ROOT_PASSWORD --silent"],
            interval=10,
            timeout=3,
            retries=30,
        ),
    )

    mosquitto = ServiceSpec(
        name="mosquitto",
        image=settings.mosquitto_image,
        fallback_images=settings.mosquitto_image_fallbacks,
        container_name=f"{settings.project_name}-mqtt",
        volumes=[
            VolumeMount(source="./mosquitto/config", target="/mosquitto/config"),
            VolumeMount(source="mosq-data", target="/mosquitto/data"),
            VolumeMount(source="mosq-log", target="/mosquitto/log"),
        ],
        ports=[f"{MQTT_PORT}:{MQTT_PORT}"],
        health_check=HealthCheck(
            test=["CMD-SHELL", f"nc -z localhost {MQTT_PORT} || exit 1"],
            interval=5,
            timeout=3,
            retries=12,
        ),
    )

    nodered = ServiceSpec(
        name="nodered",
        image=settings.nodered_image,
        fallback_images=settings.nodered_image_fallbacks,
        container_name=f"{settings.project_name}-nodered",
        environment={"TZ": "${TZ}"},
        volumes=[VolumeMount(source="./nodered", target="/data")],
        ports=["1880:1880"],
        depends_on=["mosquitto", "mysql"],
        health_check=HealthCheck(
            test=["CMD", "node", "/healthcheck.js"],
            interval=10,
            timeout=5,
            retries=12,
            start_period=5,
        ),
    )

    return StackDescription(
        project_name=settings.project_name,
        services={svc.name: svc for svc in (mysql, mosquitto, nodered)},
        volumes=["mysql-data", "mosq-data", "mosq-log"],
        directories=["initdb", "mosquitto/config", "nodered"],
        config_files=[
            ConfigFile(path="initdb/01_kegs.sql", template=KEGS_SQL_TEMPLATE),
            ConfigFile(path="mosquitto/config/mosquitto.conf", template=MOSQUITTO_CONF_TEMPLATE),
            # Empty until the credential step fills it in; the broker refuses to boot without it.
            ConfigFile(path="mosquitto/config/passwd", template="", mode=0o600, create_only=True),
        ],
        template_vars=template_context(settings),
        env={
            "TZ": settings.tz,
            "MYSQL_DATABASE": settings.mysql_db,
            "MYSQL_USER": settings.mysql_user,
            "MYSQL_PASSWORD": settings.mysql_pass,
            "MYSQL_ROOT_PASSWORD": settings.mysql_root_pass,
            "MQTT_USER": settings.mqtt_user,
            "MQTT_PASSWORD": settings.mqtt_pass,
        },
    )


def template_context(settings: ProvisionSettings) -> dict:
    """
    Values available to the config file templates.
    """
    return {
        "keg_count": KEG_COUNT,
        "capacity_liters": KEG_CAPACITY_LITERS,
        "mqtt_port": MQTT_PORT,
        "tz": settings.tz,
        "mysql_db": settings.mysql_db,
    }


def keezer_post_up_steps(settings: ProvisionSettings) -> List[PostUpStep]:
    """
    One-time configuration run against the started stack.
    """
    passwd = ["mosquitto_passwd", "-b", "/mosquitto/config/passwd", settings.mqtt_user, settings.mqtt_pass]
    remediation = (
        f"cd {settings.stack_dir} && docker compose exec mosquitto "
        f"{' '.join(passwd)} && docker compose restart mosquitto"
    )
    return [
        PostUpStep(
            name="mqtt-credential",
            service="mosquitto",
            commands=[passwd, ["kill", "-HUP", "1"]],
            remediation=remediation,
            secrets=[settings.mqtt_pass],
        ),
    ]
