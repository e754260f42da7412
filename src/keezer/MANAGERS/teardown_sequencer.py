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
Teardown of everything a provisioning run created.
"""
import os
import shutil
from dataclasses import dataclass, field
from typing import Callable, List

from .service_manager import ServiceManager
from ..exceptions import CommandError
from ..UTILS.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class TeardownReport:
    """Resources removed, and removals skipped because the target was already gone."""

    removed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    def tag(self, resource: str, removed: bool) -> None:
        (self.removed if removed else self.skipped).append(resource)


class TeardownSequencer:
    """
    Stops and removes the project's containers, volumes and networks, prunes
    leftovers and deletes the project directory. Safe on a partial or
    already torn down system.
    """
    def __init__(self, service_manager: ServiceManager, project_dir: str):
        """
        Initializes the teardown sequencer.

        :param service_manager: Collaborator owning the resources.
        :param project_dir: Directory holding the materialized stack.
        """
        self.service_manager = service_manager
        self.project_dir = project_dir

    def down(self) -> TeardownReport:
        """
        Removes every managed resource. Irreversible.

        :return: Report of removed and skipped resources.
        """
        report = TeardownReport()

        for container in self._list(report, "container", self.service_manager.list_containers):
            self.service_manager.stop_container(container)
            report.tag(f"container:{container}", self.service_manager.remove_container(container))

        for volume in self._list(report, "volume", self.service_manager.list_volumes):
            report.tag(f"volume:{volume}", self.service_manager.remove_volume(volume))

        for network in self._list(report, "network", self.service_manager.list_networks):
            report.tag(f"network:{network}", self.service_manager.remove_network(network))

        try:
            self.service_manager.prune()
        except CommandError as e:
            logger.warning("Container runtime unavailable, prune skipped", error=str(e))
            report.tag("prune", False)

        if os.path.isdir(self.project_dir):
            shutil.rmtree(self.project_dir)
            report.tag(f"directory:{self.project_dir}", True)
        else:
            report.tag(f"directory:{self.project_dir}", False)

        logger.info("Stack torn down", removed=len(report.removed), skipped=len(report.skipped))
        return report

    def _list(self, report: TeardownReport, kind: str, lister: Callable[[], List[str]]) -> List[str]:
        """
        Lists resources of one kind. An unreachable runtime yields nothing and
        is tagged skipped.
        """
        try:
            return lister()
        except CommandError as e:
            logger.warning("Container runtime unavailable, listing skipped", kind=kind, error=str(e))
            report.tag(f"{kind}:*", False)
            return []
