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
Converters for writing the effective configuration back out as standalone
docker-compose files, one per pod.
"""
import copy
import logging
import os
import shutil
from typing import Dict, Any, List

import yaml
from jinja2 import Template

from ..MODELS.project import EffectiveConfiguration, Pod, PodType
from ..MODELS.service_definition import ServiceDefinition, DEPENDS_LABEL
from ..errors import CageError, IncompleteExport

logger = logging.getLogger(__name__)

COMPOSE_VERSION = "2"

HEADER_TEMPLATE = Template(
    "# Generated by cage from pod '{{ pod }}'"
    "{% if target %} for target '{{ target }}'{% endif %}.\n"
    "{% if pod_type == 'task' %}# This pod is a one-shot task.\n{% endif %}"
)


class ComposeExporter:
    """
    Writes one compose file per pod from an effective configuration.
    """
    def __init__(self, config: EffectiveConfiguration):
        """
        :param config: The effective configuration to write.
        """
        self.config = config

    def render_pod(self, pod: Pod) -> Dict[str, Any]:
        """
        Builds the compose document for a pod. Dependencies on services in
        other pods move to a label, since compose only knows about the
        services in one file.
        """
        services = {}
        for svc in self.config.services_in_pod(pod.name):
            services[svc.name] = self._render_service(svc)
        document = {key: copy.deepcopy(value) for key, value in pod.raw.items()
                    if key not in ('version', 'services')}
        return dict({'version': COMPOSE_VERSION, 'services': services}, **document)

    def _render_service(self, svc: ServiceDefinition) -> Dict[str, Any]:
        spec = copy.deepcopy(svc.raw)
        local: List[str] = []
        remote: List[str] = []
        for dep in svc.dependencies:
            dep_pod, dep_name = dep.split('/', 1)
            if dep_pod == svc.pod:
                local.append(dep_name)
            else:
                remote.append(dep)

        if local:
            spec['depends_on'] = local
        else:
            spec.pop('depends_on', None)

        links = [link for link in spec.get('links') or []
                 if str(link).split(':', 1)[0] in local]
        if links:
            spec['links'] = links
        else:
            spec.pop('links', None)

        labels = dict(spec.get('labels') or {})
        labels.pop(DEPENDS_LABEL, None)
        if remote:
            labels[DEPENDS_LABEL] = ",".join(remote)
        if labels:
            spec['labels'] = labels
        else:
            spec.pop('labels', None)
        return spec

    def render(self, pod: Pod) -> str:
        header = HEADER_TEMPLATE.render(pod=pod.name, target=self.config.target,
                                        pod_type=pod.pod_type.value)
        body = yaml.safe_dump(self.render_pod(pod), sort_keys=False, default_flow_style=False)
        return header + body

    def write_output(self, output_dir: str) -> str:
        """
        Replaces `output_dir` with the current pod files, for the runtime to
        use. Unresolved values are left for the runtime to deal with.

        :param output_dir: Usually `.cage/pods`.
        :return: The output directory.
        """
        if os.path.exists(output_dir):
            shutil.rmtree(output_dir)
        os.makedirs(output_dir)
        for pod in self.config.pods.values():
            self._write(os.path.join(output_dir, f"{pod.name}.yml"), pod)
        logger.debug("Wrote %d pod files to %s", len(self.config.pods), output_dir)
        return output_dir

    def export(self, export_dir: str) -> str:
        """
        Writes standalone pod files to a new directory. Task pods go in a
        `tasks/` subdirectory.

        :param export_dir: Directory to create.
        :return: The export directory.
        :raises IncompleteExport: If any value is unresolved.
        """
        if os.path.exists(export_dir):
            raise CageError(f"The directory {export_dir} already exists")
        if self.config.unresolved:
            raise IncompleteExport(self.config.unresolved)

        os.makedirs(export_dir)
        for pod in self.config.pods.values():
            if pod.pod_type == PodType.TASK:
                path = os.path.join(export_dir, "tasks", f"{pod.name}.yml")
            else:
                path = os.path.join(export_dir, f"{pod.name}.yml")
            self._write(path, pod)
        logger.info("Exported %d pods to %s", len(self.config.pods), export_dir)
        return export_dir

    def _write(self, path: str, pod: Pod):
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, 'w') as f:
            f.write(self.render(pod))
