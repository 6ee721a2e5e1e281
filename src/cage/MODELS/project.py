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
Models for pods, raw definition trees and the effective configuration.
"""
from enum import Enum
from typing import List, Dict, Optional, Any

import yaml
from pydantic import BaseModel, ConfigDict

from .service_definition import ServiceDefinition


class PodType(str, Enum):
    """How a pod is treated by lifecycle commands and export."""
    SERVICE = "service"
    TASK = "task"


class RawPod(BaseModel):
    """
    A pod definition file (or target overlay fragment) as read from disk.
    """
    name: str
    path: str
    data: Dict[str, Any] = {}
    pod_type: PodType = PodType.SERVICE
    enable_in_targets: Optional[List[str]] = None


class RawProject(BaseModel):
    """
    Everything the loader read for one invocation: base pods in file order
    and the overlay fragments of the active target.
    """
    root_dir: str
    target: Optional[str] = None
    pods: Dict[str, RawPod] = {}
    overlays: Dict[str, RawPod] = {}
    sources: Dict[str, str] = {}


class Pod(BaseModel):
    """
    A named group of services defined in one file.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    services: List[str] = []
    pod_type: PodType = PodType.SERVICE
    source_file: Optional[str] = None
    raw: Dict[str, Any] = {}


class EffectiveConfiguration(BaseModel):
    """
    The immutable result of composing base pods, a target overlay, default
    tags and mounted sources. Services are keyed by `pod/service` in
    declaration order.
    """
    model_config = ConfigDict(frozen=True)

    target: Optional[str] = None
    pods: Dict[str, Pod] = {}
    services: Dict[str, ServiceDefinition] = {}
    unresolved: List[str] = []
    source_urls: Dict[str, str] = {}
    source_consumers: Dict[str, List[str]] = {}

    def service(self, pod: str, name: str) -> Optional[ServiceDefinition]:
        return self.services.get(f"{pod}/{name}")

    def services_in_pod(self, pod: str) -> List[ServiceDefinition]:
        found = self.pods.get(pod)
        if found is None:
            return []
        return [self.services[f"{pod}/{name}"] for name in found.services]

    def services_named(self, name: str) -> List[ServiceDefinition]:
        return [svc for svc in self.services.values() if svc.name == name]

    def declaration_index(self) -> Dict[str, int]:
        return {key: i for i, key in enumerate(self.services)}

    def to_base(self) -> Dict[str, RawPod]:
        """
        Re-express this configuration as base pods so it can be composed again.
        """
        base = {}
        for name, pod in self.pods.items():
            base[name] = RawPod(
                name=name,
                path=pod.source_file or f"{name}.yml",
                data=pod.raw,
                pod_type=pod.pod_type,
            )
        return base

    def to_yaml(self) -> str:
        """A stable text rendering, identical for identical inputs."""
        document = {
            "target": self.target,
            "pods": {name: pod.raw for name, pod in self.pods.items()},
            "unresolved": list(self.unresolved),
        }
        return yaml.safe_dump(document, sort_keys=False, default_flow_style=False)
