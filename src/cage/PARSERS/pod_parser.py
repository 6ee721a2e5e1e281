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
Parsers for pod definition files, per-pod settings and target overlays.
"""
import glob
import logging
import os
from typing import Dict, Any, List, Optional

import yaml
from dotenv import dotenv_values

from ..MODELS.project import RawPod, RawProject, PodType
from ..UTILS.string_interpolation import EnvironmentInterpolator
from ..errors import ConfigNotFound, MalformedConfig, NotFound

logger = logging.getLogger(__name__)

CONFIG_SUFFIX = ".config"


class PodParser:
    """
    Reads the `pods/` tree of a project: one pod per `*.yml` file, optional
    `<pod>.config.yml` settings, and the overlay fragments under
    `pods/targets/<target>/`.
    """
    def __init__(self, root_dir: str, context: Optional[Dict[str, str]] = None):
        """
        Initializes the parser for a project.

        :param root_dir: The project root, which must contain `pods/`.
        :param context: Variables for interpolation. Defaults to the project's
                        `.env` file overlaid with the process environment.
        """
        self.root_dir = root_dir
        self.pods_dir = os.path.join(root_dir, "pods")
        self.context = context if context is not None else self._default_context()

    def _default_context(self) -> Dict[str, str]:
        env_file = os.path.join(self.root_dir, ".env")
        context = {}
        if os.path.isfile(env_file):
            context.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
        context.update(os.environ)
        return context

    def load(self, target: Optional[str] = None) -> RawProject:
        """
        Loads base pods and, if a target is given, its overlay fragments.

        :param target: Name of a subdirectory of `pods/targets`.
        :return: The raw project tree.
        """
        if not os.path.isdir(self.pods_dir):
            raise ConfigNotFound(self.root_dir)

        pods = {}
        for name, pod in self.parse_pod_directory(self.pods_dir).items():
            if pod.enable_in_targets is not None and target not in pod.enable_in_targets:
                logger.debug("Pod %s is not enabled in target %s", name, target)
                continue
            pods[name] = pod

        overlays = {}
        if target:
            overlays = self._load_target(target)

        return RawProject(
            root_dir=self.root_dir,
            target=target,
            pods=pods,
            overlays=overlays,
            sources=self._load_sources(),
        )

    def _load_target(self, target: str) -> Dict[str, RawPod]:
        targets_dir = os.path.join(self.pods_dir, "targets")
        target_dir = os.path.join(targets_dir, target)
        if not os.path.isdir(target_dir):
            if os.path.isdir(targets_dir) and os.listdir(targets_dir):
                raise NotFound(target, kind="target")
            logger.debug("No overlays for target %s", target)
            return {}
        overlays = {}
        for path in self._yaml_files(target_dir):
            name = self._pod_name(path)
            overlays[name] = RawPod(name=name, path=path, data=self.parse_file(path))
        return overlays

    def _load_sources(self) -> Dict[str, str]:
        path = os.path.join(self.root_dir, "config", "sources.yml")
        if not os.path.isfile(path):
            return {}
        data = self._read_yaml(path)
        if not isinstance(data, dict):
            raise MalformedConfig(path, "expected a mapping of alias to git URL")
        return {str(alias): str(url) for alias, url in data.items()}

    def parse_pod_directory(self, pods_dir: str) -> Dict[str, RawPod]:
        """
        Parses every pod file in a directory, in file name order. Files in a
        `tasks/` subdirectory are loaded as task pods.

        :param pods_dir: Directory containing `*.yml` pod files.
        :return: Pods keyed by name.
        """
        pods = {}
        for path in self._yaml_files(pods_dir):
            name = self._pod_name(path)
            settings = self._load_settings(pods_dir, name)
            pods[name] = RawPod(name=name, path=path, data=self.parse_file(path), **settings)

        tasks_dir = os.path.join(pods_dir, "tasks")
        for path in self._yaml_files(tasks_dir):
            name = self._pod_name(path)
            if name in pods:
                raise MalformedConfig(path, f"pod '{name}' is defined more than once")
            pods[name] = RawPod(name=name, path=path, data=self.parse_file(path),
                                pod_type=PodType.TASK)
        return pods

    def _load_settings(self, pods_dir: str, name: str) -> Dict[str, Any]:
        path = os.path.join(pods_dir, f"{name}{CONFIG_SUFFIX}.yml")
        if not os.path.isfile(path):
            return {}
        data = self._read_yaml(path) or {}
        if not isinstance(data, dict):
            raise MalformedConfig(path, "pod settings must be a mapping")
        settings = {}
        if 'pod_type' in data:
            try:
                settings['pod_type'] = PodType(data['pod_type'])
            except ValueError:
                raise MalformedConfig(path, f"unknown pod_type '{data['pod_type']}'",
                                      location="pod_type")
        if 'enable_in_targets' in data:
            targets = data['enable_in_targets']
            if not isinstance(targets, list):
                raise MalformedConfig(path, "expected a list", location="enable_in_targets")
            settings['enable_in_targets'] = [str(t) for t in targets]
        return settings

    def parse_file(self, path: str) -> Dict[str, Any]:
        """
        Parses one pod file or overlay fragment into a normalized tree.

        :param path: Path to the file.
        :return: The interpolated, normalized data.
        """
        logger.debug("Loading %s", path)
        data = self._read_yaml(path)
        return self.parse_data(data, path)

    def parse_from_string(self, content: str, path: str = "<string>") -> Dict[str, Any]:
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise self._yaml_error(path, e)
        return self.parse_data(data, path)

    def parse_data(self, data: Any, path: str) -> Dict[str, Any]:
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise MalformedConfig(path, "top level must be a mapping")
        data = EnvironmentInterpolator.interpolate_tree(data, self.context)

        services = data.get('services')
        if services is None:
            if 'services' in data:
                data['services'] = {}
            return data
        if not isinstance(services, dict):
            raise MalformedConfig(path, "expected a mapping", location="services")

        normalized = {}
        for name, spec in services.items():
            name = str(name)
            if spec is None:
                spec = {}
            if not isinstance(spec, dict):
                raise MalformedConfig(path, "service definition must be a mapping",
                                      location=f"services.{name}")
            normalized[name] = self._normalize_service(spec, path, name)
        data['services'] = normalized
        return data

    def _normalize_service(self, spec: Dict[str, Any], path: str, name: str) -> Dict[str, Any]:
        """
        Rewrites keys that compose allows in several equivalent forms into
        one form, so base and overlay values can be merged.
        """
        spec = dict(spec)
        where = f"services.{name}"

        for key in ('environment', 'labels'):
            if key in spec:
                spec[key] = self._to_mapping(spec[key], path, f"{where}.{key}")

        build = spec.get('build')
        if isinstance(build, str):
            spec['build'] = {'context': build}
        elif build is not None and not isinstance(build, dict):
            raise MalformedConfig(path, "expected a string or mapping", location=f"{where}.build")

        depends_on = spec.get('depends_on')
        if isinstance(depends_on, dict):
            spec['depends_on'] = [str(dep) for dep in depends_on]
        elif isinstance(depends_on, str):
            spec['depends_on'] = [depends_on]

        return spec

    def _to_mapping(self, value: Any, path: str, location: str) -> Dict[str, Any]:
        if value is None:
            return {}
        if isinstance(value, dict):
            return {str(k): (None if v is None else str(v)) for k, v in value.items()}
        if isinstance(value, list):
            mapping = {}
            for entry in value:
                entry = str(entry)
                if '=' in entry:
                    k, v = entry.split('=', 1)
                    mapping[k] = v
                else:
                    mapping[entry] = None
            return mapping
        raise MalformedConfig(path, "expected a mapping or list", location=location)

    def _read_yaml(self, path: str) -> Any:
        try:
            with open(path, 'r') as f:
                return yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise self._yaml_error(path, e)

    def _yaml_error(self, path: str, error: yaml.YAMLError) -> MalformedConfig:
        mark = getattr(error, 'problem_mark', None)
        location = f"{mark.line + 1}:{mark.column + 1}" if mark is not None else None
        problem = getattr(error, 'problem', None) or str(error)
        return MalformedConfig(path, problem, location=location)

    def _yaml_files(self, directory: str) -> List[str]:
        if not os.path.isdir(directory):
            return []
        paths = sorted(glob.glob(os.path.join(directory, "*.yml")))
        return [p for p in paths if not self._pod_name(p).endswith(CONFIG_SUFFIX)]

    @staticmethod
    def _pod_name(path: str) -> str:
        return os.path.splitext(os.path.basename(path))[0]
