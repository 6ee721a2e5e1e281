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
Composition of base pods, target overlays, default tags and mounted
source trees into one effective configuration.
"""
import copy
import logging
import shlex
from typing import Dict, Any, List, Optional, Tuple

from pydantic import ValidationError

from ..MODELS.project import RawPod, Pod, EffectiveConfiguration
from ..MODELS.service_definition import (
    ServiceDefinition, SOURCE_LABEL, SRCDIR_LABEL, DEPENDS_LABEL, DEFAULT_SRCDIR,
)
from ..MODELS.source_alias import is_git_url, alias_for_url
from ..PARSERS.default_tags import DefaultTags
from ..UTILS.string_interpolation import EnvironmentInterpolator
from ..errors import (
    ConflictingType, MalformedConfig, UnresolvedDependency, AmbiguousReference,
)

logger = logging.getLogger(__name__)


def node_kind(value: Any) -> str:
    """Classifies a tree node as mapping, sequence, null or scalar."""
    if isinstance(value, dict):
        return "mapping"
    if isinstance(value, list):
        return "sequence"
    if value is None:
        return "null"
    return "scalar"


def merge_trees(base: Any, overlay: Any, path: Tuple[str, ...] = (),
                source: Optional[str] = None) -> Any:
    """
    Merges `overlay` onto `base` without modifying either.

    Mappings merge key by key, overlay winning on scalars. Sequences are
    atomic: the overlay replaces the base. A null on either side yields the
    other side. Any other change of kind raises ConflictingType.

    :param base: The base value.
    :param overlay: The overriding value.
    :param path: Key path of the values, for error messages.
    :param source: The file the overlay came from, for error messages.
    :return: The merged value.
    """
    if overlay is None:
        return copy.deepcopy(base)
    if base is None:
        return copy.deepcopy(overlay)

    base_kind = node_kind(base)
    overlay_kind = node_kind(overlay)
    if base_kind != overlay_kind:
        raise ConflictingType(path, base_kind, overlay_kind, source)

    if base_kind == "mapping":
        merged = {key: copy.deepcopy(value) for key, value in base.items()}
        for key, value in overlay.items():
            if key in merged:
                merged[key] = merge_trees(merged[key], value, path + (str(key),), source)
            else:
                merged[key] = copy.deepcopy(value)
        return merged
    return copy.deepcopy(overlay)


def _build_section(spec: Dict[str, Any]) -> Dict[str, Any]:
    build = spec.get('build') or {}
    if isinstance(build, str):
        return {'context': build}
    return build


class ConfigComposer:
    """
    Composes the effective configuration. `compose` has no side effects and
    gives identical output for identical input.
    """
    def compose(self,
                base: Dict[str, RawPod],
                overlay: Optional[Dict[str, RawPod]] = None,
                default_tags: Optional[DefaultTags] = None,
                mounted: Optional[Dict[str, str]] = None,
                target: Optional[str] = None) -> EffectiveConfiguration:
        """
        :param base: Base pods in declaration order.
        :param overlay: Target overlay fragments keyed by pod name.
        :param default_tags: Tags for images that are still untagged after merging.
        :param mounted: Local clone paths of mounted source aliases.
        :param target: Name of the target, recorded on the result.
        :return: The effective configuration.
        """
        overlay = overlay or {}
        default_tags = default_tags or DefaultTags()
        mounted = mounted or {}

        merged_pods: List[Tuple[RawPod, Dict[str, Any]]] = []
        for name, pod in base.items():
            data = pod.data
            if name in overlay:
                data = merge_trees(pod.data, overlay[name].data, source=overlay[name].path)
            merged_pods.append((pod, copy.deepcopy(data)))
        for name, fragment in overlay.items():
            if name not in base:
                logger.debug("Target adds pod %s", name)
                merged_pods.append((fragment, copy.deepcopy(fragment.data)))

        unresolved: List[str] = []
        source_urls: Dict[str, str] = {}
        source_consumers: Dict[str, List[str]] = {}
        specs: Dict[str, Tuple[str, str, Dict[str, Any], str]] = {}
        pod_services: Dict[str, List[str]] = {}

        for pod, data in merged_pods:
            services = data.get('services') or {}
            if not isinstance(services, dict):
                raise MalformedConfig(pod.path, "expected a mapping", location="services")
            data['services'] = services
            pod_services[pod.name] = list(services)
            for svc_name, spec in services.items():
                key = f"{pod.name}/{svc_name}"
                if not isinstance(spec, dict):
                    raise MalformedConfig(pod.path, "service definition must be a mapping",
                                          location=f"services.{svc_name}")
                self._apply_default_tag(key, spec, default_tags, unresolved, pod.path)
                alias = self._apply_source_mount(key, spec, mounted, source_urls)
                if alias:
                    source_consumers.setdefault(alias, []).append(key)
                for location, placeholder in EnvironmentInterpolator.find_placeholders(spec):
                    unresolved.append(f"{key}: unresolved {placeholder} at '{location}'")
                specs[key] = (pod.name, svc_name, spec, pod.path)

        services_out: Dict[str, ServiceDefinition] = {}
        for key, (pod_name, svc_name, spec, path) in specs.items():
            references = self._dependency_references(spec)
            dependencies: List[str] = []
            for reference in references:
                for resolved in self._resolve_dependency(key, pod_name, reference, pod_services):
                    if resolved not in dependencies:
                        dependencies.append(resolved)
            services_out[key] = self._build_service(pod_name, svc_name, spec, references,
                                                    dependencies, path)

        pods_out = {}
        for pod, data in merged_pods:
            pods_out[pod.name] = Pod(
                name=pod.name,
                services=pod_services[pod.name],
                pod_type=pod.pod_type,
                source_file=pod.path,
                raw=data,
            )

        return EffectiveConfiguration(
            target=target,
            pods=pods_out,
            services=services_out,
            unresolved=unresolved,
            source_urls=source_urls,
            source_consumers=source_consumers,
        )

    def _apply_default_tag(self, key: str, spec: Dict[str, Any], default_tags: DefaultTags,
                           unresolved: List[str], path: str):
        image = spec.get('image')
        if image is None:
            return
        if not isinstance(image, str):
            raise MalformedConfig(path, "image must be a string", location=f"{key}.image")
        try:
            tagged = default_tags.apply(image)
        except ValueError as e:
            raise MalformedConfig(path, str(e), location=f"{key}.image")
        if tagged is None:
            unresolved.append(f"{key}: image '{image}' has no tag and no default tag")
        else:
            spec['image'] = tagged

    def _apply_source_mount(self, key: str, spec: Dict[str, Any], mounted: Dict[str, str],
                            source_urls: Dict[str, str]) -> Optional[str]:
        """
        Works out which source alias a service uses, and if that alias is
        mounted, points the build at the local clone and bind-mounts it.
        """
        labels = spec.get('labels') or {}
        build = _build_section(spec)
        context = build.get('context')

        alias = labels.get(SOURCE_LABEL)
        if is_git_url(context):
            derived = alias_for_url(context)
            source_urls.setdefault(derived, context)
            alias = alias or derived
        if not alias:
            return None

        host_path = mounted.get(alias)
        if host_path is None:
            return alias

        srcdir = labels.get(SRCDIR_LABEL) or DEFAULT_SRCDIR
        mount = f"{host_path}:{srcdir}"
        volumes = list(spec.get('volumes') or [])
        if mount not in volumes:
            volumes.append(mount)
        spec['volumes'] = volumes
        if is_git_url(context):
            spec['build'] = dict(build, context=host_path)
        spec['labels'] = dict(labels, **{SOURCE_LABEL: alias})
        logger.debug("Mounted source %s into %s at %s", alias, key, srcdir)
        return alias

    def _dependency_references(self, spec: Dict[str, Any]) -> List[str]:
        references = []
        for dep in spec.get('depends_on') or []:
            references.append(str(dep))
        for link in spec.get('links') or []:
            references.append(str(link).split(':', 1)[0])
        extra = (spec.get('labels') or {}).get(DEPENDS_LABEL)
        if extra:
            references.extend(ref.strip() for ref in extra.split(',') if ref.strip())
        seen = []
        for ref in references:
            if ref not in seen:
                seen.append(ref)
        return seen

    def _resolve_dependency(self, key: str, pod: str, reference: str,
                            pod_services: Dict[str, List[str]]) -> List[str]:
        """
        Resolves a dependency reference: `pod/service`, then a service in the
        same pod, then a pod name, then a service name unique to one pod.
        """
        if '/' in reference:
            ref_pod, ref_service = reference.split('/', 1)
            if ref_service in pod_services.get(ref_pod, []):
                return [reference]
            raise UnresolvedDependency(key, reference)
        if reference in pod_services.get(pod, []):
            return [f"{pod}/{reference}"]
        if reference in pod_services:
            return [f"{reference}/{name}" for name in pod_services[reference]]
        matches = [f"{p}/{reference}" for p, names in pod_services.items() if reference in names]
        if len(matches) == 1:
            return matches
        if len(matches) > 1:
            raise AmbiguousReference(reference, matches)
        raise UnresolvedDependency(key, reference)

    def _build_service(self, pod: str, name: str, spec: Dict[str, Any], references: List[str],
                       dependencies: List[str], path: str) -> ServiceDefinition:
        build = _build_section(spec)
        try:
            return ServiceDefinition(
                pod=pod,
                name=name,
                image=spec.get('image'),
                build_context=build.get('context'),
                dockerfile=build.get('dockerfile'),
                command=self._to_list(spec.get('command')),
                entrypoint=self._to_list(spec.get('entrypoint')),
                working_dir=spec.get('working_dir'),
                user=None if spec.get('user') is None else str(spec.get('user')),
                environment={k: '' if v is None else str(v)
                             for k, v in (spec.get('environment') or {}).items()},
                labels={k: '' if v is None else str(v)
                        for k, v in (spec.get('labels') or {}).items()},
                volumes=[self._volume_to_string(v) for v in spec.get('volumes') or []],
                depends_on=references,
                dependencies=dependencies,
                raw=spec,
            )
        except ValidationError as e:
            raise MalformedConfig(path, str(e), location=f"services.{name}")

    def _to_list(self, val: Any) -> List[str]:
        """
        Helper to ensure a value is a list of strings.

        :param val: The value to convert.
        :return: A list of strings.
        """
        if val is None:
            return []
        if isinstance(val, str):
            return shlex.split(val)
        return [str(v) for v in val]

    def _volume_to_string(self, volume: Any) -> str:
        if isinstance(volume, dict):
            text = f"{volume.get('source', '')}:{volume.get('target', '')}"
            if volume.get('read_only'):
                text += ":ro"
            return text
        return str(volume)
