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
The project facade: loads and composes configuration for one invocation
and wires the resolver, orchestrator, source manager and hooks together.
"""
import logging
from typing import Dict, List, Optional, Sequence, Iterator, Tuple

from ..BUILDERS.config_composer import ConfigComposer
from ..CONVERTERS.to_compose import ComposeExporter
from ..MODELS.lifecycle import LifecycleResult, ContainerStatus, ProcessOptions, LogsOptions
from ..MODELS.project import EffectiveConfiguration, RawProject
from ..MODELS.project_context import ProjectContext
from ..MODELS.service_definition import ServiceDefinition
from ..MODELS.source_alias import SourceAlias
from ..PARSERS.default_tags import DefaultTags
from ..PARSERS.pod_parser import PodParser
from ..RUNNERS.container_runtime import ContainerRuntime, DockerComposeRuntime
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..RUNNERS.identifier_resolver import IdentifierResolver
from ..RUNNERS.version_control import GitClient
from .hook_manager import HookManager
from .service_orchestrator import ServiceOrchestrator
from .source_manager import SourceManager

logger = logging.getLogger(__name__)


class ProjectManager:
    """
    Everything one invocation needs, driven by an explicit ProjectContext.
    """
    def __init__(self,
                 context: ProjectContext,
                 runtime: Optional[ContainerRuntime] = None,
                 git: Optional[GitClient] = None,
                 env: Optional[Dict[str, str]] = None):
        """
        :param context: The invocation context.
        :param runtime: Container runtime; docker compose by default.
        :param git: Git client for cloning sources.
        :param env: Variables for interpolating pod files.
        """
        self.context = context
        self.parser = PodParser(context.root_dir, env)
        self.composer = ConfigComposer()
        self.dependency_resolver = DependencyResolver()
        self.default_tags = DefaultTags()
        if context.default_tags_path:
            self.default_tags = DefaultTags.parse(context.default_tags_path)
        self.sources = SourceManager(context.src_dir, context.source_state_file, git)
        self.runtime = runtime or DockerComposeRuntime(context.project_name,
                                                       context.output_pods_dir)
        self.hooks = HookManager(context.hooks_dir)
        self._raw: Optional[RawProject] = None
        self._config: Optional[EffectiveConfiguration] = None
        self._orchestrator: Optional[ServiceOrchestrator] = None

    @property
    def name(self) -> str:
        return self.context.project_name

    def load(self) -> EffectiveConfiguration:
        """
        Reads the pod files and composes them. Composition is all-or-nothing:
        any configuration error leaves the previous configuration in place.
        """
        raw = self.parser.load(self.context.target)
        self.sources.register(raw.sources)
        config = self.compose(raw)
        self.sources.register(config.source_urls)
        self._raw = raw
        self._config = config
        self._orchestrator = None
        return config

    def compose(self, raw: RawProject) -> EffectiveConfiguration:
        config = self.composer.compose(
            raw.pods,
            raw.overlays,
            self.default_tags,
            mounted=self.sources.mounted_paths(),
            target=raw.target,
        )
        self.dependency_resolver.resolve_order(config)
        logger.debug("Composed %d services in %d pods for target %s",
                     len(config.services), len(config.pods), raw.target)
        return config

    def _recompose(self):
        if self._raw is None:
            self.load()
            return
        self._config = self.compose(self._raw)
        self._orchestrator = None

    def _ensure_loaded(self):
        if self._config is None:
            self.load()

    @property
    def config(self) -> EffectiveConfiguration:
        if self._config is None:
            self.load()
        return self._config

    @property
    def resolver(self) -> IdentifierResolver:
        return IdentifierResolver(self.config)

    @property
    def orchestrator(self) -> ServiceOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = ServiceOrchestrator(
                self.config,
                self.runtime,
                max_parallel=self.context.max_parallel,
                fail_fast=self.context.fail_fast,
            )
        return self._orchestrator

    def _hook_env(self) -> Dict[str, str]:
        return {"CAGE_PROJECT": self.name, "CAGE_TARGET": self.context.target}

    def output(self) -> str:
        """
        Writes the effective configuration to `.cage/pods` for the runtime.
        """
        return ComposeExporter(self.config).write_output(self.context.output_pods_dir)

    def export(self, export_dir: str) -> str:
        """
        Exports standalone pod files for the current target.
        """
        if not self.default_tags:
            logger.warning("Exporting project without --default-tags")
        return ComposeExporter(self.config).export(export_dir)

    def build(self, tokens: Sequence[str] = ()) -> LifecycleResult:
        return self.orchestrator.build(self.resolver.resolve_many(tokens))

    def pull(self, tokens: Sequence[str] = ()) -> LifecycleResult:
        result = self.orchestrator.pull(self.resolver.resolve_many(tokens))
        self.hooks.invoke("pull", self._hook_env())
        return result

    def up(self, tokens: Sequence[str] = ()) -> LifecycleResult:
        result = self.orchestrator.up(self.resolver.resolve_many(tokens, include_tasks=False))
        self.hooks.invoke("up", self._hook_env())
        return result

    def stop(self, tokens: Sequence[str] = ()) -> LifecycleResult:
        return self.orchestrator.stop(self.resolver.resolve_many(tokens, include_tasks=False))

    def rm(self, tokens: Sequence[str] = ()) -> LifecycleResult:
        return self.orchestrator.rm(self.resolver.resolve_many(tokens))

    def run(self, token: str, command: Optional[List[str]] = None,
            options: Optional[ProcessOptions] = None) -> int:
        return self.orchestrator.run(self.resolver.resolve(token), command, options)

    def exec(self, token: str, command: List[str],
             options: Optional[ProcessOptions] = None) -> int:
        return self.orchestrator.exec(self.resolver.resolve(token), command, options)

    def shell(self, token: str, options: Optional[ProcessOptions] = None) -> int:
        return self.orchestrator.shell(self.resolver.resolve(token), options)

    def test(self, token: str, command: Optional[List[str]] = None,
             options: Optional[ProcessOptions] = None) -> int:
        return self.orchestrator.test(self.resolver.resolve(token), command, options)

    def logs(self, tokens: Sequence[str] = (),
             options: Optional[LogsOptions] = None) -> Iterator[Tuple[ServiceDefinition, str]]:
        return self.orchestrator.logs(self.resolver.resolve_many(tokens), options)

    def status(self, tokens: Sequence[str] = ()) -> List[Tuple[ServiceDefinition, ContainerStatus, List[str]]]:
        """
        Container status and mounted sources of each selected service.
        """
        services = self.resolver.resolve_many(tokens)
        statuses = self.orchestrator.status(services)
        mounted = self.sources.mounted_paths()
        rows = []
        for svc in services:
            aliases = [alias for alias, consumers in self.config.source_consumers.items()
                       if svc.qualified_name in consumers and alias in mounted]
            rows.append((svc, statuses[svc.qualified_name], aliases))
        return rows

    def source_list(self) -> List[SourceAlias]:
        self._ensure_loaded()
        return self.sources.aliases()

    def source_clone(self, alias: str) -> SourceAlias:
        self._ensure_loaded()
        return self.sources.clone(alias)

    def source_mount(self, alias: str) -> SourceAlias:
        consumers = self.config.source_consumers.get(alias, [])
        source = self.sources.mount(alias, consumers)
        self._recompose()
        return source

    def source_unmount(self, alias: str) -> SourceAlias:
        self._ensure_loaded()
        source = self.sources.unmount(alias)
        self._recompose()
        return source
