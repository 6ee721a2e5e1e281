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
Dependency resolution for services to determine startup and shutdown order.
"""
import heapq
from typing import List, Dict, Set, Iterable, Optional
from ..MODELS.project import EffectiveConfiguration
from ..errors import DependencyCycle, UnresolvedDependency


class DependencyResolver:
    """
    Resolves the startup and shutdown order of services based on their dependencies.
    """
    def build_graph(self, config: EffectiveConfiguration) -> Dict[str, List[str]]:
        """
        Maps every service to the services it depends on.

        :param config: The effective configuration.
        :return: Dependencies keyed by `pod/service`.
        """
        graph = {}
        for key, svc in config.services.items():
            for dep in svc.dependencies:
                if dep not in config.services:
                    raise UnresolvedDependency(key, dep)
            graph[key] = list(svc.dependencies)
        return graph

    def resolve_order(self,
                      config: EffectiveConfiguration,
                      selection: Optional[Iterable[str]] = None,
                      include_dependencies: bool = True) -> List[str]:
        """
        Determines the order to start services using a topological sort.
        Ties are broken by declaration order, so the result is stable.

        :param config: The effective configuration.
        :param selection: Services to order. Defaults to all of them.
        :param include_dependencies: Also include everything the selection depends on.
        :return: Service keys, dependencies first.
        :raises DependencyCycle: If the dependencies form a cycle.
        """
        graph = self.build_graph(config)
        cycle = self.find_cycle(graph, list(config.services))
        if cycle:
            raise DependencyCycle(cycle)

        nodes = self._select(graph, selection, include_dependencies)
        predecessors = self.predecessors(config, nodes)
        index = config.declaration_index()

        remaining = {node: len(predecessors[node]) for node in nodes}
        dependents: Dict[str, List[str]] = {node: [] for node in nodes}
        for node, deps in predecessors.items():
            for dep in deps:
                dependents[dep].append(node)

        ready = [(index[node], node) for node, count in remaining.items() if count == 0]
        heapq.heapify(ready)
        ordered = []
        while ready:
            _, node = heapq.heappop(ready)
            ordered.append(node)
            for dependent in dependents[node]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, (index[dependent], dependent))
        return ordered

    def predecessors(self, config: EffectiveConfiguration, nodes: Iterable[str]) -> Dict[str, List[str]]:
        """
        For each node, the other nodes it must wait for, following
        dependencies through services that are not among `nodes`.
        """
        graph = self.build_graph(config)
        selected = set(nodes)
        result = {}
        for node in selected:
            found: List[str] = []
            seen: Set[str] = set()
            stack = list(reversed(graph.get(node, [])))
            while stack:
                dep = stack.pop()
                if dep in seen or dep == node:
                    continue
                seen.add(dep)
                if dep in selected:
                    found.append(dep)
                else:
                    stack.extend(reversed(graph.get(dep, [])))
            result[node] = found
        return result

    def dependents(self, config: EffectiveConfiguration, nodes: Iterable[str]) -> Dict[str, List[str]]:
        """
        For each node, the other nodes that depend on it. Used to stop
        dependents before their dependencies.
        """
        nodes = list(nodes)
        result: Dict[str, List[str]] = {node: [] for node in nodes}
        for node, deps in self.predecessors(config, nodes).items():
            for dep in deps:
                result[dep].append(node)
        return result

    def find_cycle(self, graph: Dict[str, List[str]], order: Optional[List[str]] = None) -> Optional[List[str]]:
        """
        Finds one dependency cycle, if any. The walk is depth first with an
        explicit stack, so long dependency chains do not exhaust the
        interpreter's recursion limit.

        :return: The cycle as a list of keys whose first and last entries
                 are the same, or None.
        """
        visited: Set[str] = set()
        for start in order or list(graph):
            if start in visited:
                continue
            processing: List[str] = [start]
            on_path: Set[str] = {start}
            stack = [iter(graph.get(start, []))]
            while stack:
                dep = next(stack[-1], None)
                if dep is None:
                    stack.pop()
                    done = processing.pop()
                    on_path.discard(done)
                    visited.add(done)
                    continue
                if dep in on_path:
                    return processing[processing.index(dep):] + [dep]
                if dep in visited:
                    continue
                processing.append(dep)
                on_path.add(dep)
                stack.append(iter(graph.get(dep, [])))
        return None

    def _select(self, graph: Dict[str, List[str]], selection: Optional[Iterable[str]],
                include_dependencies: bool) -> List[str]:
        if selection is None:
            return list(graph)
        chosen: List[str] = []
        seen: Set[str] = set()
        stack = list(reversed(list(selection)))
        while stack:
            node = stack.pop()
            if node in seen:
                continue
            seen.add(node)
            chosen.append(node)
            if include_dependencies:
                stack.extend(reversed(graph.get(node, [])))
        return chosen
