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
Resolution of user-supplied pod and service identifiers.
"""
from typing import List, Sequence
from ..MODELS.project import EffectiveConfiguration, PodType
from ..MODELS.service_definition import ServiceDefinition
from ..errors import NotFound, AmbiguousReference


class IdentifierResolver:
    """
    Maps `pod`, `pod/service` or bare `service` tokens to services.
    Ambiguous tokens are an error; no match is ever picked implicitly.
    """
    def __init__(self, config: EffectiveConfiguration):
        """
        :param config: The effective configuration to resolve against.
        """
        self.config = config

    def resolve_selection(self, token: str) -> List[ServiceDefinition]:
        """
        Resolves a token to every service it names.

        :param token: `pod/service`, a pod name, or a service name.
        :return: The matching services in declaration order.
        """
        if '/' in token:
            return [self._qualified(token)]
        if token in self.config.pods:
            return self.config.services_in_pod(token)
        matches = self.config.services_named(token)
        if not matches:
            raise NotFound(token)
        if len(matches) > 1:
            raise AmbiguousReference(token, [svc.qualified_name for svc in matches])
        return matches

    def resolve(self, token: str) -> ServiceDefinition:
        """
        Resolves a token that must name exactly one service. A pod name
        selects the pod's only service, or the service sharing its name.

        :param token: `pod/service`, a pod name, or a service name.
        :return: The service.
        """
        if '/' not in token and token in self.config.pods:
            services = self.config.services_in_pod(token)
            if len(services) == 1:
                return services[0]
            for svc in services:
                if svc.name == token:
                    return svc
            if not services:
                raise NotFound(token, kind="service in pod")
            raise AmbiguousReference(token, [svc.qualified_name for svc in services])
        return self.resolve_selection(token)[0]

    def resolve_many(self, tokens: Sequence[str], include_tasks: bool = True) -> List[ServiceDefinition]:
        """
        Resolves several tokens, or every service when there are none.

        :param tokens: Tokens from the command line.
        :param include_tasks: Include task pods when selecting everything.
        :return: The services, without duplicates, in the order named.
        """
        if not tokens:
            return [svc for svc in self.config.services.values()
                    if include_tasks or self.config.pods[svc.pod].pod_type != PodType.TASK]
        selected = []
        seen = set()
        for token in tokens:
            for svc in self.resolve_selection(token):
                if svc.qualified_name not in seen:
                    seen.add(svc.qualified_name)
                    selected.append(svc)
        return selected

    def _qualified(self, token: str) -> ServiceDefinition:
        pod, name = token.split('/', 1)
        if pod not in self.config.pods:
            raise NotFound(pod, kind="pod")
        svc = self.config.service(pod, name)
        if svc is None:
            raise NotFound(token, kind="service")
        return svc
