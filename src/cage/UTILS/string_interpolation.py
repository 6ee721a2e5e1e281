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
Utilities for string interpolation using environment variables.
"""
import re
from typing import Any, Dict, List, Tuple

PLACEHOLDER_PATTERN = re.compile(r'\$\{([^}:]+)(?::(-|\+)([^}]*))?\}')


class EnvironmentInterpolator:
    """
    Utility for interpolating environment variables in strings.
    Supports ${VAR}, ${VAR:-default}, and ${VAR:+value}.
    """
    @staticmethod
    def interpolate(template: str, context: Dict[str, str], strict: bool = True) -> str:
        """
        Interpolates environment variables in the template string using the provided context.

        :param template: The string containing ${VAR} placeholders.
        :param context: The environment variables context.
        :param strict: Raise on unset variables instead of leaving them in place.
        :return: The interpolated string.
        :raises KeyError: If strict and a variable is not found and no default is provided.
        """
        def replace(match):
            var_name = match.group(1)
            modifier = match.group(2)  # None, '-', or '+'
            alt_value = match.group(3)

            value = context.get(var_name)

            if modifier == '-':
                return value if value else alt_value
            elif modifier == '+':
                return alt_value if value else ''
            if value is not None:
                return value
            if strict:
                raise KeyError(f"Variable {var_name} not found in context")
            return match.group(0)

        return PLACEHOLDER_PATTERN.sub(replace, template)

    @classmethod
    def interpolate_tree(cls, node: Any, context: Dict[str, str]) -> Any:
        """
        Interpolates every string in a parsed YAML tree, leaving unset
        variables without defaults in place.
        """
        if isinstance(node, dict):
            return {key: cls.interpolate_tree(value, context) for key, value in node.items()}
        if isinstance(node, list):
            return [cls.interpolate_tree(value, context) for value in node]
        if isinstance(node, str):
            return cls.interpolate(node, context, strict=False)
        return node

    @staticmethod
    def find_placeholders(node: Any, path: Tuple[str, ...] = ()) -> List[Tuple[str, str]]:
        """
        Lists `(key path, placeholder)` for every unresolved ${VAR} in a tree.
        """
        found = []
        if isinstance(node, dict):
            for key, value in node.items():
                found.extend(EnvironmentInterpolator.find_placeholders(value, path + (str(key),)))
        elif isinstance(node, list):
            for i, value in enumerate(node):
                found.extend(EnvironmentInterpolator.find_placeholders(value, path + (str(i),)))
        elif isinstance(node, str):
            for match in PLACEHOLDER_PATTERN.finditer(node):
                found.append((".".join(path), match.group(0)))
        return found
