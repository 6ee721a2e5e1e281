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
Error taxonomy shared by the loader, composer, resolver and orchestrator.
"""
from typing import List, Optional, Sequence


class CageError(Exception):
    """Base class for every error raised by cage."""


class ConfigNotFound(CageError):
    """Raised when a project root has no pods directory."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"No pods directory found in {path} or any parent directory")


class MalformedConfig(CageError):
    """Raised when a definition file cannot be parsed or has the wrong shape."""

    def __init__(self, path: str, message: str, location: Optional[str] = None):
        self.path = path
        self.location = location
        self.message = message
        where = f"{path}:{location}" if location else path
        super().__init__(f"{where}: {message}")


class ConflictingType(CageError):
    """Raised when base and overlay disagree on the kind of value at one key."""

    def __init__(self, key_path: Sequence[str], base_kind: str, overlay_kind: str,
                 source: Optional[str] = None):
        self.key_path = list(key_path)
        self.base_kind = base_kind
        self.overlay_kind = overlay_kind
        self.source = source
        location = ".".join(self.key_path) or "<root>"
        prefix = f"{source}: " if source else ""
        super().__init__(
            f"{prefix}cannot merge {overlay_kind} over {base_kind} at '{location}'"
        )


class UnresolvedDependency(CageError):
    """Raised when a service depends on something that does not exist."""

    def __init__(self, service: str, reference: str):
        self.service = service
        self.reference = reference
        super().__init__(f"Service '{service}' depends on unknown pod or service '{reference}'")


class DependencyCycle(CageError):
    """Raised when service dependencies form a cycle."""

    def __init__(self, cycle: List[str]):
        self.cycle = list(cycle)
        super().__init__(f"Dependency cycle detected: {' -> '.join(self.cycle)}")


class NotFound(CageError):
    """Raised when a pod or service identifier matches nothing."""

    def __init__(self, token: str, kind: str = "pod or service"):
        self.token = token
        self.kind = kind
        super().__init__(f"Cannot find {kind} '{token}'")


class AmbiguousReference(CageError):
    """Raised when an identifier matches more than one service."""

    def __init__(self, token: str, candidates: List[str]):
        self.token = token
        self.candidates = list(candidates)
        super().__init__(
            f"'{token}' is ambiguous, use one of: {', '.join(self.candidates)}"
        )


class NotRunning(CageError):
    """Raised when exec or shell targets a service without a running container."""

    def __init__(self, service: str):
        self.service = service
        super().__init__(f"Service '{service}' has no running container")


class NoTestCommand(CageError):
    """Raised when a service has no test label and no command was supplied."""

    def __init__(self, service: str, label: str):
        self.service = service
        self.label = label
        super().__init__(
            f"Service '{service}' has no '{label}' label and no test command was given"
        )


class IncompleteExport(CageError):
    """Raised when an export would contain unresolved placeholders."""

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        details = "\n  ".join(self.problems)
        super().__init__(f"Cannot export project with unresolved values:\n  {details}")


class RuntimeOperationFailed(CageError):
    """Wraps a failure reported by the container runtime or version control tool."""

    def __init__(self, operation: str, target: str, message: str = "",
                 command: Optional[List[str]] = None, exit_code: Optional[int] = None):
        self.operation = operation
        self.target = target
        self.command = list(command) if command else []
        self.exit_code = exit_code
        detail = message or (f"exit code {exit_code}" if exit_code is not None else "failed")
        super().__init__(f"{operation} failed for '{target}': {detail}")


class LifecycleFailed(CageError):
    """Aggregate failure of a multi-unit lifecycle operation."""

    def __init__(self, result):
        self.result = result
        failed = ", ".join(result.failed) or "none"
        succeeded = ", ".join(result.succeeded) or "none"
        super().__init__(
            f"{result.operation} failed for: {failed} (succeeded: {succeeded})"
        )


class OperationCancelled(CageError):
    """Raised after an interrupt, carrying what was started and what was not."""

    def __init__(self, operation: str, result=None):
        self.operation = operation
        self.result = result
        message = f"{operation} cancelled"
        if result is not None:
            started = ", ".join(result.attempted) or "none"
            skipped = ", ".join(result.never_attempted) or "none"
            message += f" (attempted: {started}; never attempted: {skipped})"
        super().__init__(message)
