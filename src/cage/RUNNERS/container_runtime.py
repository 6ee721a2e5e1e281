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
The container runtime boundary: an abstract interface for the primitives
the orchestrator needs, and an implementation that drives `docker compose`
against the pod files cage writes to `.cage/pods`.
"""
import logging
import os
import re
import subprocess
import threading
from abc import ABC, abstractmethod
from typing import List, Dict, Optional, Iterator

from ..MODELS.lifecycle import ContainerStatus, ProcessOptions
from ..MODELS.service_definition import ServiceDefinition
from ..errors import RuntimeOperationFailed

logger = logging.getLogger(__name__)


class ContainerRuntime(ABC):
    """
    Primitives for building, running and inspecting service containers.
    Every call may block; implementations raise RuntimeOperationFailed.
    """
    @abstractmethod
    def build_image(self, service: ServiceDefinition) -> None:
        ...

    @abstractmethod
    def pull_image(self, service: ServiceDefinition) -> None:
        ...

    @abstractmethod
    def start_container(self, service: ServiceDefinition,
                        overrides: Optional[ProcessOptions] = None) -> None:
        ...

    @abstractmethod
    def stop_container(self, service: ServiceDefinition) -> None:
        ...

    @abstractmethod
    def remove_container(self, service: ServiceDefinition) -> None:
        ...

    @abstractmethod
    def run_ephemeral(self, service: ServiceDefinition, command: Optional[List[str]],
                      overrides: ProcessOptions) -> int:
        ...

    @abstractmethod
    def exec_in_container(self, service: ServiceDefinition, command: List[str],
                          overrides: ProcessOptions) -> int:
        ...

    @abstractmethod
    def stream_logs(self, service: ServiceDefinition, follow: bool = False,
                    tail: Optional[int] = None) -> Iterator[str]:
        ...

    @abstractmethod
    def container_status(self, service: ServiceDefinition) -> ContainerStatus:
        ...

    def terminate(self, service: ServiceDefinition) -> None:
        """
        Interrupts any runtime call still in flight for `service`.
        """


class DockerComposeRuntime(ContainerRuntime):
    """
    Runs `docker compose -p <project> -f .cage/pods/<pod>.yml ...` for each
    primitive. Cage does its own ordering, so services are started with
    `--no-deps`.
    """
    def __init__(self, project_name: str, pods_dir: str, docker: str = "docker"):
        """
        :param project_name: The compose project name.
        :param pods_dir: Directory holding the generated pod files.
        :param docker: The docker executable.
        """
        self.project_name = re.sub(r'[^a-z0-9_-]', '', project_name.lower()) or "cage"
        self.pods_dir = pods_dir
        self.docker = docker
        self._processes: Dict[str, List[subprocess.Popen]] = {}
        self._lock = threading.Lock()

    def _base(self, service: ServiceDefinition) -> List[str]:
        pod_file = os.path.join(self.pods_dir, f"{service.pod}.yml")
        return [self.docker, "compose", "-p", self.project_name, "-f", pod_file]

    def _spawn(self, service: ServiceDefinition, operation: str, args: List[str],
               **kwargs) -> subprocess.Popen:
        logger.debug("Running: %s", " ".join(args))
        try:
            # Avoid shell=True, arguments are passed through verbatim
            process = subprocess.Popen(args, shell=False, **kwargs)
        except OSError as e:
            raise RuntimeOperationFailed(operation, service.qualified_name, str(e), command=args)
        with self._lock:
            self._processes.setdefault(service.qualified_name, []).append(process)
        return process

    def _forget(self, service: ServiceDefinition, process: subprocess.Popen):
        with self._lock:
            running = self._processes.get(service.qualified_name, [])
            if process in running:
                running.remove(process)

    def _call(self, service: ServiceDefinition, operation: str, args: List[str]) -> int:
        process = self._spawn(service, operation, args)
        try:
            return process.wait()
        finally:
            self._forget(service, process)

    def _check(self, service: ServiceDefinition, operation: str, args: List[str]) -> None:
        code = self._call(service, operation, args)
        if code != 0:
            raise RuntimeOperationFailed(operation, service.qualified_name,
                                         command=args, exit_code=code)

    def build_image(self, service: ServiceDefinition) -> None:
        self._check(service, "build", self._base(service) + ["build", service.name])

    def pull_image(self, service: ServiceDefinition) -> None:
        self._check(service, "pull", self._base(service) + ["pull", service.name])

    def start_container(self, service: ServiceDefinition,
                        overrides: Optional[ProcessOptions] = None) -> None:
        args = self._base(service) + ["up", "-d", "--no-deps", service.name]
        self._check(service, "up", args)

    def stop_container(self, service: ServiceDefinition) -> None:
        self._check(service, "stop", self._base(service) + ["stop", service.name])

    def remove_container(self, service: ServiceDefinition) -> None:
        self._check(service, "rm", self._base(service) + ["rm", "-f", service.name])

    def _process_flags(self, overrides: ProcessOptions) -> List[str]:
        flags = []
        if overrides.detached:
            flags.append("-d")
        if overrides.user:
            flags.extend(["--user", overrides.user])
        if not overrides.allocate_tty:
            flags.append("-T")
        return flags

    def run_ephemeral(self, service: ServiceDefinition, command: Optional[List[str]],
                      overrides: ProcessOptions) -> int:
        args = self._base(service) + ["run"]
        if not overrides.detached:
            args.append("--rm")
        args.extend(self._process_flags(overrides))
        if overrides.entrypoint:
            args.extend(["--entrypoint", overrides.entrypoint])
        for key, value in overrides.environment.items():
            args.extend(["-e", f"{key}={value}"])
        args.append(service.name)
        args.extend(command or [])
        return self._call(service, "run", args)

    def exec_in_container(self, service: ServiceDefinition, command: List[str],
                          overrides: ProcessOptions) -> int:
        args = self._base(service) + ["exec"] + self._process_flags(overrides)
        if overrides.privileged:
            args.append("--privileged")
        args.append(service.name)
        args.extend(command)
        return self._call(service, "exec", args)

    def stream_logs(self, service: ServiceDefinition, follow: bool = False,
                    tail: Optional[int] = None) -> Iterator[str]:
        args = self._base(service) + ["logs", "--no-color"]
        if follow:
            args.append("-f")
        if tail is not None:
            args.extend(["--tail", str(tail)])
        args.append(service.name)
        process = self._spawn(service, "logs", args, stdout=subprocess.PIPE, text=True)
        try:
            for line in process.stdout:
                yield line.rstrip("\n")
            code = process.wait()
            if code != 0:
                raise RuntimeOperationFailed("logs", service.qualified_name,
                                             command=args, exit_code=code)
        finally:
            if process.poll() is None:
                process.terminate()
                process.wait()
            process.stdout.close()
            self._forget(service, process)

    def container_status(self, service: ServiceDefinition) -> ContainerStatus:
        args = self._base(service) + ["ps", "-a", "-q", service.name]
        ids = self._capture(service, "status", args).split()
        if not ids:
            return ContainerStatus.ABSENT
        state = self._capture(service, "status",
                              [self.docker, "inspect", "-f", "{{.State.Running}}", ids[0]])
        return ContainerStatus.RUNNING if state.strip() == "true" else ContainerStatus.STOPPED

    def _capture(self, service: ServiceDefinition, operation: str, args: List[str]) -> str:
        logger.debug("Running: %s", " ".join(args))
        try:
            completed = subprocess.run(args, capture_output=True, text=True)
        except OSError as e:
            raise RuntimeOperationFailed(operation, service.qualified_name, str(e), command=args)
        if completed.returncode != 0:
            raise RuntimeOperationFailed(operation, service.qualified_name,
                                         completed.stderr.strip(), command=args,
                                         exit_code=completed.returncode)
        return completed.stdout

    def terminate(self, service: ServiceDefinition, timeout: int = 10) -> None:
        """
        Sends SIGTERM to in-flight docker processes for a service, followed
        by SIGKILL if they do not stop.
        """
        with self._lock:
            processes = list(self._processes.get(service.qualified_name, []))
        for process in processes:
            if process.poll() is not None:
                continue
            logger.info("Interrupting %s", service.qualified_name)
            process.terminate()
            try:
                process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                process.kill()

    def version(self) -> List[str]:
        """Version lines for docker and docker compose."""
        lines = []
        for args in ([self.docker, "--version"], [self.docker, "compose", "version"]):
            try:
                completed = subprocess.run(args, capture_output=True, text=True)
                lines.append(completed.stdout.strip() or completed.stderr.strip())
            except OSError as e:
                lines.append(f"{args[0]}: {e}")
        return lines
