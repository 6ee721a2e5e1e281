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
Shared fixtures: an in-memory container runtime, a git client that never
touches the network, and a small sample project on disk.
"""
import os
import threading
from typing import Dict, List, Optional

import pytest

from cage.MODELS.lifecycle import ContainerStatus, ProcessOptions
from cage.RUNNERS.container_runtime import ContainerRuntime
from cage.errors import RuntimeOperationFailed

SAMPLE_PROJECT = {
    "pods/db.yml": """\
services:
  db:
    image: "postgres:15"
    environment:
      POSTGRES_PASSWORD: secret
""",
    "pods/frontend.yml": """\
services:
  web:
    image: "example/web:latest"
    build: "https://github.com/example/rails_hello.git"
    depends_on:
      - db
    labels:
      io.fdy.cage.test: "rake test"
""",
    "pods/migrate.yml": """\
services:
  migrate:
    image: "example/web:latest"
    command: ["rake", "db:migrate"]
    depends_on:
      - db
""",
    "pods/migrate.config.yml": "pod_type: task\n",
    "pods/targets/development/frontend.yml": """\
services:
  web:
    environment:
      APP_ENV: development
""",
    "pods/targets/test/frontend.yml": """\
services:
  web:
    environment:
      APP_ENV: test
""",
}


def write_files(root, files: Dict[str, str]) -> str:
    for rel_path, content in files.items():
        path = os.path.join(str(root), rel_path)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, 'w') as f:
            f.write(content)
    return str(root)


class FakeRuntime(ContainerRuntime):
    """
    Records every primitive instead of talking to docker.

    `failures` maps `(operation, "pod/service")` to an error message and
    `on_call` maps the same keys to a callable run before the primitive
    returns.
    """
    def __init__(self):
        self.calls: List[tuple] = []
        self.failures: Dict[tuple, str] = {}
        self.on_call: Dict[tuple, object] = {}
        self.statuses: Dict[str, ContainerStatus] = {}
        self.log_lines: Dict[str, List[str]] = {}
        self.exit_code = 0
        self.terminated: List[str] = []
        self._lock = threading.Lock()

    def _record(self, operation: str, service, *extra):
        key = service.qualified_name
        with self._lock:
            self.calls.append((operation, key) + extra)
        callback = self.on_call.get((operation, key))
        if callback is not None:
            callback()
        if (operation, key) in self.failures:
            raise RuntimeOperationFailed(operation, key, self.failures[(operation, key)])

    def called(self, operation: str) -> List[str]:
        return [call[1] for call in self.calls if call[0] == operation]

    def build_image(self, service):
        self._record("build", service)

    def pull_image(self, service):
        self._record("pull", service)

    def start_container(self, service, overrides: Optional[ProcessOptions] = None):
        self._record("up", service)
        self.statuses[service.qualified_name] = ContainerStatus.RUNNING

    def stop_container(self, service):
        self._record("stop", service)
        self.statuses[service.qualified_name] = ContainerStatus.STOPPED

    def remove_container(self, service):
        self._record("rm", service)
        self.statuses.pop(service.qualified_name, None)

    def run_ephemeral(self, service, command, overrides):
        self._record("run", service, list(command or []), overrides)
        return self.exit_code

    def exec_in_container(self, service, command, overrides):
        self._record("exec", service, list(command), overrides)
        return self.exit_code

    def stream_logs(self, service, follow=False, tail=None):
        self._record("logs", service, follow, tail)
        lines = self.log_lines.get(service.qualified_name, [])
        if tail is not None:
            lines = lines[-tail:] if tail else []
        for line in lines:
            yield line

    def container_status(self, service):
        return self.statuses.get(service.qualified_name, ContainerStatus.ABSENT)

    def terminate(self, service):
        self.terminated.append(service.qualified_name)


class FakeGit:
    """Creates an empty directory in place of a clone."""
    def __init__(self):
        self.clones: List[tuple] = []

    def clone_repository(self, url: str, dest_path: str) -> bool:
        self.clones.append((url, dest_path))
        os.makedirs(os.path.join(dest_path, ".git"), exist_ok=True)
        return True

    def version(self) -> str:
        return "git version 0.0.0 (fake)"


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def git():
    return FakeGit()


@pytest.fixture
def sample_project(tmp_path):
    """A project with a database, a web frontend and a migration task."""
    return write_files(tmp_path / "myapp", SAMPLE_PROJECT)


@pytest.fixture
def make_project(tmp_path):
    """Writes a project from a mapping of relative path to file content."""
    def make(files: Dict[str, str], name: str = "myapp") -> str:
        return write_files(tmp_path / name, files)
    return make
