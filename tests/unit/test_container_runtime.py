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
Unit tests for the docker compose runtime and git client, with subprocess
calls patched out.
"""
import os
import subprocess
from unittest import mock

import pytest

from cage.MODELS.lifecycle import ContainerStatus, ProcessOptions
from cage.MODELS.service_definition import ServiceDefinition
from cage.RUNNERS.container_runtime import DockerComposeRuntime
from cage.RUNNERS.version_control import GitClient
from cage.errors import RuntimeOperationFailed

WEB = ServiceDefinition(pod="frontend", name="web", image="example/web:1")


def fake_process(code=0):
    process = mock.Mock()
    process.wait.return_value = code
    process.poll.return_value = code
    return process


@pytest.fixture
def popen():
    with mock.patch("cage.RUNNERS.container_runtime.subprocess.Popen") as patched:
        patched.return_value = fake_process()
        yield patched


class TestDockerComposeRuntime:
    """Tests for DockerComposeRuntime."""

    def test_project_name_is_sanitized(self):
        """Compose project names are lower case and stripped of odd characters."""
        assert DockerComposeRuntime("My App!", "/p/.cage/pods").project_name == "myapp"

    def test_start_uses_pod_file(self, popen):
        """Starting a service passes the pod's generated compose file."""
        DockerComposeRuntime("myapp", "/p/.cage/pods").start_container(WEB)
        args = popen.call_args[0][0]
        assert args == ["docker", "compose", "-p", "myapp", "-f",
                        os.path.join("/p/.cage/pods", "frontend.yml"),
                        "up", "-d", "--no-deps", "web"]
        assert popen.call_args[1]["shell"] is False

    def test_failure_raises(self, popen):
        """A non-zero exit from docker raises RuntimeOperationFailed."""
        popen.return_value = fake_process(1)
        with pytest.raises(RuntimeOperationFailed) as excinfo:
            DockerComposeRuntime("myapp", "/pods").stop_container(WEB)
        assert excinfo.value.exit_code == 1
        assert excinfo.value.target == "frontend/web"

    def test_run_flags(self, popen):
        """Process options map onto `docker compose run` flags."""
        options = ProcessOptions(user="app", allocate_tty=False, entrypoint="/bin/bash",
                                 environment={"A": "1"})
        DockerComposeRuntime("myapp", "/pods").run_ephemeral(WEB, ["rake", "db:migrate"], options)
        args = popen.call_args[0][0]
        assert args[args.index("run"):] == [
            "run", "--rm", "--user", "app", "-T", "--entrypoint", "/bin/bash",
            "-e", "A=1", "web", "rake", "db:migrate",
        ]

    def test_run_returns_exit_code(self, popen):
        """The one-off container's exit code is returned."""
        popen.return_value = fake_process(7)
        code = DockerComposeRuntime("myapp", "/pods").run_ephemeral(WEB, None, ProcessOptions())
        assert code == 7

    def test_exec_privileged(self, popen):
        """Privileged exec passes `--privileged`."""
        DockerComposeRuntime("myapp", "/pods").exec_in_container(
            WEB, ["sh"], ProcessOptions(privileged=True))
        args = popen.call_args[0][0]
        assert args[args.index("exec"):] == ["exec", "--privileged", "web", "sh"]

    def test_missing_docker(self, popen):
        """A missing docker binary is reported as a runtime failure."""
        popen.side_effect = FileNotFoundError("docker")
        with pytest.raises(RuntimeOperationFailed):
            DockerComposeRuntime("myapp", "/pods").pull_image(WEB)

    def test_container_status(self):
        """A running container reports RUNNING."""
        runtime = DockerComposeRuntime("myapp", "/pods")
        outputs = [
            subprocess.CompletedProcess([], 0, stdout="abc123\n", stderr=""),
            subprocess.CompletedProcess([], 0, stdout="true\n", stderr=""),
        ]
        with mock.patch("cage.RUNNERS.container_runtime.subprocess.run", side_effect=outputs):
            assert runtime.container_status(WEB) == ContainerStatus.RUNNING

    def test_container_absent(self):
        """No container at all reports ABSENT."""
        runtime = DockerComposeRuntime("myapp", "/pods")
        output = subprocess.CompletedProcess([], 0, stdout="", stderr="")
        with mock.patch("cage.RUNNERS.container_runtime.subprocess.run", return_value=output):
            assert runtime.container_status(WEB) == ContainerStatus.ABSENT


class TestGitClient:
    """Tests for GitClient."""

    def test_clone_branch(self, tmp_path):
        """A `#branch` suffix becomes `--branch`."""
        dest = str(tmp_path / "src" / "rails_hello_dev")
        with mock.patch("cage.RUNNERS.version_control.subprocess.call", return_value=0) as call:
            assert GitClient().clone_repository("https://github.com/x/rails_hello.git#dev", dest)
        assert call.call_args[0][0] == ["git", "clone", "--branch", "dev",
                                        "https://github.com/x/rails_hello.git", dest]

    def test_existing_clone_of_same_repository(self, tmp_path):
        """Cloning over a clone of the same remote does nothing."""
        dest = tmp_path / "rails_hello"
        (dest / ".git").mkdir(parents=True)
        remote = subprocess.CompletedProcess([], 0, stdout="https://github.com/x/rails_hello.git\n")
        with mock.patch("cage.RUNNERS.version_control.subprocess.run", return_value=remote), \
                mock.patch("cage.RUNNERS.version_control.subprocess.call") as call:
            assert not GitClient().clone_repository("https://github.com/x/rails_hello.git", str(dest))
        call.assert_not_called()

    def test_existing_clone_of_other_repository(self, tmp_path):
        """Cloning over a clone of another remote is refused."""
        dest = tmp_path / "rails_hello"
        (dest / ".git").mkdir(parents=True)
        remote = subprocess.CompletedProcess([], 0, stdout="https://github.com/y/other.git\n")
        with mock.patch("cage.RUNNERS.version_control.subprocess.run", return_value=remote):
            with pytest.raises(RuntimeOperationFailed):
                GitClient().clone_repository("https://github.com/x/rails_hello.git", str(dest))

    def test_clone_failure(self, tmp_path):
        """A failed git clone raises."""
        with mock.patch("cage.RUNNERS.version_control.subprocess.call", return_value=128):
            with pytest.raises(RuntimeOperationFailed) as excinfo:
                GitClient().clone_repository("https://github.com/x/app.git", str(tmp_path / "app"))
        assert excinfo.value.exit_code == 128
