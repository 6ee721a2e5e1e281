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
Cloning of source repositories with git.
"""
import logging
import os
import subprocess
from typing import List, Optional

from ..MODELS.source_alias import split_git_url
from ..errors import RuntimeOperationFailed

logger = logging.getLogger(__name__)


class GitClient:
    """
    Thin wrapper around the git executable.
    """
    def __init__(self, git: str = "git"):
        self.git = git

    def clone_repository(self, url: str, dest_path: str) -> bool:
        """
        Clones `url` into `dest_path`. A `#branch` fragment selects the branch.
        Does nothing if `dest_path` already holds a clone of the same repository.

        :param url: Git URL, optionally with `#branch`.
        :param dest_path: Directory to clone into.
        :return: True if a clone was made, False if it already existed.
        """
        repo, branch = split_git_url(url)
        if os.path.isdir(os.path.join(dest_path, ".git")):
            existing = self._remote_url(dest_path)
            if existing == repo:
                logger.debug("%s already contains %s", dest_path, repo)
                return False
            raise RuntimeOperationFailed("clone", url, f"{dest_path} already contains {existing}")
        if os.path.isdir(dest_path) and os.listdir(dest_path):
            raise RuntimeOperationFailed("clone", url, f"{dest_path} exists and is not empty")

        parent = os.path.dirname(os.path.abspath(dest_path))
        os.makedirs(parent, exist_ok=True)
        args = [self.git, "clone"]
        if branch:
            args.extend(["--branch", branch])
        args.extend([repo, dest_path])
        self._run("clone", url, args)
        return True

    def _remote_url(self, path: str) -> Optional[str]:
        args = [self.git, "-C", path, "config", "--get", "remote.origin.url"]
        try:
            completed = subprocess.run(args, capture_output=True, text=True)
        except OSError as e:
            raise RuntimeOperationFailed("clone", path, str(e), command=args)
        return completed.stdout.strip() or None

    def _run(self, operation: str, target: str, args: List[str]) -> None:
        logger.debug("Running: %s", " ".join(args))
        try:
            code = subprocess.call(args, shell=False)
        except OSError as e:
            raise RuntimeOperationFailed(operation, target, str(e), command=args)
        if code != 0:
            raise RuntimeOperationFailed(operation, target, command=args, exit_code=code)

    def version(self) -> str:
        try:
            completed = subprocess.run([self.git, "--version"], capture_output=True, text=True)
        except OSError as e:
            return f"{self.git}: {e}"
        return completed.stdout.strip()
