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
The explicit per-invocation context threaded through every project call.
"""
import os
from typing import Optional
from pydantic import BaseModel, Field

DEFAULT_TARGET = "development"
DEFAULT_MAX_PARALLEL = 4


class ProjectContext(BaseModel):
    """
    Settings selected once per invocation: which project, which target,
    which default tags, and how hard to drive the runtime.
    """
    root_dir: str
    name: Optional[str] = None
    target: str = DEFAULT_TARGET
    default_tags_path: Optional[str] = None
    max_parallel: int = Field(default=DEFAULT_MAX_PARALLEL, ge=1)
    fail_fast: bool = False

    @property
    def project_name(self) -> str:
        return self.name or os.path.basename(os.path.abspath(self.root_dir))

    @property
    def src_dir(self) -> str:
        return os.path.join(self.root_dir, "src")

    @property
    def output_dir(self) -> str:
        return os.path.join(self.root_dir, ".cage")

    @property
    def output_pods_dir(self) -> str:
        return os.path.join(self.output_dir, "pods")

    @property
    def hooks_dir(self) -> str:
        return os.path.join(self.root_dir, "config", "hooks")

    @property
    def source_state_file(self) -> str:
        return os.path.join(self.output_dir, "sources.json")


def find_project_root(start_dir: Optional[str] = None) -> Optional[str]:
    """
    Walks up from `start_dir` looking for a directory with a `pods`
    subdirectory.

    :param start_dir: Directory to start from, the working directory by default.
    :return: The project root, or None if there is none.
    """
    current = os.path.abspath(start_dir or os.getcwd())
    while True:
        if os.path.isdir(os.path.join(current, "pods")):
            return current
        parent = os.path.dirname(current)
        if parent == current:
            return None
        current = parent
