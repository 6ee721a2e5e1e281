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
Models for defining services after composition.
"""
from typing import List, Dict, Optional, Any
from pydantic import BaseModel, ConfigDict

# Labels understood by cage.
TEST_LABEL = "io.fdy.cage.test"
SOURCE_LABEL = "io.fdy.cage.source"
SRCDIR_LABEL = "io.fdy.cage.srcdir"
DEPENDS_LABEL = "io.fdy.cage.depends_on"

DEFAULT_SRCDIR = "/app"


class ServiceDefinition(BaseModel):
    """
    The fully merged definition of a single service within a pod.

    `raw` holds the compose subtree the service was built from, with
    target overrides, default tags and source mounts already applied.
    """
    model_config = ConfigDict(frozen=True)

    pod: str
    name: str
    image: Optional[str] = None
    build_context: Optional[str] = None
    dockerfile: Optional[str] = None

    # Execution
    command: List[str] = []
    entrypoint: List[str] = []
    working_dir: Optional[str] = None
    user: Optional[str] = None

    # Environment
    environment: Dict[str, str] = {}
    labels: Dict[str, str] = {}

    # Storage
    volumes: List[str] = []

    # Dependencies as written, and as qualified pod/service names
    depends_on: List[str] = []
    dependencies: List[str] = []

    raw: Dict[str, Any] = {}

    @property
    def qualified_name(self) -> str:
        return f"{self.pod}/{self.name}"

    @property
    def test_command(self) -> Optional[str]:
        """The default test command from the service labels, if any."""
        return self.labels.get(TEST_LABEL)

    def __str__(self) -> str:
        return self.qualified_name
