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
Models for lifecycle operations: per-unit tasks, aggregate results and
the options accepted by run, exec, test and logs.
"""
from enum import Enum
from typing import List, Dict, Optional
from pydantic import BaseModel, Field


class TaskState(str, Enum):
    """State of a single unit of work."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATES = (TaskState.SUCCEEDED, TaskState.FAILED, TaskState.SKIPPED)


class ContainerStatus(str, Enum):
    """Container state as reported by the runtime."""
    RUNNING = "running"
    STOPPED = "stopped"
    ABSENT = "absent"


class LifecycleTask(BaseModel):
    """
    One unit of work, e.g. "start service frontend/web".
    """
    service: str
    operation: str
    state: TaskState = TaskState.PENDING
    error: Optional[str] = None
    attempted: bool = False

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES


class LifecycleResult(BaseModel):
    """
    Outcome of one lifecycle command across every unit it touched.
    """
    operation: str
    tasks: Dict[str, LifecycleTask] = {}
    cancelled: bool = False

    def _with_state(self, state: TaskState) -> List[str]:
        return [key for key, task in self.tasks.items() if task.state == state]

    @property
    def succeeded(self) -> List[str]:
        return self._with_state(TaskState.SUCCEEDED)

    @property
    def failed(self) -> List[str]:
        return self._with_state(TaskState.FAILED)

    @property
    def skipped(self) -> List[str]:
        return self._with_state(TaskState.SKIPPED)

    @property
    def attempted(self) -> List[str]:
        return [key for key, task in self.tasks.items() if task.attempted]

    @property
    def never_attempted(self) -> List[str]:
        return [key for key, task in self.tasks.items() if not task.attempted]

    @property
    def ok(self) -> bool:
        return not self.failed and not self.cancelled


class ProcessOptions(BaseModel):
    """
    Overrides shared by run, exec, shell and test.
    """
    detached: bool = False
    user: Optional[str] = None
    allocate_tty: bool = True
    entrypoint: Optional[str] = None
    environment: Dict[str, str] = Field(default_factory=dict)
    privileged: bool = False


class LogsOptions(BaseModel):
    """Options for streaming logs."""
    follow: bool = False
    tail: Optional[int] = None
