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
Orchestration of lifecycle operations across services, respecting
dependencies and tracking the outcome of every unit.
"""
import logging
import queue
import shlex
import threading
from concurrent.futures import ThreadPoolExecutor, Future, wait, FIRST_COMPLETED
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Callable, Dict, List, Optional, Iterator, Tuple

from ..MODELS.lifecycle import (
    LifecycleResult, LifecycleTask, TaskState, ContainerStatus, ProcessOptions, LogsOptions,
)
from ..MODELS.project import EffectiveConfiguration
from ..MODELS.service_definition import ServiceDefinition, TEST_LABEL
from ..MODELS.project_context import DEFAULT_MAX_PARALLEL
from ..RUNNERS.container_runtime import ContainerRuntime
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..errors import (
    CageError, LifecycleFailed, OperationCancelled, NotRunning, NoTestCommand,
)

logger = logging.getLogger(__name__)

SHELL_COMMAND = ["sh"]
POLL_INTERVAL = 0.1
ABORT_TIMEOUT = 10.0

_END_OF_STREAM = object()


class ServiceOrchestrator:
    """
    Orchestrates lifecycle operations over services based on their dependencies.
    """
    def __init__(self,
                 config: EffectiveConfiguration,
                 runtime: ContainerRuntime,
                 max_parallel: int = DEFAULT_MAX_PARALLEL,
                 fail_fast: bool = False):
        """
        Initializes the orchestrator.

        :param config: The effective configuration, shared read-only.
        :param runtime: The container runtime to drive.
        :param max_parallel: Maximum runtime operations in flight at once.
        :param fail_fast: Skip everything still pending after the first failure.
        """
        self.config = config
        self.runtime = runtime
        self.max_parallel = max(1, max_parallel)
        self.fail_fast = fail_fast
        self.resolver = DependencyResolver()
        self._cancel = threading.Event()

    def cancel(self):
        """
        Requests cancellation of the operation in progress.
        """
        self._cancel.set()

    def _keys(self, services: List[ServiceDefinition]) -> List[str]:
        return [svc.qualified_name for svc in services]

    def build(self, services: List[ServiceDefinition]) -> LifecycleResult:
        """
        Builds images for the services that have a build context.
        """
        order = self.resolver.resolve_order(self.config, self._keys(services),
                                            include_dependencies=False)
        predecessors = self.resolver.predecessors(self.config, order)
        return self._finish(self._execute("build", order, predecessors, self._build_one))

    def pull(self, services: List[ServiceDefinition]) -> LifecycleResult:
        """
        Pulls images for the services that are not built locally.
        """
        order = self.resolver.resolve_order(self.config, self._keys(services),
                                            include_dependencies=False)
        return self._finish(self._execute("pull", order, {}, self._pull_one))

    def up(self, services: List[ServiceDefinition]) -> LifecycleResult:
        """
        Starts the services and everything they depend on, dependencies
        first. Units that started stay running if a later unit fails.
        """
        order = self.resolver.resolve_order(self.config, self._keys(services),
                                            include_dependencies=True)
        logger.info("Starting services in order: %s", ", ".join(order))
        predecessors = self.resolver.predecessors(self.config, order)
        return self._finish(self._execute("up", order, predecessors, self._start_one,
                                          skip_after_failure=True))

    def stop(self, services: List[ServiceDefinition]) -> LifecycleResult:
        """
        Stops services, dependents before their dependencies.
        """
        return self._finish(self._reverse("stop", services, self.runtime.stop_container))

    def rm(self, services: List[ServiceDefinition]) -> LifecycleResult:
        """
        Removes service containers, dependents before their dependencies.
        """
        return self._finish(self._reverse("rm", services, self.runtime.remove_container))

    def _reverse(self, operation: str, services: List[ServiceDefinition],
                 action: Callable[[ServiceDefinition], None]) -> LifecycleResult:
        order = self.resolver.resolve_order(self.config, self._keys(services),
                                            include_dependencies=False)
        order.reverse()
        dependents = self.resolver.dependents(self.config, order)
        return self._execute(operation, order, dependents, action)

    def _build_one(self, svc: ServiceDefinition) -> bool:
        if not svc.build_context:
            logger.debug("%s has no build context, skipping", svc)
            return False
        logger.info("Building %s", svc)
        self.runtime.build_image(svc)
        return True

    def _pull_one(self, svc: ServiceDefinition) -> bool:
        if not svc.image or svc.build_context:
            logger.debug("%s is built locally, skipping", svc)
            return False
        logger.info("Pulling %s", svc.image)
        self.runtime.pull_image(svc)
        return True

    def _start_one(self, svc: ServiceDefinition) -> bool:
        logger.info("Starting %s", svc)
        self.runtime.start_container(svc)
        return True

    def _execute(self,
                 operation: str,
                 order: List[str],
                 predecessors: Dict[str, List[str]],
                 action: Callable[[ServiceDefinition], Optional[bool]],
                 skip_after_failure: bool = False) -> LifecycleResult:
        """
        Runs `action` for every key in `order`, submitting a unit only once
        all of its predecessors are terminal and keeping at most
        `max_parallel` units in flight. A cancellation requested before
        the operation starts is honoured; the request is consumed when the
        operation ends.
        """
        result = LifecycleResult(
            operation=operation,
            tasks={key: LifecycleTask(service=key, operation=operation) for key in order},
        )
        pending = list(order)
        running: Dict[Future, str] = {}
        failure_seen = False
        settled = True

        pool = ThreadPoolExecutor(max_workers=self.max_parallel,
                                  thread_name_prefix=f"cage-{operation}")
        try:
            while pending or running:
                if not self._cancel.is_set():
                    for key in list(pending):
                        task = result.tasks[key]
                        deps = [result.tasks[d] for d in predecessors.get(key, [])]
                        if not all(dep.done for dep in deps):
                            continue
                        if self.fail_fast and failure_seen:
                            pending.remove(key)
                            task.state = TaskState.SKIPPED
                            task.error = "skipped after an earlier failure"
                            continue
                        blocked = [dep.service for dep in deps
                                   if dep.state in (TaskState.FAILED, TaskState.SKIPPED)]
                        if skip_after_failure and blocked:
                            pending.remove(key)
                            task.state = TaskState.SKIPPED
                            task.error = f"dependency {blocked[0]} did not {operation}"
                            logger.warning("Skipping %s: %s", key, task.error)
                            continue
                        if len(running) >= self.max_parallel:
                            break
                        pending.remove(key)
                        task.state = TaskState.RUNNING
                        task.attempted = True
                        running[pool.submit(action, self.config.services[key])] = key

                if not running:
                    break

                try:
                    done, _ = wait(list(running), timeout=POLL_INTERVAL,
                                   return_when=FIRST_COMPLETED)
                except KeyboardInterrupt:
                    logger.warning("Interrupted, cancelling %s", operation)
                    self._cancel.set()
                    done = set()

                for future in done:
                    key = running.pop(future)
                    if not self._record(result.tasks[key], future):
                        failure_seen = True

                if self._cancel.is_set():
                    settled = self._abort_in_flight(operation, running, result)
                    running.clear()
                    break

            for key in pending:
                task = result.tasks[key]
                task.state = TaskState.SKIPPED
                task.error = task.error or "never attempted"

            if self._cancel.is_set():
                result.cancelled = True
                raise OperationCancelled(operation, result)
            return result
        finally:
            pool.shutdown(wait=settled, cancel_futures=True)
            self._cancel.clear()

    def _record(self, task: LifecycleTask, future: Future) -> bool:
        error = future.exception()
        if error is not None:
            task.state = TaskState.FAILED
            task.error = str(error)
            logger.error("%s failed for %s: %s", task.operation, task.service, error)
            return False
        task.state = TaskState.SKIPPED if future.result() is False else TaskState.SUCCEEDED
        return True

    def _abort_in_flight(self, operation: str, running: Dict[Future, str],
                         result: LifecycleResult) -> bool:
        """
        Signals the runtime for every unit still in flight and waits up to
        `ABORT_TIMEOUT` seconds for each, leaving each one marked cancelled.

        :return: False if some unit was still running when abandoned.
        """
        for future, key in running.items():
            svc = self.config.services[key]
            try:
                self.runtime.terminate(svc)
                if operation == "up":
                    self.runtime.stop_container(svc)
            except CageError as e:
                logger.error("Could not stop %s after cancellation: %s", key, e)
        settled = True
        for future, key in running.items():
            try:
                # The outcome is overwritten below
                future.exception(timeout=ABORT_TIMEOUT)
            except FuturesTimeout:
                logger.warning("%s for %s did not stop within %.1fs, abandoning it",
                               operation, key, ABORT_TIMEOUT)
                settled = False
            task = result.tasks[key]
            task.state = TaskState.FAILED
            task.error = "cancelled"
        return settled

    def _finish(self, result: LifecycleResult) -> LifecycleResult:
        if result.failed:
            raise LifecycleFailed(result)
        return result

    def run(self, service: ServiceDefinition, command: Optional[List[str]] = None,
            options: Optional[ProcessOptions] = None) -> int:
        """
        Runs a one-off container from a service definition. The command is
        passed through as-is.

        :return: The container's exit code, or 0 when detached.
        """
        options = options or ProcessOptions()
        logger.info("Running %s %s", service, command or [])
        try:
            code = self.runtime.run_ephemeral(service, command, options)
        except KeyboardInterrupt:
            self.runtime.terminate(service)
            raise OperationCancelled("run")
        return 0 if options.detached else code

    def exec(self, service: ServiceDefinition, command: List[str],
             options: Optional[ProcessOptions] = None) -> int:
        """
        Runs a command in the service's running container.

        :raises NotRunning: If the service has no running container.
        """
        options = options or ProcessOptions()
        if self.runtime.container_status(service) != ContainerStatus.RUNNING:
            raise NotRunning(service.qualified_name)
        try:
            code = self.runtime.exec_in_container(service, command, options)
        except KeyboardInterrupt:
            self.runtime.terminate(service)
            raise OperationCancelled("exec")
        return 0 if options.detached else code

    def shell(self, service: ServiceDefinition, options: Optional[ProcessOptions] = None) -> int:
        """
        Opens an interactive shell in the service's running container.
        """
        options = (options or ProcessOptions()).model_copy(update={"allocate_tty": True})
        return self.exec(service, list(SHELL_COMMAND), options)

    def test(self, service: ServiceDefinition, command: Optional[List[str]] = None,
             options: Optional[ProcessOptions] = None) -> int:
        """
        Runs a service's tests. A given command replaces the default from
        the service's test label.

        :raises NoTestCommand: If there is neither a label nor a command.
        """
        if not command:
            if not service.test_command:
                raise NoTestCommand(service.qualified_name, TEST_LABEL)
            command = shlex.split(service.test_command)
        return self.run(service, command, options)

    def status(self, services: List[ServiceDefinition]) -> Dict[str, ContainerStatus]:
        """
        Container status of each service.
        """
        return {svc.qualified_name: self.runtime.container_status(svc) for svc in services}

    def logs(self, services: List[ServiceDefinition],
             options: Optional[LogsOptions] = None) -> Iterator[Tuple[ServiceDefinition, str]]:
        """
        Yields `(service, line)` pairs. With `follow`, streams from every
        service at once until the caller stops iterating.
        """
        options = options or LogsOptions()
        if not options.follow or len(services) <= 1:
            for svc in services:
                for line in self.runtime.stream_logs(svc, options.follow, options.tail):
                    yield svc, line
            return
        yield from self._follow_logs(services, options)

    def _follow_logs(self, services: List[ServiceDefinition],
                     options: LogsOptions) -> Iterator[Tuple[ServiceDefinition, str]]:
        lines: queue.Queue = queue.Queue()
        stop = threading.Event()

        def pump(svc):
            """
            Copies one service's log stream onto the shared queue.
            """
            try:
                for line in self.runtime.stream_logs(svc, True, options.tail):
                    if stop.is_set():
                        break
                    lines.put((svc, line))
            except CageError as e:
                logger.error("Log stream for %s ended: %s", svc, e)
            finally:
                lines.put((svc, _END_OF_STREAM))

        threads = [threading.Thread(target=pump, args=(svc,), daemon=True,
                                    name=f"cage-logs-{svc.qualified_name}")
                   for svc in services]
        for thread in threads:
            thread.start()

        remaining = len(threads)
        try:
            while remaining:
                svc, line = lines.get()
                if line is _END_OF_STREAM:
                    remaining -= 1
                    continue
                yield svc, line
        finally:
            stop.set()
            for svc in services:
                self.runtime.terminate(svc)
