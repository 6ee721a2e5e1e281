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
Management of source aliases: cloning repositories into `src/` and
recording which ones are mounted into the services that use them.
"""
import fcntl
import json
import logging
import os
import tempfile
import threading
from typing import Dict, List, Optional, Set

from ..MODELS.source_alias import SourceAlias, SourceState
from ..RUNNERS.version_control import GitClient
from ..errors import NotFound, MalformedConfig

logger = logging.getLogger(__name__)


class _StateFileLock:
    """
    Exclusive advisory lock on a sibling `.<name>.lock` file, so separate
    processes serialize their updates to the same state file.
    """
    def __init__(self, state_file: str):
        directory, name = os.path.split(os.path.abspath(state_file))
        self.lock_path = os.path.join(directory, f".{name}.lock")
        self._lock_file = None

    def __enter__(self):
        os.makedirs(os.path.dirname(self.lock_path), exist_ok=True)
        self._lock_file = open(self.lock_path, 'a')
        fcntl.flock(self._lock_file.fileno(), fcntl.LOCK_EX)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        # The lock file stays on disk; unlinking it would let a waiter lock a stale inode.
        fcntl.flock(self._lock_file.fileno(), fcntl.LOCK_UN)
        self._lock_file.close()
        self._lock_file = None


class SourceManager:
    """
    Tracks source aliases and their clone and mount state.

    Mounted aliases are persisted so later invocations compose with the
    same mounts. Clones of one alias are serialized. Every change to the
    mount record re-reads the file under a process and file lock and
    writes back only that alias's change.
    """
    def __init__(self, src_dir: str, state_file: str, git: Optional[GitClient] = None,
                 urls: Optional[Dict[str, str]] = None):
        """
        Initializes the source manager.

        :param src_dir: Directory that holds local clones, one per alias.
        :param state_file: JSON file recording mounted aliases.
        :param git: Client used to clone repositories.
        :param urls: Known aliases and their git URLs.
        """
        self.src_dir = os.path.abspath(src_dir)
        self.state_file = state_file
        self.git = git or GitClient()
        self._urls: Dict[str, str] = dict(urls or {})
        self._registry_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._mounted: Set[str] = self._read_state()

    def _read_state(self) -> Set[str]:
        if not os.path.isfile(self.state_file):
            return set()
        try:
            with open(self.state_file, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise MalformedConfig(self.state_file, e.msg, location=f"{e.lineno}:{e.colno}")
        return set(data.get("mounted", []))

    def _write_state(self, mounted: Set[str]):
        directory = os.path.dirname(os.path.abspath(self.state_file))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=f".{os.path.basename(self.state_file)}.",
                                        suffix=".tmp", text=True)
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump({"mounted": sorted(mounted)}, f, indent=2)
            os.replace(tmp_path, self.state_file)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _update_state(self, alias: str, mounted: bool) -> bool:
        """
        Adds or removes one alias in the persisted mount record.

        :return: True if the record changed.
        """
        with self._state_lock, _StateFileLock(self.state_file):
            current = self._read_state()
            changed = (alias in current) != mounted
            if mounted:
                current.add(alias)
            else:
                current.discard(alias)
            if changed:
                self._write_state(current)
            self._mounted = current
        return changed

    def _refresh_state(self) -> Set[str]:
        with self._state_lock:
            self._mounted = self._read_state()
            return set(self._mounted)

    def _lock_for(self, alias: str) -> threading.Lock:
        with self._registry_lock:
            return self._locks.setdefault(alias, threading.Lock())

    def register(self, urls: Dict[str, str]):
        """
        Adds aliases discovered in the configuration. Aliases already known
        keep their URL.
        """
        with self._registry_lock:
            for alias, url in urls.items():
                self._urls.setdefault(alias, url)

    def path(self, alias: str) -> str:
        return os.path.join(self.src_dir, alias)

    def state(self, alias: str) -> SourceState:
        if alias in self._mounted:
            return SourceState.MOUNTED
        if os.path.isdir(self.path(alias)):
            return SourceState.CLONED
        return SourceState.UNMOUNTED

    def get(self, alias: str) -> SourceAlias:
        """
        :raises NotFound: If the alias is unknown.
        """
        url = self._urls.get(alias)
        if url is None:
            raise NotFound(alias, kind="source alias")
        return SourceAlias(alias=alias, url=url, path=self.path(alias), state=self.state(alias))

    def aliases(self) -> List[SourceAlias]:
        return [self.get(alias) for alias in sorted(self._urls)]

    def clone(self, alias: str) -> SourceAlias:
        """
        Clones the alias's repository. Does nothing if it is already cloned.
        """
        source = self.get(alias)
        with self._lock_for(alias):
            self._clone_locked(source)
        return self.get(alias)

    def _clone_locked(self, source: SourceAlias):
        if self.state(source.alias) != SourceState.UNMOUNTED:
            logger.info("Source %s is already cloned at %s", source.alias, source.path)
            return
        logger.info("Cloning %s into %s", source.url, source.path)
        self.git.clone_repository(source.url, source.path)


    def mount(self, alias: str, consumers: Optional[List[str]] = None) -> SourceAlias:
        """
        Marks an alias as mounted, cloning it first if needed. Services that
        use the alias get a bind mount the next time the configuration is
        composed.

        :param alias: The alias to mount.
        :param consumers: Services that use the alias, for reporting.
        """
        source = self.get(alias)
        with self._lock_for(alias):
            self._clone_locked(source)
            self._update_state(alias, True)
        if not consumers:
            logger.warning("No service uses source %s, nothing to mount it into", alias)
        return self.get(alias)

    def unmount(self, alias: str) -> SourceAlias:
        """
        Marks an alias as not mounted. The local clone is kept.
        """
        self.get(alias)
        with self._lock_for(alias):
            if not self._update_state(alias, False):
                logger.info("Source %s is not mounted", alias)
        return self.get(alias)

    def mounted_paths(self) -> Dict[str, str]:
        """Local clone paths of every mounted alias."""
        return {alias: self.path(alias) for alias in sorted(self._refresh_state())}
