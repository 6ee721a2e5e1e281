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
Unit tests for source alias cloning and mounting.
"""
import json
import os
import threading

import pytest

from cage.MANAGERS.source_manager import SourceManager
from cage.MODELS.source_alias import SourceState, alias_for_url, is_git_url
from cage.errors import NotFound, MalformedConfig

URL = "https://github.com/example/rails_hello.git"


@pytest.fixture
def manager(tmp_path, git):
    return SourceManager(str(tmp_path / "src"), str(tmp_path / ".cage" / "sources.json"),
                         git, urls={'rails_hello': URL})


class TestSourceManager:
    """Tests for SourceManager."""

    def test_initial_state(self, manager):
        """A known alias starts unmounted."""
        source = manager.get('rails_hello')
        assert source.state == SourceState.UNMOUNTED
        assert source.url == URL
        assert source.path.endswith(os.path.join("src", "rails_hello"))

    def test_unknown_alias(self, manager):
        """An unknown alias raises NotFound."""
        with pytest.raises(NotFound):
            manager.get('nothing')

    def test_clone(self, manager, git):
        """Clone fetches the repository into `src/<alias>`."""
        source = manager.clone('rails_hello')
        assert source.state == SourceState.CLONED
        assert git.clones == [(URL, source.path)]

    def test_clone_is_idempotent(self, manager, git):
        """Cloning twice fetches once."""
        manager.clone('rails_hello')
        manager.clone('rails_hello')
        assert len(git.clones) == 1

    def test_mount_clones_first(self, manager, git):
        """Mounting an uncloned alias clones it."""
        source = manager.mount('rails_hello', ['frontend/web'])
        assert source.state == SourceState.MOUNTED
        assert len(git.clones) == 1
        assert manager.mounted_paths() == {'rails_hello': source.path}

    def test_mount_without_consumers_still_mounts(self, manager, caplog):
        """An alias no service uses is mounted with a warning."""
        source = manager.mount('rails_hello', [])
        assert source.state == SourceState.MOUNTED
        assert "No service uses source rails_hello" in caplog.text

    def test_unmount_keeps_clone(self, manager):
        """Unmounting keeps the local clone."""
        mounted = manager.mount('rails_hello', ['frontend/web'])
        source = manager.unmount('rails_hello')
        assert source.state == SourceState.CLONED
        assert os.path.isdir(mounted.path)
        assert manager.mounted_paths() == {}

    def test_mount_state_persists(self, tmp_path, manager, git):
        """Mount state survives a new manager."""
        manager.mount('rails_hello', ['frontend/web'])
        reloaded = SourceManager(str(tmp_path / "src"), str(tmp_path / ".cage" / "sources.json"),
                                 git, urls={'rails_hello': URL})
        assert reloaded.get('rails_hello').state == SourceState.MOUNTED
        with open(tmp_path / ".cage" / "sources.json") as f:
            assert json.load(f) == {'mounted': ['rails_hello']}

    def test_corrupt_state_file(self, tmp_path, git):
        """A corrupt state file is malformed."""
        state = tmp_path / "sources.json"
        state.write_text("{not json")
        with pytest.raises(MalformedConfig):
            SourceManager(str(tmp_path / "src"), str(state), git)

    def test_parallel_mounts_all_persist(self, tmp_path, git):
        """Mounting several aliases from parallel threads records every one of them."""
        aliases = [f"app{i}" for i in range(6)]
        state_file = tmp_path / ".cage" / "sources.json"
        manager = SourceManager(str(tmp_path / "src"), str(state_file), git,
                                urls={alias: f"https://github.com/example/{alias}.git" for alias in aliases})
        barrier = threading.Barrier(len(aliases), timeout=5)
        errors = []

        def mount(alias):
            try:
                barrier.wait()
                manager.mount(alias, ['frontend/web'])
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=mount, args=(alias,)) for alias in aliases]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert errors == []
        assert sorted(manager.mounted_paths()) == aliases
        with open(state_file) as f:
            assert json.load(f) == {'mounted': aliases}
        assert [name for name in os.listdir(state_file.parent) if name.endswith(".tmp")] == []

    def test_separate_managers_keep_each_others_mounts(self, tmp_path, git):
        """A manager created before another one mounted still preserves that mount."""
        src, state = str(tmp_path / "src"), str(tmp_path / ".cage" / "sources.json")
        urls = {'a': "https://github.com/example/a.git", 'b': "https://github.com/example/b.git"}
        first = SourceManager(src, state, git, urls=urls)
        second = SourceManager(src, state, git, urls=urls)
        first.mount('a', ['frontend/web'])
        second.mount('b', ['frontend/web'])

        fresh = SourceManager(src, state, git, urls=urls)
        assert sorted(fresh.mounted_paths()) == ['a', 'b']

        first.unmount('a')
        assert sorted(SourceManager(src, state, git, urls=urls).mounted_paths()) == ['b']

    def test_register_keeps_known_urls(self, manager):
        """Registering again keeps the first URL."""
        manager.register({'rails_hello': "https://example.com/other.git",
                          'docs': "https://github.com/example/docs.git"})
        assert manager.get('rails_hello').url == URL
        assert [source.alias for source in manager.aliases()] == ['docs', 'rails_hello']


@pytest.mark.parametrize("url,alias", [
    ("https://github.com/faradayio/rails_hello.git", "rails_hello"),
    ("https://github.com/faradayio/rails_hello.git#dev", "rails_hello_dev"),
    ("git@github.com:faradayio/rails_hello.git", "rails_hello"),
    ("https://github.com/faradayio/rails_hello", "rails_hello"),
])
def test_alias_for_url(url, alias):
    """Aliases come from the repository name and branch."""
    assert alias_for_url(url) == alias


def test_is_git_url():
    """Git URLs are told apart from directories."""
    assert is_git_url("https://github.com/example/app.git")
    assert is_git_url("git@github.com:example/app.git")
    assert not is_git_url("./web")
    assert not is_git_url(None)
