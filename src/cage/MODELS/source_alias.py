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
Models for source aliases: short names for git repositories that can be
cloned locally and bind-mounted into the services that use them.
"""
import os
import re
from enum import Enum
from typing import Optional
from urllib.parse import urlparse
from pydantic import BaseModel

GIT_URL_PATTERN = re.compile(r"^(git@|git://|ssh://|https?://).+|.+\.git(#.*)?$")


class SourceState(str, Enum):
    """Mount state of a source alias."""
    UNMOUNTED = "unmounted"
    CLONED = "cloned-not-mounted"
    MOUNTED = "mounted"


class SourceAlias(BaseModel):
    """
    A short name for an external repository and its local clone.
    """
    alias: str
    url: str
    path: str
    state: SourceState = SourceState.UNMOUNTED


def is_git_url(context: Optional[str]) -> bool:
    """Whether a build context names a git repository rather than a directory."""
    if not context:
        return False
    return bool(GIT_URL_PATTERN.match(context))


def split_git_url(url: str):
    """
    Splits `https://host/repo.git#branch` into the repository URL and branch.
    """
    if "#" in url:
        repo, branch = url.split("#", 1)
        return repo, branch or None
    return url, None


def alias_for_url(url: str) -> str:
    """
    Derives a short alias from a git URL: the repository name without
    `.git`, suffixed with `_<branch>` when a branch is given.

    Examples:
        - https://github.com/faradayio/rails_hello.git -> rails_hello
        - https://github.com/faradayio/rails_hello.git#dev -> rails_hello_dev
        - git@github.com:faradayio/rails_hello.git -> rails_hello
    """
    repo, branch = split_git_url(url)
    if repo.startswith("git@") and "://" not in repo:
        path = repo.split(":", 1)[-1]
    else:
        path = urlparse(repo).path or repo
    stem = os.path.basename(path.rstrip("/"))
    if stem.endswith(".git"):
        stem = stem[:-4]
    if not stem:
        raise ValueError(f"Can't get repo name from {url}")
    return f"{stem}_{branch}" if branch else stem
