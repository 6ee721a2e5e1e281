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
Unit tests for new-project scaffolding.
"""
import os

import pytest

from cage.CONVERTERS.project_template import ProjectGenerator
from cage.PARSERS.pod_parser import PodParser
from cage.MODELS.project import PodType
from cage.errors import CageError


def test_generate(tmp_path):
    """A new project gets pods, targets and config."""
    root = ProjectGenerator("shop").generate(str(tmp_path))
    assert root == os.path.join(str(tmp_path), "shop")
    for name in ("db.yml", "frontend.yml", "migrate.yml", "migrate.config.yml"):
        assert os.path.isfile(os.path.join(root, "pods", name))
    with open(os.path.join(root, "pods", "db.yml")) as f:
        assert "POSTGRES_USER: shop" in f.read()


def test_generated_project_loads(tmp_path):
    """The generated project loads and composes."""
    root = ProjectGenerator("shop").generate(str(tmp_path))
    for target in ("development", "production", "test"):
        project = PodParser(root, {}).load(target)
        assert list(project.pods) == ["db", "frontend", "migrate"]
        assert project.pods["migrate"].pod_type == PodType.TASK
        assert list(project.overlays) == ["frontend"]


def test_existing_directory(tmp_path):
    """An existing directory is not overwritten."""
    (tmp_path / "shop").mkdir()
    with pytest.raises(CageError):
        ProjectGenerator("shop").generate(str(tmp_path))
