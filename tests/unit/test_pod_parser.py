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
Unit tests for loading pods, settings, overlays and sources.
"""
import os

import pytest

from cage.MODELS.project import PodType
from cage.PARSERS.pod_parser import PodParser
from cage.errors import ConfigNotFound, MalformedConfig, NotFound


def test_load_base_pods_in_file_order(sample_project):
    """Base pods load in file name order."""
    project = PodParser(sample_project, {}).load()
    assert list(project.pods) == ['db', 'frontend', 'migrate']
    assert project.pods['migrate'].pod_type == PodType.TASK
    assert project.pods['db'].pod_type == PodType.SERVICE
    assert project.overlays == {}


def test_settings_files_are_not_pods(sample_project):
    """`<pod>.config.yml` files hold settings, not pods."""
    project = PodParser(sample_project, {}).load()
    assert 'migrate.config' not in project.pods


def test_load_target_overlays(sample_project):
    """The target's overlays are loaded."""
    project = PodParser(sample_project, {}).load("development")
    assert list(project.overlays) == ['frontend']
    web = project.overlays['frontend'].data['services']['web']
    assert web['environment'] == {'APP_ENV': 'development'}


def test_unknown_target_is_not_found(sample_project):
    """A target no pod knows raises NotFound."""
    with pytest.raises(NotFound) as excinfo:
        PodParser(sample_project, {}).load("staging")
    assert excinfo.value.kind == "target"


def test_target_without_overlays_directory(make_project):
    """A known target without overlays loads with none."""
    root = make_project({"pods/db.yml": "services:\n  db:\n    image: postgres:15\n"})
    project = PodParser(root, {}).load("production")
    assert project.overlays == {}


def test_missing_pods_directory(tmp_path):
    """A project without `pods/` is not a project."""
    with pytest.raises(ConfigNotFound):
        PodParser(str(tmp_path), {}).load()


def test_enable_in_targets(make_project):
    """Pods limited to some targets are left out of others."""
    root = make_project({
        "pods/db.yml": "services:\n  db:\n    image: postgres:15\n",
        "pods/debug.yml": "services:\n  tools:\n    image: busybox:1\n",
        "pods/debug.config.yml": "enable_in_targets: [development]\n",
    })
    parser = PodParser(root, {})
    assert 'debug' in parser.load("development").pods
    assert 'debug' not in parser.load("production").pods


def test_tasks_directory(make_project):
    """Pods under `tasks/` are task pods."""
    root = make_project({
        "pods/db.yml": "services:\n  db:\n    image: postgres:15\n",
        "pods/tasks/seed.yml": "services:\n  seed:\n    image: busybox:1\n",
    })
    pods = PodParser(root, {}).load().pods
    assert pods['seed'].pod_type == PodType.TASK


def test_unknown_pod_type(make_project):
    """An unknown pod type is malformed."""
    root = make_project({
        "pods/db.yml": "services:\n  db:\n    image: postgres:15\n",
        "pods/db.config.yml": "pod_type: daemon\n",
    })
    with pytest.raises(MalformedConfig) as excinfo:
        PodParser(root, {}).load()
    assert excinfo.value.location == "pod_type"


def test_malformed_yaml_reports_location(make_project):
    """YAML errors carry line and column."""
    root = make_project({"pods/db.yml": "services:\n  db:\n    image: [postgres\n"})
    with pytest.raises(MalformedConfig) as excinfo:
        PodParser(root, {}).load()
    assert excinfo.value.path.endswith("db.yml")
    assert excinfo.value.location is not None


def test_top_level_must_be_mapping():
    """A pod file must be a mapping."""
    with pytest.raises(MalformedConfig):
        PodParser("/nonexistent", {}).parse_from_string("- just\n- a list\n")


def test_service_must_be_mapping():
    """Each service must be a mapping."""
    with pytest.raises(MalformedConfig) as excinfo:
        PodParser("/nonexistent", {}).parse_from_string("services:\n  web: nginx\n")
    assert excinfo.value.location == "services.web"


def test_normalizes_equivalent_forms():
    data = PodParser("/nonexistent", {}).parse_from_string("""
services:
  web:
    build: ./web
    environment:
      - DEBUG=1
      - EMPTY
    labels:
      - com.example=yes
    depends_on:
      db:
        condition: service_started
""")
    web = data['services']['web']
    assert web['build'] == {'context': './web'}
    assert web['environment'] == {'DEBUG': '1', 'EMPTY': None}
    assert web['labels'] == {'com.example': 'yes'}
    assert web['depends_on'] == ['db']


def test_interpolates_from_context():
    """Variables are substituted from the context."""
    parser = PodParser("/nonexistent", {'TAG': '1.2'})
    data = parser.parse_from_string("""
services:
  web:
    image: "example/web:${TAG}"
    environment:
      MODE: "${MODE:-dev}"
      SECRET: "${SECRET}"
""")
    web = data['services']['web']
    assert web['image'] == "example/web:1.2"
    assert web['environment']['MODE'] == "dev"
    # Unset variables are left for the composer to report
    assert web['environment']['SECRET'] == "${SECRET}"


def test_default_context_reads_dotenv(make_project, monkeypatch):
    """The project's `.env` feeds interpolation."""
    monkeypatch.delenv("WEB_TAG", raising=False)
    root = make_project({
        ".env": "WEB_TAG=3.1\n",
        "pods/web.yml": "services:\n  web:\n    image: \"example/web:${WEB_TAG}\"\n",
    })
    pods = PodParser(root).load().pods
    assert pods['web'].data['services']['web']['image'] == "example/web:3.1"


def test_process_environment_overrides_dotenv(make_project, monkeypatch):
    """The process environment beats `.env`."""
    monkeypatch.setenv("WEB_TAG", "4.0")
    root = make_project({
        ".env": "WEB_TAG=3.1\n",
        "pods/web.yml": "services:\n  web:\n    image: \"example/web:${WEB_TAG}\"\n",
    })
    pods = PodParser(root).load().pods
    assert pods['web'].data['services']['web']['image'] == "example/web:4.0"


def test_sources_file(make_project):
    """`config/sources.yml` registers source aliases."""
    root = make_project({
        "pods/db.yml": "services:\n  db:\n    image: postgres:15\n",
        "config/sources.yml": "docs: https://github.com/example/docs.git\n",
    })
    project = PodParser(root, {}).load()
    assert project.sources == {'docs': "https://github.com/example/docs.git"}


def test_empty_pod_file(make_project):
    """An empty pod file has no services."""
    root = make_project({"pods/empty.yml": ""})
    pods = PodParser(root, {}).load().pods
    assert pods['empty'].data == {}
    assert os.path.basename(pods['empty'].path) == "empty.yml"
