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
Generation of a new project directory from templates.
"""
import os
from typing import Dict

from jinja2 import Template

from ..errors import CageError

PROJECT_TEMPLATES: Dict[str, str] = {
    "pods/db.yml": """\
services:
  db:
    image: "postgres:15"
    environment:
      POSTGRES_USER: {{ name }}
      POSTGRES_PASSWORD: {{ name }}
""",
    "pods/frontend.yml": """\
services:
  web:
    image: "{{ name }}/web"
    build: "https://github.com/docker/dockercloud-hello-world.git"
    depends_on:
      - db
    ports:
      - "3000:80"
    labels:
      io.fdy.cage.srcdir: "/app"
      io.fdy.cage.test: "echo 'No tests configured'"
""",
    "pods/migrate.yml": """\
services:
  migrate:
    image: "{{ name }}/web"
    command: ["echo", "Run your migrations here"]
    depends_on:
      - db
""",
    "pods/migrate.config.yml": """\
pod_type: task
""",
    "pods/targets/development/frontend.yml": """\
services:
  web:
    environment:
      APP_ENV: development
""",
    "pods/targets/production/frontend.yml": """\
services:
  web:
    environment:
      APP_ENV: production
""",
    "pods/targets/test/frontend.yml": """\
services:
  web:
    environment:
      APP_ENV: test
""",
    "config/sources.yml": """\
# Extra source trees, as `alias: git URL`. Services using a git build
# context are picked up automatically.
{}
""",
    ".gitignore": """\
/.cage/
/src/
""",
}


class ProjectGenerator:
    """
    Creates the directory layout of a new project.
    """
    def __init__(self, name: str):
        """
        :param name: The project name, also the directory name.
        """
        self.name = name

    def generate(self, parent_dir: str) -> str:
        """
        Creates `<parent_dir>/<name>` and fills it in.

        :param parent_dir: Where to create the project.
        :return: The new project's root directory.
        """
        root = os.path.join(parent_dir, self.name)
        if os.path.exists(root):
            raise CageError(f"The directory {root} already exists")
        for rel_path, source in PROJECT_TEMPLATES.items():
            path = os.path.join(root, rel_path)
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, 'w') as f:
                f.write(Template(source, keep_trailing_newline=True).render(name=self.name))
        return root
