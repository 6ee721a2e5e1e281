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
Hook scripts run at points in the project lifecycle.
"""
import logging
import os
import subprocess
from typing import Dict, List, Optional

from ..errors import RuntimeOperationFailed

logger = logging.getLogger(__name__)


class HookManager:
    """
    Runs the `*.hook` scripts in `config/hooks/<hook>.d/`.
    """
    def __init__(self, hooks_dir: str):
        """
        :param hooks_dir: Directory with one `<hook>.d` subdirectory per hook.
        """
        self.hooks_dir = hooks_dir

    def scripts(self, hook_name: str) -> List[str]:
        """
        The scripts for a hook, in the order they run.
        """
        d_dir = os.path.join(self.hooks_dir, f"{hook_name}.d")
        if not os.path.isdir(d_dir):
            logger.debug("No hooks for '%s' because %s does not exist", hook_name, d_dir)
            return []
        scripts = []
        for name in sorted(os.listdir(d_dir)):
            path = os.path.join(d_dir, name)
            if os.path.isfile(path) and not name.startswith('.') and name.endswith('.hook'):
                scripts.append(path)
        return scripts

    def invoke(self, hook_name: str, env: Optional[Dict[str, str]] = None):
        """
        Runs every script for a hook with `env` added to the environment.

        :raises RuntimeOperationFailed: If a script exits non-zero.
        """
        full_env = os.environ.copy()
        full_env.update(env or {})
        for script in self.scripts(hook_name):
            if not os.access(script, os.X_OK):
                logger.warning("Hook %s is not executable, skipping", script)
                continue
            logger.info("Running %s hook %s", hook_name, script)
            try:
                code = subprocess.call([script], env=full_env, shell=False)
            except OSError as e:
                raise RuntimeOperationFailed("hook", script, str(e), command=[script])
            if code != 0:
                raise RuntimeOperationFailed("hook", script, command=[script], exit_code=code)
