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
Parser for default-tags files: one tagged image name per line, typically
written by a CI system to lock down image versions.
"""
import logging
from typing import Dict, Iterable, Optional

from ..REGISTRY.image_reference import ImageReference
from ..errors import MalformedConfig

logger = logging.getLogger(__name__)


class DefaultTags:
    """
    Tags to apply to images that do not specify one.
    """
    def __init__(self, tags: Optional[Dict[str, str]] = None):
        """
        :param tags: Mapping of image key (registry/repository) to tag.
        """
        self.tags = dict(tags or {})

    @classmethod
    def parse(cls, path: str) -> "DefaultTags":
        """
        Parses a default-tags file from a path.

        :param path: Path to the file.
        :return: Parsed default tags.
        """
        with open(path, 'r') as f:
            return cls.parse_lines(f, source=path)

    @classmethod
    def parse_from_string(cls, content: str, source: str = "<string>") -> "DefaultTags":
        return cls.parse_lines(content.splitlines(), source=source)

    @classmethod
    def parse_lines(cls, lines: Iterable[str], source: str = "<string>") -> "DefaultTags":
        tags = {}
        for number, line in enumerate(lines, start=1):
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            try:
                ref = ImageReference.parse(line)
            except ValueError as e:
                raise MalformedConfig(source, str(e), location=f"line {number}")
            if not ref.tag:
                raise MalformedConfig(source, f"image '{line}' has no tag",
                                      location=f"line {number}")
            tags[ref.key] = ref.tag
        logger.debug("Loaded %d default tags from %s", len(tags), source)
        return cls(tags)

    def apply(self, image: str) -> Optional[str]:
        """
        Resolves the tag an image runs with. An explicit tag or digest always
        wins; an untagged image takes its default tag.

        :param image: The image reference as written.
        :return: The tagged image, or None if it is untagged and has no default.
        :raises ValueError: If `image` is not a valid image reference.
        """
        ref = ImageReference.parse(image)
        if ref.is_tagged:
            return image
        tag = self.tags.get(ref.key)
        if not tag:
            return None
        return ref.with_tag(tag)

    def __len__(self) -> int:
        return len(self.tags)

    def __bool__(self) -> bool:
        return bool(self.tags)
