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
Image reference parsing and handling.
Parses Docker image references like 'nginx:latest' or 'docker.io/library/nginx:1.21'.
"""

from typing import Optional
from dataclasses import dataclass


@dataclass(frozen=True)
class ImageReference:
    """
    Parsed Docker image reference.

    Unlike the runtime, a missing tag is kept as None so callers can tell
    `nginx` from `nginx:latest` and fill in a default tag.

    Examples:
        - nginx -> docker.io/library/nginx (untagged)
        - nginx:1.21 -> docker.io/library/nginx:1.21
        - myuser/myimage:v1 -> docker.io/myuser/myimage:v1
        - localhost:5000/image -> localhost:5000/image (untagged)
        - gcr.io/project/image@sha256:abc123... -> pinned by digest
    """

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None
    original: str = ""

    DEFAULT_REGISTRY = "docker.io"

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        """
        Parse a Docker image reference string.

        Args:
            reference: Image reference string (e.g., 'nginx:latest', 'myuser/myimage:v1')

        Returns:
            Parsed ImageReference object.

        Raises:
            ValueError: If the reference is empty, or has an empty tag or digest.
        """
        if not reference or not reference.strip():
            raise ValueError("Empty image reference")
        original = reference.strip()
        reference = original

        # Handle digest format (image@sha256:...)
        digest = None
        if "@" in reference:
            reference, digest = reference.rsplit("@", 1)
            if not digest:
                raise ValueError(f"Invalid image reference: {original} (empty digest)")

        # Handle tag format (image:tag), ignoring registry ports
        tag = None
        last_colon = reference.rfind(":")
        if last_colon != -1:
            after_colon = reference[last_colon + 1:]
            if "/" not in after_colon:
                if not after_colon:
                    raise ValueError(f"Invalid image reference: {original} (empty tag)")
                tag = after_colon
                reference = reference[:last_colon]

        parts = reference.split("/")
        if len(parts) == 1:
            registry = cls.DEFAULT_REGISTRY
            repository = f"library/{parts[0]}"
        else:
            first_part = parts[0]
            if "." in first_part or ":" in first_part or first_part == "localhost":
                registry = first_part
                repository = "/".join(parts[1:])
            else:
                registry = cls.DEFAULT_REGISTRY
                repository = reference

        if not repository or repository.endswith("/"):
            raise ValueError(f"Invalid image reference: {original}")

        return cls(registry=registry, repository=repository, tag=tag,
                   digest=digest, original=original)

    @property
    def is_tagged(self) -> bool:
        """Whether the reference pins a version, by tag or by digest."""
        return bool(self.tag or self.digest)

    @property
    def key(self) -> str:
        """Registry and repository, used to match default tags."""
        return f"{self.registry}/{self.repository}"

    @property
    def untagged_name(self) -> str:
        """The reference as written, minus any tag or digest."""
        name = self.original
        if self.digest:
            name = name.rsplit("@", 1)[0]
        if self.tag:
            name = name[: -(len(self.tag) + 1)]
        return name

    def with_tag(self, tag: str) -> str:
        """The reference as written, with `tag` applied."""
        return f"{self.untagged_name}:{tag}"

    def __str__(self) -> str:
        return self.original
