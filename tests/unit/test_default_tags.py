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
Unit tests for default-tags files.
"""
import pytest

from cage.PARSERS.default_tags import DefaultTags
from cage.errors import MalformedConfig


def test_parse_file(tmp_path):
    """Comments and blank lines are skipped; each line keys a tag by registry and repository."""
    path = tmp_path / "tags.txt"
    path.write_text("# locked by CI\npostgres:15.2\n\nexample/web:abc123\nregistry.example.com:5000/api:7\n")
    tags = DefaultTags.parse(str(path))
    assert len(tags) == 3
    assert tags.tags == {
        'docker.io/library/postgres': '15.2',
        'docker.io/example/web': 'abc123',
        'registry.example.com:5000/api': '7',
    }


def test_untagged_line_is_malformed():
    """Every line must carry a tag."""
    with pytest.raises(MalformedConfig) as excinfo:
        DefaultTags.parse_from_string("postgres:15\nredis\n", source="tags.txt")
    assert excinfo.value.location == "line 2"


def test_empty_tag_line_is_malformed():
    """A trailing colon is not a tag."""
    with pytest.raises(MalformedConfig) as excinfo:
        DefaultTags.parse_from_string("nginx:\n", source="tags.txt")
    assert excinfo.value.location == "line 1"


def test_apply():
    """Untagged images take the default; explicit tags are kept."""
    tags = DefaultTags.parse_from_string("postgres:15.2\n")
    assert tags.apply("postgres") == "postgres:15.2"
    assert tags.apply("postgres:13") == "postgres:13"


def test_apply_without_default_is_none():
    """An untagged image with no default stays unresolved."""
    tags = DefaultTags.parse_from_string("postgres:15.2\n")
    assert tags.apply("redis") is None
    assert tags.apply("redis:7") == "redis:7"


def test_apply_keeps_digest():
    """A digest pins the image as firmly as a tag."""
    tags = DefaultTags.parse_from_string("postgres:15.2\n")
    pinned = "postgres@sha256:" + "a" * 64
    assert tags.apply(pinned) == pinned


def test_apply_rejects_empty_tag():
    """A reference ending in a colon is invalid even when a default exists."""
    tags = DefaultTags({'docker.io/library/nginx': '1.25'})
    with pytest.raises(ValueError):
        tags.apply("nginx:")


def test_library_prefix_matches_short_name():
    """`docker.io/library/postgres` and `postgres` name the same image."""
    tags = DefaultTags.parse_from_string("docker.io/library/postgres:15\n")
    assert tags.apply("postgres") == "postgres:15"


def test_empty_tags_are_falsy():
    """An empty tag set is falsy so callers can skip it."""
    assert not DefaultTags()
    assert DefaultTags({'docker.io/library/redis': '7'})
