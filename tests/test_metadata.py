"""
Tests for Unit Metadata Parsing
===============================
"""

import pytest

from omniforge.errors import MalformedMetadata
from omniforge.units.metadata import descriptor_from_mapping, extract_meta_block, parse_metadata


REDIS_SETUP = """#!/usr/bin/env bash
#!meta
# id: docker/redis-setup.sh
# name: redis-setup
# phase: 1
# phase_name: Infrastructure & Database
# profile_tags:
#   - docker
# uses_from_omni_config:
#   - ENABLE_REDIS
# uses_from_omni_settings:
#   - PROJECT_ROOT
#   - INSTALL_DIR
#   - ENABLE_REDIS
# top_flags:
#   - --dry-run
#   - --skip-install
# dependencies:
#   packages:
#     -
#   dev_packages:
#     -
#!endmeta

set -euo pipefail
echo "redis"
"""


@pytest.mark.unit
def test_parse_full_header():
    d = parse_metadata(REDIS_SETUP, source="tech_stack/docker/redis-setup.sh")

    assert d.id == "docker/redis-setup.sh"
    assert d.name == "redis-setup"
    assert d.phase == 1
    assert d.phase_name == "Infrastructure & Database"
    assert d.profile_tags == frozenset({"docker"})
    assert d.settings_keys == ("ENABLE_REDIS", "PROJECT_ROOT", "INSTALL_DIR")
    assert d.flags == frozenset({"dry-run", "skip-install"})
    assert d.packages == ()
    assert d.dev_packages == ()
    assert d.source == "tech_stack/docker/redis-setup.sh"


@pytest.mark.unit
def test_blank_list_items_are_dropped():
    text = "#!meta\n# id: x\n# phase: 0\n# dependencies:\n#   packages:\n#     - next\n#     -\n#     - react\n#!endmeta\n"
    d = parse_metadata(text)
    assert d.packages == ("next", "react")


@pytest.mark.unit
def test_optional_fields_default_to_empty():
    d = parse_metadata("#!meta\n# id: minimal\n# phase: 0\n#!endmeta\n")
    assert d.name == ""
    assert d.display_name == "minimal"
    assert d.profile_tags == frozenset()
    assert d.settings_keys == ()
    assert d.flags == frozenset()


@pytest.mark.unit
def test_missing_block_raises():
    with pytest.raises(MalformedMetadata, match="block not found"):
        parse_metadata("#!/usr/bin/env bash\necho hi\n", source="plain.sh")


@pytest.mark.unit
def test_unterminated_block_raises():
    with pytest.raises(MalformedMetadata, match="#!endmeta"):
        parse_metadata("#!meta\n# id: x\n# phase: 0\n")


@pytest.mark.unit
def test_non_comment_line_in_block_raises():
    with pytest.raises(MalformedMetadata, match="non-comment"):
        extract_meta_block("#!meta\n# id: x\nphase: 0\n#!endmeta\n")


@pytest.mark.unit
def test_missing_id_names_field():
    with pytest.raises(MalformedMetadata) as exc:
        parse_metadata("#!meta\n# name: nothing\n# phase: 2\n#!endmeta\n", source="a.sh")
    assert exc.value.field == "id"
    assert exc.value.source == "a.sh"


@pytest.mark.unit
def test_missing_phase_names_field():
    with pytest.raises(MalformedMetadata) as exc:
        parse_metadata("#!meta\n# id: x\n#!endmeta\n")
    assert exc.value.field == "phase"


@pytest.mark.unit
@pytest.mark.parametrize("phase", ["-1", "two", "1.5"])
def test_invalid_phase_rejected(phase):
    with pytest.raises(MalformedMetadata) as exc:
        parse_metadata(f"#!meta\n# id: x\n# phase: {phase}\n#!endmeta\n")
    assert exc.value.field == "phase"


@pytest.mark.unit
def test_invalid_yaml_rejected():
    with pytest.raises(MalformedMetadata, match="YAML"):
        parse_metadata("#!meta\n# id: [unclosed\n# phase: 0\n#!endmeta\n")


@pytest.mark.unit
def test_mapping_must_be_dict():
    with pytest.raises(MalformedMetadata):
        descriptor_from_mapping(["id", "phase"], source="list")


@pytest.mark.unit
def test_descriptor_to_dict_is_stable():
    d = descriptor_from_mapping({"id": "core/next.sh", "phase": 0, "top_flags": ["--no-dev", "--dry-run"]})
    payload = d.to_dict()
    assert payload["id"] == "core/next.sh"
    assert payload["flags"] == ["dry-run", "no-dev"]
    assert d.recognizes("--dry-run")
    assert d.recognizes("DRY_RUN")
    assert not d.recognizes("skip-install")
