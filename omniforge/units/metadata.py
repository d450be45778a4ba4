"""
Unit Metadata Parser
====================
Parses the embedded header block of a unit into a UnitDescriptor.

The block sits between a '#!meta' line and a '#!endmeta' line. Every line in
between is a comment whose remainder is YAML:

    #!meta
    # id: docker/redis-setup.sh
    # name: redis-setup
    # phase: 1
    # phase_name: Infrastructure & Database
    # profile_tags:
    #   - docker
    # uses_from_omni_settings:
    #   - PROJECT_ROOT
    # top_flags:
    #   - --skip-install
    # dependencies:
    #   packages: []
    #   dev_packages: []
    #!endmeta

Required fields are 'id' and 'phase' (integer >= 0). Everything else defaults
to empty. Blank list items ('-' with no value) are dropped.
"""

from __future__ import annotations

import textwrap
from typing import Any, Iterable, List, Optional, Tuple

import yaml

from omniforge.errors import MalformedMetadata
from omniforge.flags import normalize_flag_name
from omniforge.units.descriptor import UnitDescriptor
from omniforge.utils.schema_validation import UNIT_METADATA_SCHEMA, first_schema_issue

META_START = "#!meta"
META_END = "#!endmeta"
BLOCK_FIELD = "#!meta"


def extract_meta_block(text: str, source: str = "<unit>") -> Optional[str]:
    """Return the YAML body of the metadata block, or None if there is none.

    Raises:
        MalformedMetadata: Block is unterminated or contains non-comment lines.
    """
    lines = text.splitlines()
    start = None
    for idx, raw in enumerate(lines):
        if raw.strip() == META_START:
            start = idx
            break
    if start is None:
        return None

    body: List[str] = []
    for raw in lines[start + 1:]:
        line = raw.rstrip()
        if line.strip() == META_END:
            return textwrap.dedent("\n".join(body))
        if not line.strip():
            body.append("")
            continue
        if not line.lstrip().startswith("#"):
            raise MalformedMetadata(source, BLOCK_FIELD, f"contains a non-comment line: {line.strip()!r}")
        body.append(line.lstrip()[1:])

    raise MalformedMetadata(source, BLOCK_FIELD, f"is missing its closing '{META_END}' line")


def has_meta_block(text: str) -> bool:
    return any(line.strip() == META_START for line in text.splitlines())


def _clean_list(values: Optional[Iterable[Any]]) -> List[str]:
    out: List[str] = []
    for value in values or []:
        if value is None:
            continue
        item = str(value).strip()
        if item:
            out.append(item)
    return out


def _ordered_unique(values: Iterable[str]) -> Tuple[str, ...]:
    seen = set()
    out = []
    for value in values:
        if value not in seen:
            seen.add(value)
            out.append(value)
    return tuple(out)


def descriptor_from_mapping(data: Any, source: str = "<unit>") -> UnitDescriptor:
    """Validate a decoded metadata mapping and build the descriptor.

    Raises:
        MalformedMetadata: Naming the first missing or invalid field.
    """
    if not isinstance(data, dict):
        raise MalformedMetadata(source, BLOCK_FIELD, "must be a mapping of fields")

    issue = first_schema_issue(data, UNIT_METADATA_SCHEMA)
    if issue is not None:
        raise MalformedMetadata(source, issue.field or BLOCK_FIELD, issue.message)

    deps = data.get("dependencies") or {}
    settings = _clean_list(data.get("uses_from_omni_config")) + _clean_list(data.get("uses_from_omni_settings"))

    return UnitDescriptor(
        id=str(data["id"]).strip(),
        phase=int(data["phase"]),
        name=str(data.get("name") or "").strip(),
        phase_name=str(data.get("phase_name") or "").strip(),
        profile_tags=frozenset(_clean_list(data.get("profile_tags"))),
        settings_keys=_ordered_unique(settings),
        flags=frozenset(normalize_flag_name(f) for f in _clean_list(data.get("top_flags"))),
        packages=_ordered_unique(_clean_list(deps.get("packages"))),
        dev_packages=_ordered_unique(_clean_list(deps.get("dev_packages"))),
        source=source,
    )


def parse_metadata(text: str, source: str = "<unit>") -> UnitDescriptor:
    """Parse a unit's source text into a UnitDescriptor.

    Args:
        text: Full unit source (the block may appear after a shebang).
        source: Label used in error messages, usually the file path.

    Raises:
        MalformedMetadata: Block missing, YAML invalid, or a field invalid.
    """
    block = extract_meta_block(text, source)
    if block is None:
        raise MalformedMetadata(source, BLOCK_FIELD, "block not found")

    try:
        data = yaml.safe_load(block)
    except yaml.YAMLError as e:
        raise MalformedMetadata(source, BLOCK_FIELD, f"is not valid YAML: {e}") from e

    return descriptor_from_mapping(data, source)
