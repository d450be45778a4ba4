"""
Bootstrap Units
===============
Descriptors, metadata parsing and discovery for bootstrap units.
"""

from .descriptor import Unit, UnitAction, UnitDescriptor
from .loader import ScriptAction, UnitRegistry, discover_script_units, iter_unit_scripts
from .metadata import descriptor_from_mapping, extract_meta_block, parse_metadata

__all__ = [
    "Unit",
    "UnitAction",
    "UnitDescriptor",
    "ScriptAction",
    "UnitRegistry",
    "discover_script_units",
    "iter_unit_scripts",
    "descriptor_from_mapping",
    "extract_meta_block",
    "parse_metadata",
]
