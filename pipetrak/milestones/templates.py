"""
Default milestone templates and component-type → template mapping.

Templates are ordered lists of {"name", "weight", "order"} where orders are
1-based and weights sum to 100.
"""

import logging
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

FULL_MILESTONE_SET = "Full Milestone Set"
REDUCED_MILESTONE_SET = "Reduced Milestone Set"
FIELD_WELD = "Field Weld"
INSULATION = "Insulation"
PAINT = "Paint"

WEIGHT_TOLERANCE = 0.01


def _ordered(milestones: List[tuple]) -> List[Dict]:
    return [
        {"name": name, "weight": weight, "order": index}
        for index, (name, weight) in enumerate(milestones, start=1)
    ]


DEFAULT_TEMPLATES: Dict[str, Dict] = {
    FULL_MILESTONE_SET: {
        "description": "Complete milestone tracking for spools and piping",
        "milestones": _ordered([
            ("Receive", 5),
            ("Erect", 30),
            ("Connect", 30),
            ("Support", 15),
            ("Punch", 5),
            ("Test", 10),
            ("Restore", 5),
        ]),
    },
    REDUCED_MILESTONE_SET: {
        "description": "Simplified tracking for valves, fittings and supports",
        "milestones": _ordered([
            ("Receive", 10),
            ("Install", 60),
            ("Punch", 10),
            ("Test", 15),
            ("Restore", 5),
        ]),
    },
    FIELD_WELD: {
        "description": "Field weld QC tracking",
        "milestones": _ordered([
            ("Fit Up", 10),
            ("Weld Made", 60),
            ("Punch", 10),
            ("Test", 15),
            ("Restore", 5),
        ]),
    },
    INSULATION: {
        "description": "Insulation installation",
        "milestones": _ordered([
            ("Insulate", 60),
            ("Metal Out", 40),
        ]),
    },
    PAINT: {
        "description": "Painting and coating",
        "milestones": _ordered([
            ("Primer", 40),
            ("Finish Coat", 60),
        ]),
    },
}

# Component type → template name
COMPONENT_TYPE_TEMPLATES: Dict[str, str] = {
    "SPOOL": FULL_MILESTONE_SET,
    "PIPING": FULL_MILESTONE_SET,
    "PIPE": FULL_MILESTONE_SET,
    "VALVE": REDUCED_MILESTONE_SET,
    "FITTING": REDUCED_MILESTONE_SET,
    "FLANGE": REDUCED_MILESTONE_SET,
    "GASKET": REDUCED_MILESTONE_SET,
    "SUPPORT": REDUCED_MILESTONE_SET,
    "INSTRUMENT": REDUCED_MILESTONE_SET,
    "FIELD_WELD": FIELD_WELD,
    "WELD": FIELD_WELD,
    "FW": FIELD_WELD,
    "INSULATION": INSULATION,
    "INSUL": INSULATION,
    "PAINT": PAINT,
}

FALLBACK_ORDER = [REDUCED_MILESTONE_SET, FULL_MILESTONE_SET]


def validate_template_milestones(milestones: List[Dict]) -> List[str]:
    """
    Check a template's milestone list.

    Returns:
        List of error strings (empty when the template is valid)
    """
    errors = []

    if not milestones:
        return ["Template must define at least one milestone"]

    names = [m.get("name") for m in milestones]
    if any(not name for name in names):
        errors.append("Every milestone needs a name")
    if len(set(names)) != len(names):
        errors.append("Milestone names must be unique")

    orders = [m.get("order") for m in milestones]
    if sorted(o for o in orders if isinstance(o, int)) != list(range(1, len(milestones) + 1)):
        errors.append("Milestone orders must be 1..N without gaps")

    weights = [m.get("weight") for m in milestones]
    if any(not isinstance(w, (int, float)) or w < 0 for w in weights):
        errors.append("Milestone weights must be non-negative numbers")
    else:
        total = sum(weights)
        if abs(total - 100) > WEIGHT_TOLERANCE:
            errors.append(f"Milestone weights must sum to 100 (got {total})")

    return errors


def resolve_template_name(
    component_type: Optional[str],
    available: Optional[List[str]] = None,
) -> str:
    """
    Pick the template for a component type.

    Matching runs exact, then upper-cased, then substring. When the matched
    template is not among `available`, falls back through Reduced → Full.
    """
    available = available if available is not None else list(DEFAULT_TEMPLATES)
    candidate = None

    if component_type:
        key = component_type.strip()
        candidate = COMPONENT_TYPE_TEMPLATES.get(key) or COMPONENT_TYPE_TEMPLATES.get(key.upper())

        if candidate is None:
            upper = key.upper().replace("-", "_").replace(" ", "_")
            for type_key, template_name in COMPONENT_TYPE_TEMPLATES.items():
                if type_key in upper:
                    candidate = template_name
                    break

    if candidate and candidate in available:
        return candidate

    for fallback in FALLBACK_ORDER:
        if fallback in available:
            logger.info(f"No template match for component type {component_type!r}, using {fallback}")
            return fallback

    if available:
        return available[0]
    raise LookupError("No milestone templates available")
