"""EPR compliance stream classification and fee calculation."""

from typing import Optional

from .config import ComplianceSettings
from .errors import ValidationError

OTHER_STREAM = "Other"

# First matching stream wins, in this order
_STREAM_KEYWORDS = [
    ("Plastic", ("plastic", "pet")),
    ("Paper & Packaging", ("paper", "cardboard")),
    ("Glass", ("glass",)),
    ("Metals", ("copper", "aluminum", "steel", "metal")),
    ("Electrical & Electronic", ("electronic", "weee", "battery")),
]


def epr_stream(material_type: str) -> str:
    """Map a free-text material description to its compliance stream."""
    material = (material_type or "").lower()
    for stream, keywords in _STREAM_KEYWORDS:
        if any(keyword in material for keyword in keywords):
            return stream
    return OTHER_STREAM


def compute_epr_fee(
    weight_kg: float,
    material_type: Optional[str] = None,
    settings: Optional[ComplianceSettings] = None,
) -> float:
    """Compliance fee for a captured weight.

    Uses the stream-specific rate when one is configured for the material's
    stream, otherwise the flat default rate per kg.
    """
    if weight_kg < 0:
        raise ValidationError("weight_kg must be non-negative")
    settings = settings or ComplianceSettings()

    rate = settings.default_rate_per_kg
    if material_type is not None:
        rate = settings.stream_rates.get(epr_stream(material_type), rate)
    return round(weight_kg * rate, 2)
