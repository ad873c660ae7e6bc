"""
Output validators for each pipeline stage.

Validates the structural integrity of parsed provider responses before
they are turned into typed records. Returns (is_valid, errors) tuple.
Generators call require_valid(), which raises SchemaError; their own
stage error wraps it and the orchestrator's stage policy takes over.
"""
from typing import Any

from robosketch.errors import SchemaError
from robosketch.types import Platform


def validate_description(data: Any) -> tuple[bool, list[str]]:
    """Validate description generator output."""
    if not isinstance(data, dict):
        return False, ["Description response must be a JSON object"]
    if "projectDescription" not in data:
        return False, ["Missing projectDescription"]
    value = data["projectDescription"]
    if value is None or (isinstance(value, str) and not value.strip()):
        return False, ["projectDescription is empty"]
    return True, []


def validate_bom_item(item: Any) -> list[str]:
    """Errors for one BOM record; empty list means usable."""
    if not isinstance(item, dict):
        return ["not an object"]
    errors = []
    if not str(item.get("component") or "").strip():
        errors.append("missing component")
    qty = item.get("quantity", 1)
    if isinstance(qty, str) and qty.strip().isdigit():
        qty = int(qty.strip())
    if isinstance(qty, bool) or not isinstance(qty, (int, float)) or qty < 1 or int(qty) != qty:
        errors.append(f"invalid quantity: {qty!r}")
    price = item.get("approximatePriceUSD", 0)
    if isinstance(price, str):
        try:
            price = float(price.replace("$", "").replace(",", "").strip())
        except ValueError:
            errors.append(f"invalid price: {price!r}")
            price = 0
    if isinstance(price, bool) or not isinstance(price, (int, float)) or price < 0:
        errors.append(f"invalid price: {price!r}")
    return errors


def validate_bom(data: Any) -> tuple[bool, list[str]]:
    """Validate the BOM container. Records are checked one by one with
    validate_bom_item so a bad record drops alone."""
    if not isinstance(data, list):
        return False, ["BOM must be a list"]
    return True, []


def validate_code(data: Any) -> tuple[bool, list[str]]:
    """Validate code generator output."""
    if not isinstance(data, dict):
        return False, ["Code response must be a JSON object"]
    code = data.get("code")
    if not isinstance(code, str) or not code.strip():
        return False, ["Missing or empty code"]
    return True, []


def validate_assembly(data: Any) -> tuple[bool, list[str]]:
    """Validate assembly generator output. The format field is coerced, not checked."""
    if not isinstance(data, dict):
        return False, ["Assembly response must be a JSON object"]
    text = data.get("assemblyInstructions")
    if not isinstance(text, str) or not text.strip():
        return False, ["Missing or empty assemblyInstructions"]
    return True, []


def validate_request(description: Any, platform: Any,
                     min_chars: int = 10, max_chars: int = 500) -> tuple[bool, list[str]]:
    """Validate user input before any network call."""
    errors = []
    if not isinstance(description, str):
        errors.append("Description must be text")
    else:
        n = len(description.strip())
        if n < min_chars:
            errors.append(
                f"Please provide a more detailed description (at least {min_chars} characters).")
        elif n > max_chars:
            errors.append(f"Description cannot exceed {max_chars} characters.")
    if platform not in {p.value for p in Platform} and not isinstance(platform, Platform):
        errors.append(f"Unknown platform: {platform!r}")
    return len(errors) == 0, errors


# Registry for dispatch
VALIDATORS = {
    "description": validate_description,
    "bom": validate_bom,
    "code": validate_code,
    "assembly": validate_assembly,
}


def validate_stage(stage: str, data: Any) -> tuple[bool, list[str]]:
    """Validate any pipeline stage output. Returns (valid, errors)."""
    validator = VALIDATORS.get(stage)
    if not validator:
        return True, []
    return validator(data)


def require_valid(stage: str, data: Any) -> None:
    """Raise SchemaError when a stage's parsed output fails validation."""
    ok, errors = validate_stage(stage, data)
    if not ok:
        raise SchemaError("; ".join(errors), field=stage)
