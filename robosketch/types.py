"""
Typed data models for the RoboSketch pipeline.

All inter-agent data flows through these types. Results serialize to
plain dicts (images as data URIs) for the HTTP surface and back.
"""
from __future__ import annotations
import base64
import binascii
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Platform(str, Enum):
    RASPBERRY_PI = "Raspberry Pi"
    ARDUINO = "Arduino"
    MICROBIT = "MicroBit"

    @property
    def language(self) -> str:
        return "python" if self is Platform.RASPBERRY_PI else "cpp"

    @property
    def code_extension(self) -> str:
        return "py" if self is Platform.RASPBERRY_PI else "cpp"


class InstructionsFormat(str, Enum):
    PDF = "pdf"
    MARKDOWN = "markdown"

    @classmethod
    def coerce(cls, value: Any) -> "InstructionsFormat":
        """Anything other than an explicit "pdf" is markdown."""
        if isinstance(value, str) and value.strip().lower() == "pdf":
            return cls.PDF
        return cls.MARKDOWN


# ── Images ────────────────────────────────────────────────────

_DATA_URI = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[\w=-]+)*;base64,(?P<data>.*)$", re.DOTALL)

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}


@dataclass(frozen=True)
class EncodedImage:
    """Canonical image value: MIME type plus base64 payload. Empty is legal."""
    media_type: str = "image/png"
    data: str = ""

    def __bool__(self) -> bool:
        return bool(self.data)

    @classmethod
    def empty(cls) -> "EncodedImage":
        return cls()

    @classmethod
    def from_bytes(cls, raw: bytes, media_type: str = "image/png") -> "EncodedImage":
        if not raw:
            return cls.empty()
        return cls(media_type=media_type or "image/png",
                   data=base64.b64encode(raw).decode("ascii"))

    @classmethod
    def from_data_uri(cls, uri: Optional[str]) -> "EncodedImage":
        if not uri:
            return cls.empty()
        m = _DATA_URI.match(uri.strip())
        if not m:
            raise ValueError("Expected a base64 data URI (data:<mime>;base64,<data>)")
        data = re.sub(r"\s+", "", m.group("data"))
        try:
            base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid base64 image payload: {e}") from e
        return cls(media_type=m.group("mime") or "image/png", data=data)

    @property
    def data_uri(self) -> str:
        if not self.data:
            return ""
        return f"data:{self.media_type};base64,{self.data}"

    @property
    def extension(self) -> str:
        return _EXTENSIONS.get(self.media_type.lower(), "png")

    def to_bytes(self) -> bytes:
        return base64.b64decode(self.data) if self.data else b""


# ── Request ───────────────────────────────────────────────────

@dataclass(frozen=True)
class ProjectRequest:
    description: str
    platform: Platform
    image: Optional[EncodedImage] = None

    @property
    def has_image(self) -> bool:
        return bool(self.image)


# ── BOM ───────────────────────────────────────────────────────

def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"not a price: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = re.sub(r"[^\d.\-]", "", value)
        if cleaned:
            return float(cleaned)
    raise ValueError(f"not a price: {value!r}")


def _to_quantity(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"not a quantity: {value!r}")
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValueError(f"not a quantity: {value!r}")


@dataclass
class BOMItem:
    component: str
    description: str = ""
    quantity: int = 1
    link: str = ""
    unit_price_usd: float = 0.0

    @property
    def line_total_usd(self) -> float:
        return self.unit_price_usd * self.quantity

    @classmethod
    def from_dict(cls, data: dict) -> "BOMItem":
        """Build from provider keys (approximatePriceUSD) or our own (unit_price_usd)."""
        price = data.get("approximatePriceUSD", data.get("unit_price_usd", 0))
        return cls(
            component=str(data.get("component", "")).strip(),
            description=str(data.get("description", "") or "").strip(),
            quantity=_to_quantity(data.get("quantity", 1)),
            link=str(data.get("link", "") or "").strip(),
            unit_price_usd=_to_float(price if price is not None else 0),
        )

    def to_dict(self) -> dict:
        return {
            "component": self.component,
            "description": self.description,
            "quantity": self.quantity,
            "link": self.link,
            "approximatePriceUSD": self.unit_price_usd,
        }


def bom_total(items: list[BOMItem]) -> float:
    """Sum of quantity × unit price, to two decimals."""
    return round(sum(i.line_total_usd for i in items), 2)


def flatten_bom(items: list[BOMItem]) -> str:
    """Text form of the BOM used as prompt context downstream."""
    return "\n".join(
        f"- {i.quantity} × {i.component}: {i.description} (${i.unit_price_usd:.2f} each)"
        for i in items
    )


# ── Generated artifacts ───────────────────────────────────────

@dataclass
class GeneratedCode:
    source: str
    platform: Platform

    @property
    def language(self) -> str:
        return self.platform.language

    @property
    def filename(self) -> str:
        return f"code.{self.platform.code_extension}"


@dataclass
class GeneratedImages:
    concept_image: EncodedImage = field(default_factory=EncodedImage.empty)
    circuit_diagram: EncodedImage = field(default_factory=EncodedImage.empty)
    model_3d: str = ""
    model_3d_filename: str = "robot_model.obj"

    def to_dict(self) -> dict:
        return {
            "conceptImage": self.concept_image.data_uri,
            "circuitDiagram": self.circuit_diagram.data_uri,
            "robot3DModel": self.model_3d,
            "robot3DModelFilename": self.model_3d_filename,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GeneratedImages":
        return cls(
            concept_image=EncodedImage.from_data_uri(data.get("conceptImage")),
            circuit_diagram=EncodedImage.from_data_uri(data.get("circuitDiagram")),
            model_3d=data.get("robot3DModel") or "",
            model_3d_filename=data.get("robot3DModelFilename") or "robot_model.obj",
        )


@dataclass
class AssemblyInstructions:
    text: str
    format: InstructionsFormat = InstructionsFormat.MARKDOWN


# ── Result ────────────────────────────────────────────────────

@dataclass
class ProjectResult:
    """Aggregate of every generator output for one request. In-memory only."""
    description: str
    platform: Platform
    project_description: str = ""
    bill_of_materials: list[BOMItem] = field(default_factory=list)
    code: Optional[GeneratedCode] = None
    images: GeneratedImages = field(default_factory=GeneratedImages)
    assembly_instructions: Optional[AssemblyInstructions] = None
    warnings: list[str] = field(default_factory=list)
    status: str = "planning"

    @property
    def total_cost_usd(self) -> float:
        return bom_total(self.bill_of_materials)

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "platform": self.platform.value,
            "projectDescription": self.project_description,
            "billOfMaterials": [i.to_dict() for i in self.bill_of_materials],
            "totalCostUSD": self.total_cost_usd,
            "code": {
                "code": self.code.source if self.code else "",
                "language": self.platform.language,
                "filename": f"code.{self.platform.code_extension}",
            },
            "images": self.images.to_dict(),
            "assemblyInstructions": {
                "assemblyInstructions": (
                    self.assembly_instructions.text if self.assembly_instructions else ""),
                "assemblyInstructionsFormat": (
                    self.assembly_instructions.format.value
                    if self.assembly_instructions else InstructionsFormat.MARKDOWN.value),
            },
            "warnings": list(self.warnings),
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProjectResult":
        """Rebuild a result posted back by a client. Raises ValueError on bad BOM records."""
        from robosketch.validators import validate_bom_item  # validators imports this module

        platform = Platform(data["platform"])
        raw_bom = data.get("billOfMaterials") or []
        errors = [f"billOfMaterials[{i}] {e}"
                  for i, raw in enumerate(raw_bom) for e in validate_bom_item(raw)]
        if errors:
            raise ValueError("; ".join(errors))
        code = data.get("code") or {}
        asm = data.get("assemblyInstructions") or {}
        return cls(
            description=data.get("description", ""),
            platform=platform,
            project_description=data.get("projectDescription", ""),
            bill_of_materials=[BOMItem.from_dict(i) for i in raw_bom],
            code=GeneratedCode(source=code.get("code", ""), platform=platform),
            images=GeneratedImages.from_dict(data.get("images") or {}),
            assembly_instructions=AssemblyInstructions(
                text=asm.get("assemblyInstructions", ""),
                format=InstructionsFormat.coerce(asm.get("assemblyInstructionsFormat")),
            ),
            warnings=list(data.get("warnings", [])),
            status=data.get("status", "ready"),
        )
