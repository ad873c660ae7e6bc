"""
Result packager — bundles a ProjectResult into a downloadable ZIP.

Layout (five top-level entries):
    project_description.txt
    bill_of_materials.csv
    code.py | code.cpp
    assembly_instructions.md
    images/concept.<ext>, images/circuit_diagram.<ext>, images/<model>.obj

Generated images are packaged as-is. An empty slot is filled from the
configured placeholder URL; if that fetch fails the slot is left out.
"""
import csv
import io
import posixpath
import zipfile

import httpx

from robosketch.config import CONFIG
from robosketch.errors import PackagingError, PipelineError
from robosketch.logger import PipelineLogger
from robosketch.providers import fetch_image
from robosketch.types import BOMItem, EncodedImage, ProjectResult, bom_total

ARCHIVE_FILENAME = "robosketch-project.zip"
CSV_HEADER = ["Component", "Description", "Quantity", "Unit Price (USD)", "Line Total (USD)", "Link"]


def build_csv(items: list[BOMItem]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for item in items:
        writer.writerow([
            item.component,
            item.description,
            item.quantity,
            f"{item.unit_price_usd:.2f}",
            f"{item.line_total_usd:.2f}",
            item.link,
        ])
    writer.writerow(["TOTAL", "", "", "", f"{bom_total(items):.2f}", ""])
    return buf.getvalue()


async def _image_or_placeholder(image: EncodedImage, placeholder_url: str, fetch: bool,
                                http: httpx.AsyncClient | None, log: PipelineLogger) -> EncodedImage:
    if image or not fetch or not placeholder_url:
        return image
    try:
        return await fetch_image(placeholder_url, http)
    except PipelineError as e:
        log.warn("package.placeholder_failed", url=placeholder_url, error=str(e))
        return EncodedImage.empty()


async def build_archive(result: ProjectResult, fetch_placeholders: bool = True,
                        http: httpx.AsyncClient | None = None,
                        log: PipelineLogger | None = None) -> bytes:
    """ZIP bytes for a result. Raises PackagingError if the archive cannot be written."""
    log = log or PipelineLogger()
    images = result.images
    concept = await _image_or_placeholder(
        images.concept_image, CONFIG.placeholder_concept_url, fetch_placeholders, http, log)
    circuit = await _image_or_placeholder(
        images.circuit_diagram, CONFIG.placeholder_circuit_url, fetch_placeholders, http, log)

    instructions = result.assembly_instructions.text if result.assembly_instructions else ""
    buf = io.BytesIO()
    try:
        with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
            zf.writestr("project_description.txt", result.project_description)
            zf.writestr("bill_of_materials.csv", build_csv(result.bill_of_materials))
            zf.writestr(f"code.{result.platform.code_extension}",
                        result.code.source if result.code else "")
            zf.writestr("assembly_instructions.md", instructions)
            zf.writestr("images/", "")
            if concept:
                zf.writestr(f"images/concept.{concept.extension}", concept.to_bytes())
            if circuit:
                zf.writestr(f"images/circuit_diagram.{circuit.extension}", circuit.to_bytes())
            if images.model_3d:
                name = posixpath.basename(images.model_3d_filename) or "robot_model.obj"
                zf.writestr(f"images/{name}", images.model_3d)
    except (OSError, ValueError, zipfile.BadZipFile) as e:
        raise PackagingError(f"Could not build archive: {e}") from e

    log.info("package.done", bytes=buf.tell(), parts=len(result.bill_of_materials))
    return buf.getvalue()
