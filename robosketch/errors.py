"""
Typed exception hierarchy for pipeline error handling.

Each generator stage has a specific exception type. Whether a failure
degrades to a default or aborts the request is decided by the
orchestrator's STAGE_POLICY, keyed by agent. All inherit from PipelineError.
"""


class PipelineError(Exception):
    """Base exception for all pipeline errors."""
    def __init__(self, message: str, agent: str = "", stage: str = ""):
        self.agent = agent
        self.stage = stage
        super().__init__(message)


class ConfigurationError(PipelineError):
    """Missing credential or invalid configuration."""
    def __init__(self, message: str):
        super().__init__(message, stage="config")


class ProviderError(PipelineError):
    """Upstream provider failed: network, rate limit, model unavailable."""
    def __init__(self, message: str, provider: str = "", model: str = ""):
        self.provider = provider
        self.model = model
        super().__init__(message, stage="provider")


class JSONParseError(PipelineError):
    """Model returned a response that does not parse as JSON."""
    def __init__(self, message: str, raw_text: str = ""):
        self.raw_text = raw_text[:200]
        super().__init__(message, stage="json_parse")


class SchemaError(PipelineError):
    """Response parsed but is missing fields or has the wrong shape."""
    def __init__(self, message: str, field: str = ""):
        self.field = field
        super().__init__(message, stage="schema")


class DescriptionError(PipelineError):
    """Project description generation failed."""
    def __init__(self, message: str):
        super().__init__(message, agent="describer", stage="description")


class BillOfMaterialsError(PipelineError):
    """BOM generation failed or returned nothing usable."""
    def __init__(self, message: str):
        super().__init__(message, agent="bom", stage="bom")


class CodeGenerationError(PipelineError):
    """Control code generation failed."""
    def __init__(self, message: str, platform: str = ""):
        self.platform = platform
        super().__init__(message, agent="coder", stage="code")


class ImageGenerationError(PipelineError):
    """Concept image or circuit diagram generation failed on every model."""
    def __init__(self, message: str, kind: str = ""):
        self.kind = kind  # concept | circuit
        super().__init__(message, agent="illustrator", stage=f"image_{kind}")


class ModelGenerationError(PipelineError):
    """OBJ 3D-model generation failed."""
    def __init__(self, message: str):
        super().__init__(message, agent="modeler", stage="obj_model")


class AssemblyError(PipelineError):
    """Assembly instructions generation failed."""
    def __init__(self, message: str):
        super().__init__(message, agent="assembler", stage="assembly")


class PackagingError(PipelineError):
    """ZIP archive could not be built from a result."""
    def __init__(self, message: str):
        super().__init__(message, stage="package")
