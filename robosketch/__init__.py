"""
RoboSketch — multi-agent pipeline that turns a robot idea into a buildable project.

Public API:
    from robosketch import Orchestrator, DescriptionAgent, BOMAgent, CodeAgent
    from robosketch import ImageAgent, OBJModelAgent, AssemblyAgent, build_archive
    from robosketch.types import BOMItem, Platform, ProjectRequest, ProjectResult
    from robosketch.config import CONFIG
"""
__version__ = "1.0.0"

from robosketch.agents.orchestrator import Orchestrator, AgentMessage, MODEL
from robosketch.agents.description_agent import DescriptionAgent
from robosketch.agents.bom_agent import BOMAgent
from robosketch.agents.coder.code_agent import CodeAgent
from robosketch.agents.illustrator.image_agent import ImageAgent
from robosketch.agents.modeler.obj_agent import OBJModelAgent
from robosketch.agents.assembler.assembly_agent import AssemblyAgent
from robosketch.packager import build_archive
