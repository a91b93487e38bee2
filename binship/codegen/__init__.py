"""Program generation: payload embedding, IR and rendering."""

from .embedder import Embedder
from .embedder import StaticFileRef
from .embedder import canonical_json
from .generator import CodeGenerator
from .generator import write_source
from .ir import GENERATOR_VERSION
from .ir import ProgramIR
from .ir import build_ir
from .render import GeneratedSource
from .render import render

__all__ = [
    "GENERATOR_VERSION",
    "CodeGenerator",
    "Embedder",
    "GeneratedSource",
    "ProgramIR",
    "StaticFileRef",
    "build_ir",
    "canonical_json",
    "render",
    "write_source",
]
