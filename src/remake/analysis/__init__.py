"""Static analysis of commands and functions into dependencies."""

from .analyzer import (
    CodeDependencies,
    analyze_code,
    analyze_function,
    function_code_text,
    is_library_object,
)
from .chunks import chunk_references, document_references, extract_chunks
from .commands import Command

__all__ = [
    "Command",
    "CodeDependencies",
    "analyze_code",
    "analyze_function",
    "function_code_text",
    "is_library_object",
    "extract_chunks",
    "chunk_references",
    "document_references",
]
