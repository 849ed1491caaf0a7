"""
Kaleidoscope - a small expression language front end that lowers to LLVM IR.
"""

from .compiler import compile_source, compile_file, CompilationError, Session

__version__ = "0.1.0"

__all__ = ["compile_source", "compile_file", "CompilationError", "Session"]
