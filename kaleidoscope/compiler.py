"""
Kaleidoscope - Compiler Orchestrator
Runs lexing, parsing and code generation and returns LLVM IR text.
"""

import json
import sys
from dataclasses import fields
from typing import List
from llvmlite import binding as llvm
from llvmlite import ir
from .lexer import Lexer, tokenize, LexerError
from .operators import OperatorTable
from .parser import Parser, ParseError
from .codegen import CodeGenerator, CodeGenError
from .ast_nodes import ASTNode, VarInNode


class CompilationError(Exception):
    """Unified compilation error wrapper."""
    pass


class Session:
    """
    One compilation context: the operator table and the function table
    persist across feed() calls, so operators and functions defined by
    earlier input are available to later input.

    Every top-level unit is generated into its own module (collected in
    self.modules); a unit that fails leaves no trace behind.
    """

    def __init__(self, strict_numbers: bool = False, module_name: str = "kaleidoscope"):
        self.strict_numbers = strict_numbers
        self.operators = OperatorTable()
        self.codegen = CodeGenerator(module_name)
        self.modules: List[ir.Module] = []
        self._anon_count = 0

    def feed(self, source: str) -> List[ir.Function]:
        """
        Parse and generate every top-level unit in source.

        The first failing unit raises (LexerError, ParseError or
        CodeGenError); units before it stay committed.
        """
        # anonymous expression names stay unique across feed() calls
        parser = Parser(
            Lexer(source, strict_numbers=self.strict_numbers),
            self.operators,
            anon_count=self._anon_count,
        )

        generated = []
        while True:
            # operators declared by a unit whose codegen fails are dropped too
            with self.operators.transaction():
                unit = parser.parse_toplevel()
                self._anon_count = parser.anon_count
                if unit is None:
                    return generated

                module = self.codegen.new_module()
                generated.append(self.codegen.generate_toplevel(unit))
            self.modules.append(module)


def compile_source(
    source: str,
    emit_ast: bool = False,
    debug: bool = False,
    verify: bool = False,
    strict_numbers: bool = False,
    module_name: str = "kaleidoscope",
) -> str:
    """
    Compile Kaleidoscope source text to LLVM IR text.

    Parameters
    ----------
    source         : Kaleidoscope source code string
    emit_ast       : if True, return a JSON representation of the AST instead of IR
    debug          : print each phase summary to stderr
    verify         : parse the generated IR back with LLVM and run its verifier
    strict_numbers : reject malformed numerals instead of reading their valid prefix
    module_name    : name of the generated LLVM module

    Returns
    -------
    LLVM IR string (or JSON AST if emit_ast=True)

    Raises
    ------
    CompilationError on any phase failure
    """

    def log(msg):
        if debug:
            print(f"[kaleidoscope] {msg}", file=sys.stderr)

    # ── Phase 1: Lexical Analysis ─────────────────────────────────────────────
    log("Phase 1: Lexical analysis")
    try:
        tokens = tokenize(source, strict_numbers=strict_numbers)
    except LexerError as e:
        raise CompilationError(str(e)) from e

    log(f"  {len(tokens)-1} tokens produced")

    # ── Phase 2: Parsing ──────────────────────────────────────────────────────
    log("Phase 2: Parsing")
    try:
        parser = Parser(Lexer(source, strict_numbers=strict_numbers))
        ast = parser.parse()
    except (LexerError, ParseError) as e:
        raise CompilationError(str(e)) from e

    log(f"  {len(ast.units)} top-level units")

    if emit_ast:
        return _ast_to_json(ast)

    # ── Phase 3: Code Generation ──────────────────────────────────────────────
    log("Phase 3: Code generation")
    try:
        module = CodeGenerator(module_name).generate(ast)
    except CodeGenError as e:
        raise CompilationError(str(e)) from e

    log(f"  {len(module.functions)} functions emitted")
    llvm_ir = str(module)

    # ── Phase 4: Verification ─────────────────────────────────────────────────
    if verify:
        log("Phase 4: Verification")
        try:
            llvm.parse_assembly(llvm_ir).verify()
        except RuntimeError as e:
            raise CompilationError(f"[VerifyError] {e}") from e

    log("  Compilation successful")
    return llvm_ir


def compile_file(
    input_path: str,
    output_path: str,
    emit_ast: bool = False,
    debug: bool = False,
    verify: bool = False,
    strict_numbers: bool = False,
    module_name: str = "kaleidoscope",
) -> None:
    """Read a Kaleidoscope source file and write the compiled .ll to output_path."""
    with open(input_path, "r", encoding="utf-8") as f:
        source = f.read()

    result = compile_source(
        source, emit_ast=emit_ast, debug=debug, verify=verify,
        strict_numbers=strict_numbers, module_name=module_name,
    )

    with open(output_path, "w", encoding="utf-8") as f:
        f.write(result)


# ── AST serialization (for --emit-ast) ────────────────────────────────────────

def _ast_to_json(node) -> str:
    return json.dumps(_node_to_dict(node), indent=2)


def _node_to_dict(node):
    """
    JSON-ready form of an AST subtree. Each node becomes an object tagged
    with "_type"; var/in bindings become {"name", "init"} objects.
    """
    if isinstance(node, VarInNode):
        return {
            "_type": "VarInNode",
            "line": node.line,
            "bindings": [{"name": name, "init": _node_to_dict(init)} for name, init in node.bindings],
            "body": _node_to_dict(node.body),
        }
    if isinstance(node, ASTNode):
        d = {"_type": type(node).__name__}
        for f in fields(node):
            d[f.name] = _node_to_dict(getattr(node, f.name))
        return d
    if isinstance(node, list):
        return [_node_to_dict(n) for n in node]
    return node
