"""
Kaleidoscope - AST Node Definitions
Every expression evaluates to a double; each node owns its children.
"""

from dataclasses import dataclass, field
from typing import List, Tuple


@dataclass
class ASTNode:
    """Base class for all AST nodes."""
    line: int = 0


@dataclass
class ProgramNode(ASTNode):
    """Root node: the top-level units of a source file, in order."""
    units: List[ASTNode] = field(default_factory=list)


@dataclass
class NumberNode(ASTNode):
    """A numeric literal."""
    value: float = 0.0


@dataclass
class VariableNode(ASTNode):
    """A variable reference."""
    name: str = ""


@dataclass
class CallNode(ASTNode):
    """callee(arg, ...)"""
    callee: str = ""
    args: List[ASTNode] = field(default_factory=list)


@dataclass
class PrototypeNode(ASTNode):
    """
    Function signature: name and parameter names.

    Operator prototypes are named "unary<c>" / "binary<c>"; for binary
    operators precedence holds the binding strength they were declared with.
    """
    name: str = ""
    params: List[str] = field(default_factory=list)
    is_operator: bool = False
    precedence: int = 0

    @property
    def is_unary(self) -> bool:
        return self.is_operator and len(self.params) == 1

    @property
    def is_binary(self) -> bool:
        return self.is_operator and len(self.params) == 2

    @property
    def operator_name(self) -> str:
        if not (self.is_unary or self.is_binary):
            raise ValueError(f"{self.name!r} is not an operator prototype")
        return self.name[-1]


@dataclass
class FunctionNode(ASTNode):
    """def prototype body"""
    proto: PrototypeNode = None
    body: ASTNode = None


@dataclass
class IfNode(ASTNode):
    """if cond then then else else_"""
    cond: ASTNode = None
    then: ASTNode = None
    else_: ASTNode = None


@dataclass
class ForNode(ASTNode):
    """for var_name = start, end, step in body"""
    var_name: str = ""
    start: ASTNode = None
    end: ASTNode = None
    step: ASTNode = None
    body: ASTNode = None


@dataclass
class UnaryNode(ASTNode):
    """op operand, for a user-defined unary operator."""
    op: str = ""
    operand: ASTNode = None


@dataclass
class BinaryNode(ASTNode):
    """left op right"""
    op: str = ""
    left: ASTNode = None
    right: ASTNode = None


@dataclass
class VarInNode(ASTNode):
    """var name = init, ... in body"""
    bindings: List[Tuple[str, ASTNode]] = field(default_factory=list)
    body: ASTNode = None
