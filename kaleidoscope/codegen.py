"""
Kaleidoscope - Code Generator
Lowers the AST into LLVM IR with llvmlite. Every value is a double; local
variables live in entry-block allocas so they can be reassigned.
"""

from contextlib import ExitStack, contextmanager
from typing import Dict, Optional, Set
from llvmlite import ir
from .ast_nodes import (
    ProgramNode, NumberNode, VariableNode, CallNode, PrototypeNode,
    FunctionNode, IfNode, ForNode, UnaryNode, BinaryNode, VarInNode, ASTNode
)

DOUBLE = ir.DoubleType()
ZERO = ir.Constant(DOUBLE, 0.0)

BUILTIN_BINARY_OPS = {'+', '-', '*', '<'}


class CodeGenError(Exception):
    kind = "CodeGenError"

    def __init__(self, message: str, line: int = 0):
        super().__init__(f"[{self.kind}] Line {line}: {message}")
        self.line = line


class UnknownSymbolError(CodeGenError):
    kind = "UnknownSymbol"


class UnknownFunctionError(CodeGenError):
    kind = "UnknownFunction"


class ArityMismatchError(CodeGenError):
    kind = "ArityMismatch"


class SignatureConflictError(CodeGenError):
    kind = "SignatureConflict"


class UnknownOperatorError(CodeGenError):
    kind = "UnknownOperator"


class InvalidAssignmentError(CodeGenError):
    kind = "InvalidAssignment"


class CodeGenerator:
    """
    Walks the AST and emits IR into self.module.

    The function table (every prototype seen so far) outlives modules: after
    new_module(), functions from earlier modules are re-declared on first use.
    """

    def __init__(self, module_name: str = "kaleidoscope"):
        self.module_name = module_name
        self.module = ir.Module(name=module_name)
        self._protos: Dict[str, PrototypeNode] = {}
        self._defined: Set[str] = set()
        self._named_values: Dict[str, ir.AllocaInstr] = {}
        self._builder: Optional[ir.IRBuilder] = None

    def new_module(self) -> ir.Module:
        self.module = ir.Module(name=self.module_name)
        return self.module

    @property
    def functions(self) -> Dict[str, PrototypeNode]:
        return dict(self._protos)

    def is_defined(self, name: str) -> bool:
        return name in self._defined

    # ------------------------------------------------------------------ entry points

    def generate(self, node: ASTNode):
        """Emit IR for node and return the resulting llvmlite value."""
        method = f"_visit_{type(node).__name__}"
        visitor = getattr(self, method, None)
        if visitor is None:
            raise CodeGenError(f"Unknown AST node type: {type(node).__name__}", getattr(node, 'line', 0))
        if self._builder is None and not isinstance(node, (ProgramNode, PrototypeNode, FunctionNode, NumberNode)):
            raise CodeGenError(f"{type(node).__name__} outside of a function body", node.line)
        return visitor(node)

    def generate_toplevel(self, node: ASTNode):
        """
        Generate one top-level unit. If it fails, the function table is
        restored to what it was before the unit started.
        """
        saved_protos = dict(self._protos)
        saved_defined = set(self._defined)
        try:
            return self.generate(node)
        except Exception:
            self._protos = saved_protos
            self._defined = saved_defined
            raise

    # ------------------------------------------------------------------ helpers

    def _get_function(self, name: str) -> Optional[ir.Function]:
        proto = self._protos.get(name)
        if proto is None:
            return None
        existing = self.module.globals.get(name)
        if existing is None:
            return self._declare(proto)
        # A declaration left over from a failed definition in this module.
        if len(existing.args) != len(proto.params):
            raise SignatureConflictError(
                f"Function '{name}' is already declared in this module with "
                f"{len(existing.args)} parameter(s)",
                proto.line
            )
        return existing

    def _declare(self, proto: PrototypeNode) -> ir.Function:
        fnty = ir.FunctionType(DOUBLE, [DOUBLE] * len(proto.params))
        fn = ir.Function(self.module, fnty, name=proto.name)
        for arg, name in zip(fn.args, proto.params):
            arg.name = name
        return fn

    def _entry_alloca(self, name: str) -> ir.AllocaInstr:
        block = self._builder.block
        self._builder.position_at_start(self._builder.function.entry_basic_block)
        slot = self._builder.alloca(DOUBLE, name=name)
        self._builder.position_at_end(block)
        return slot

    def _discard(self, fn: ir.Function) -> None:
        # ir.Module has no API to drop a global, so undo what ir.Function registered.
        del self.module.globals[fn.name]
        self.module.scope._useset.discard(fn.name)

    @contextmanager
    def _scoped(self, name: str, slot: ir.AllocaInstr):
        """Bind name to slot, restoring the outer binding on every exit path."""
        outer = self._named_values.get(name)
        self._named_values[name] = slot
        try:
            yield slot
        finally:
            if outer is None:
                self._named_values.pop(name, None)
            else:
                self._named_values[name] = outer

    def _lookup(self, name: str, line: int) -> ir.AllocaInstr:
        slot = self._named_values.get(name)
        if slot is None:
            raise UnknownSymbolError(f"Unknown variable name '{name}'", line)
        return slot

    # ------------------------------------------------------------------ top level

    def _visit_ProgramNode(self, node: ProgramNode) -> ir.Module:
        for unit in node.units:
            self.generate_toplevel(unit)
        return self.module

    def _visit_PrototypeNode(self, node: PrototypeNode) -> ir.Function:
        existing = self._protos.get(node.name)
        if existing is not None and len(existing.params) != len(node.params):
            raise SignatureConflictError(
                f"Function '{node.name}' was declared with {len(existing.params)} "
                f"parameter(s), now {len(node.params)}",
                node.line
            )
        self._protos[node.name] = node
        return self._get_function(node.name)

    def _visit_FunctionNode(self, node: FunctionNode) -> ir.Function:
        proto = node.proto
        if proto.name in self._defined:
            raise SignatureConflictError(f"Function '{proto.name}' cannot be redefined", node.line)

        declared_before = proto.name in self.module.globals
        fn = self._visit_PrototypeNode(proto)
        self._builder = ir.IRBuilder(fn.append_basic_block('entry'))
        self._named_values = {}
        try:
            for arg, name in zip(fn.args, proto.params):
                slot = self._entry_alloca(name)
                self._builder.store(arg, slot)
                self._named_values[name] = slot
            self._builder.ret(self.generate(node.body))
        except Exception:
            # Never leave a half-built body; keep only a declaration that predates this unit.
            if declared_before:
                fn.blocks = []
            else:
                self._discard(fn)
            raise
        finally:
            self._named_values = {}
            self._builder = None

        self._defined.add(proto.name)
        return fn

    # ------------------------------------------------------------------ expressions

    def _visit_NumberNode(self, node: NumberNode) -> ir.Constant:
        return ir.Constant(DOUBLE, float(node.value))

    def _visit_VariableNode(self, node: VariableNode) -> ir.Value:
        return self._builder.load(self._lookup(node.name, node.line), name=node.name)

    def _visit_CallNode(self, node: CallNode) -> ir.Value:
        callee = self._get_function(node.callee)
        if callee is None:
            raise UnknownFunctionError(f"Unknown function referenced: '{node.callee}'", node.line)
        if len(callee.args) != len(node.args):
            raise ArityMismatchError(
                f"Function '{node.callee}' takes {len(callee.args)} argument(s), "
                f"{len(node.args)} given",
                node.line
            )
        args = [self.generate(arg) for arg in node.args]
        return self._builder.call(callee, args, name='calltmp')

    def _visit_UnaryNode(self, node: UnaryNode) -> ir.Value:
        fn = self._get_function('unary' + node.op)
        if fn is None:
            raise UnknownOperatorError(f"Unknown unary operator '{node.op}'", node.line)
        operand = self.generate(node.operand)
        return self._builder.call(fn, [operand], name='unop')

    def _visit_BinaryNode(self, node: BinaryNode) -> ir.Value:
        if node.op == '=':
            return self._emit_assignment(node)

        fn = None
        if node.op not in BUILTIN_BINARY_OPS:
            fn = self._get_function('binary' + node.op)
            if fn is None:
                raise UnknownOperatorError(f"Unknown binary operator '{node.op}'", node.line)

        lhs = self.generate(node.left)
        rhs = self.generate(node.right)

        if node.op == '+':
            return self._builder.fadd(lhs, rhs, name='addtmp')
        if node.op == '-':
            return self._builder.fsub(lhs, rhs, name='subtmp')
        if node.op == '*':
            return self._builder.fmul(lhs, rhs, name='multmp')
        if node.op == '<':
            cmp = self._builder.fcmp_unordered('<', lhs, rhs, name='cmptmp')
            return self._builder.uitofp(cmp, DOUBLE, name='booltmp')
        return self._builder.call(fn, [lhs, rhs], name='binop')

    def _emit_assignment(self, node: BinaryNode) -> ir.Value:
        if not isinstance(node.left, VariableNode):
            raise InvalidAssignmentError("Destination of '=' must be a variable", node.line)
        value = self.generate(node.right)
        self._builder.store(value, self._lookup(node.left.name, node.left.line))
        return value

    def _visit_IfNode(self, node: IfNode) -> ir.Value:
        cond = self.generate(node.cond)
        cond_bool = self._builder.fcmp_ordered('!=', cond, ZERO, name='ifcond')

        fn = self._builder.function
        then_bb = fn.append_basic_block('then')
        else_bb = fn.append_basic_block('else')
        merge_bb = fn.append_basic_block('ifcont')
        self._builder.cbranch(cond_bool, then_bb, else_bb)

        self._builder.position_at_end(then_bb)
        then_val = self.generate(node.then)
        self._builder.branch(merge_bb)
        # Nested control flow may have moved us to another block.
        then_bb = self._builder.block

        self._builder.position_at_end(else_bb)
        else_val = self.generate(node.else_)
        self._builder.branch(merge_bb)
        else_bb = self._builder.block

        self._builder.position_at_end(merge_bb)
        phi = self._builder.phi(DOUBLE, name='iftmp')
        phi.add_incoming(then_val, then_bb)
        phi.add_incoming(else_val, else_bb)
        return phi

    def _visit_ForNode(self, node: ForNode) -> ir.Value:
        # start is evaluated before the loop variable is in scope
        slot = self._entry_alloca(node.var_name)
        self._builder.store(self.generate(node.start), slot)

        fn = self._builder.function
        cond_bb = fn.append_basic_block('loopcond')
        body_bb = fn.append_basic_block('loop')
        after_bb = fn.append_basic_block('afterloop')
        self._builder.branch(cond_bb)

        with self._scoped(node.var_name, slot):
            self._builder.position_at_end(cond_bb)
            end = self.generate(node.end)
            end_cond = self._builder.fcmp_ordered('!=', end, ZERO, name='loopcond')
            self._builder.cbranch(end_cond, body_bb, after_bb)

            self._builder.position_at_end(body_bb)
            self.generate(node.body)
            step = self.generate(node.step)
            current = self._builder.load(slot, name=node.var_name)
            self._builder.store(self._builder.fadd(current, step, name='nextvar'), slot)
            self._builder.branch(cond_bb)

        self._builder.position_at_end(after_bb)
        return ZERO

    def _visit_VarInNode(self, node: VarInNode) -> ir.Value:
        # Initializers only see the enclosing scope, never earlier bindings.
        values = [self.generate(init) for _, init in node.bindings]

        with ExitStack() as scope:
            for (name, _), value in zip(node.bindings, values):
                slot = self._entry_alloca(name)
                self._builder.store(value, slot)
                scope.enter_context(self._scoped(name, slot))
            return self.generate(node.body)
