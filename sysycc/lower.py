"""Lowering of the syntax tree into the in-memory IR."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from sysycc import ast, ir
from sysycc.ir import BinaryOp
from sysycc.koopa_text import generate_koopa

_RUNTIME = (
    ("getint", (), ir.i32_type()),
    ("getch", (), ir.i32_type()),
    ("getarray", (ir.pointer_type(ir.i32_type()),), ir.i32_type()),
    ("putint", (ir.i32_type(),), ir.unit_type()),
    ("putch", (ir.i32_type(),), ir.unit_type()),
    ("putarray", (ir.i32_type(), ir.pointer_type(ir.i32_type())), ir.unit_type()),
    ("starttime", (), ir.unit_type()),
    ("stoptime", (), ir.unit_type()),
)


class LoweringError(Exception):
    """Raised when the syntax tree cannot be lowered into IR."""


@dataclass(frozen=True)
class Symbol:
    """A named storage location: its address, array rank and whether it holds a pointer."""

    value: ir.Value
    dims: int
    is_pointer: bool


class SymbolTable:
    """A lexical scope of symbols and compile-time constants."""

    def __init__(self, parent: Optional["SymbolTable"] = None) -> None:
        self.parent = parent
        self._symbols: dict[str, Symbol] = {}
        self._consts: dict[str, int] = {}

    def define(self, name: str, symbol: Symbol) -> None:
        self._symbols[name] = symbol

    def define_const(self, name: str, value: int) -> None:
        self._consts[name] = value

    def lookup(self, name: str) -> Symbol:
        scope: Optional[SymbolTable] = self
        while scope is not None:
            if name in scope._symbols:
                return scope._symbols[name]
            scope = scope.parent
        raise LoweringError(f"undefined identifier: {name}")

    def lookup_const(self, name: str) -> int:
        scope: Optional[SymbolTable] = self
        while scope is not None:
            if name in scope._consts:
                return scope._consts[name]
            scope = scope.parent
        raise LoweringError(f"not a compile-time constant: {name}")

    def child(self) -> "SymbolTable":
        return SymbolTable(self)


def _wrap(value: int) -> int:
    return (value + 2**31) % 2**32 - 2**31


def _truncating_div(x: int, y: int) -> int:
    if y == 0:
        raise LoweringError("division by zero in constant expression")
    quotient = abs(x) // abs(y)
    return quotient if (x < 0) == (y < 0) else -quotient


def eval_const(exp: ast.Exp, table: SymbolTable) -> int:
    """Evaluate a constant expression as a 32-bit signed integer."""
    match exp:
        case ast.Number(value):
            return value
        case ast.Ident(lval):
            return table.lookup_const(lval.name)
        case ast.BinaryExp(lhs, op, rhs):
            x = eval_const(lhs, table)
            y = eval_const(rhs, table)
            if op is BinaryOp.ADD:
                return _wrap(x + y)
            if op is BinaryOp.SUB:
                return _wrap(x - y)
            if op is BinaryOp.MUL:
                return _wrap(x * y)
            if op is BinaryOp.DIV:
                return _wrap(_truncating_div(x, y))
            if op is BinaryOp.MOD:
                return x - y * _truncating_div(x, y)
            if op is BinaryOp.AND:
                return int(x & y != 0)
            if op is BinaryOp.OR:
                return int(x | y != 0)
            comparisons = {
                BinaryOp.EQ: x == y,
                BinaryOp.NOT_EQ: x != y,
                BinaryOp.GE: x >= y,
                BinaryOp.LE: x <= y,
                BinaryOp.GT: x > y,
                BinaryOp.LT: x < y,
            }
            if op in comparisons:
                return int(comparisons[op])
            raise LoweringError(f"operator not allowed in constant expression: {op.value}")
    raise LoweringError(f"not a constant expression: {exp!r}")


def _eval_dims(exps, table: SymbolTable) -> list[int]:
    dims = [eval_const(exp, table) for exp in exps]
    for length in dims:
        if length <= 0:
            raise LoweringError(f"array length must be positive: {length}")
    return dims


def _array_of(dims: list[int]) -> ir.Type:
    ty = ir.i32_type()
    for length in reversed(dims):
        ty = ir.array_type(ty, length)
    return ty


def _group(size: list[int], levels: list[list]) -> None:
    """Fold complete runs at each level into one entry of the level above."""
    n = len(size)
    for i in range(n):
        length = size[n - 1 - i]
        while len(levels[i]) >= length:
            chunk = levels[i][:length]
            del levels[i][:length]
            levels[i + 1].append(chunk)


def _shape(init, size: list[int], leaf: Callable, zero: Callable):
    """Arrange an initializer into nested lists matching ``size``."""
    if not isinstance(init, ast.InitList):
        return leaf(init)
    n = len(size)
    levels: list[list] = [[] for _ in range(n + 1)]
    for item in init.items:
        _group(size, levels)
        if isinstance(item, ast.InitList):
            if n == 0:
                raise LoweringError("nested initializer list for a scalar")
            depth = next((i for i, level in enumerate(levels) if level), n - 1)
            levels[depth].append(_shape(item, size[n - depth:], leaf, zero))
        else:
            levels[0].append(leaf(item))
    span = 1
    count = 0
    for i, level in enumerate(levels):
        if i:
            span *= size[n - i]
        count += span * len(level)
    levels[0].extend(zero() for _ in range(span - count))
    _group(size, levels)
    if not levels[n]:
        raise LoweringError("initializer does not fit the array shape")
    return levels[n][0]


def _global_value(tree) -> ir.Value:
    if isinstance(tree, list):
        return ir.Aggregate(tuple(_global_value(sub) for sub in tree))
    return ir.Integer(tree)


def _local_values(tree):
    if isinstance(tree, list):
        return [_local_values(sub) for sub in tree]
    return ir.Integer(tree)


def _store_tree(tree, ptr: ir.Value, bb: ir.BasicBlock) -> None:
    if isinstance(tree, list):
        for index, sub in enumerate(tree):
            elem = bb.append(ir.GetElemPtr(ptr, ir.Integer(index)))
            _store_tree(sub, elem, bb)
    else:
        bb.append(ir.Store(tree, ptr))


@dataclass(frozen=True)
class _Loop:
    cond_bb: ir.BasicBlock
    end_bb: ir.BasicBlock


class _FunctionLowerer:
    def __init__(self, function: ir.Function, functions: dict[str, ir.Function]) -> None:
        self.function = function
        self.functions = functions

    def run(self, func_def: ast.FuncDef, outer: SymbolTable) -> None:
        table = outer.child()
        entry = self.function.new_block("%entry")
        for param, arg, ty in zip(func_def.params, self.function.params, self.function.param_types):
            alloc = entry.append(ir.Alloc(ty))
            entry.append(ir.Store(arg, alloc))
            dims = len(param.dims)
            table.define(param.name, Symbol(alloc, dims, dims != 0))
        last = self.block(func_def.body, entry, table, None)
        if self.function.ret_type.is_unit():
            last.append(ir.Return())
        else:
            last.append(ir.Return(ir.Integer(0)))

    def exp(self, exp, bb: ir.BasicBlock, table: SymbolTable):
        match exp:
            case ast.Number(value):
                return ir.Integer(value), bb
            case ast.BinaryExp(lhs, op, rhs) if op in (BinaryOp.AND, BinaryOp.OR):
                return self._short_circuit(lhs, op, rhs, bb, table)
            case ast.BinaryExp(lhs, op, rhs):
                left, bb = self.exp(lhs, bb, table)
                right, bb = self.exp(rhs, bb, table)
                return bb.append(ir.Binary(op, left, right)), bb
            case ast.Ident(lval):
                return self._read(lval, bb, table)
            case ast.Call(name, args):
                if name not in self.functions:
                    raise LoweringError(f"undefined function: {name}")
                values = []
                for arg in args:
                    value, bb = self.exp(arg, bb, table)
                    values.append(value)
                return bb.append(ir.Call(self.functions[name], values)), bb
        raise LoweringError(f"not an expression: {exp!r}")

    def _short_circuit(self, lhs, op, rhs, bb, table):
        zero = ir.Integer(0)
        left, bb = self.exp(lhs, bb, table)
        slot = bb.append(ir.Alloc(ir.i32_type()))
        bb.append(ir.Store(left, slot))
        if op is BinaryOp.OR:
            cond = bb.append(ir.Binary(BinaryOp.EQ, left, zero))
        else:
            cond = left
        then_bb = self.function.new_block()
        right, then_last = self.exp(rhs, then_bb, table)
        then_last.append(ir.Store(right, slot))
        end_bb = self.function.new_block()
        bb.append(ir.Branch(cond, then_bb, end_bb))
        then_last.append(ir.Jump(end_bb))
        return end_bb.append(ir.Load(slot)), end_bb

    def _read(self, lval: ast.LVal, bb, table):
        symbol = table.lookup(lval.name)
        partial = len(lval.indices) < symbol.dims
        whole_pointer = symbol.is_pointer and not lval.indices
        ptr, bb = self.array_ptr(symbol.value, symbol.is_pointer, lval.indices, bb, table)
        if partial:
            zero = ir.Integer(0)
            if whole_pointer:
                value = ir.GetPtr(ptr, zero)
            else:
                value = ir.GetElemPtr(ptr, zero)
            return bb.append(value), bb
        return bb.append(ir.Load(ptr)), bb

    def array_ptr(self, value, is_pointer, indices, bb, table):
        if is_pointer:
            value = bb.append(ir.Load(value))
        for index_exp in indices:
            index, bb = self.exp(index_exp, bb, table)
            if is_pointer:
                value = ir.GetPtr(value, index)
                is_pointer = False
            else:
                value = ir.GetElemPtr(value, index)
            bb.append(value)
        return value, bb

    def stmt(self, stmt, bb, table, loop: Optional[_Loop]):
        match stmt:
            case ast.ExpStmt(exp):
                _, bb = self.exp(exp, bb, table)
            case ast.Assign(lval, exp):
                symbol = table.lookup(lval.name)
                value, bb = self.exp(exp, bb, table)
                ptr, bb = self.array_ptr(symbol.value, symbol.is_pointer, lval.indices, bb, table)
                bb.append(ir.Store(value, ptr))
            case ast.Block():
                bb = self.block(stmt, bb, table.child(), loop)
            case ast.Return(value):
                if value is None:
                    bb.append(ir.Return())
                else:
                    result, bb = self.exp(value, bb, table)
                    bb.append(ir.Return(result))
                bb = self.function.new_block()
            case ast.If(cond, then_stmt, else_stmt):
                bb = self._if(cond, then_stmt, else_stmt, bb, table, loop)
            case ast.While(cond, body):
                bb = self._while(cond, body, bb, table)
            case ast.Continue() | ast.Break():
                if loop is None:
                    keyword = "continue" if isinstance(stmt, ast.Continue) else "break"
                    raise LoweringError(f"{keyword} outside of a loop")
                target = loop.cond_bb if isinstance(stmt, ast.Continue) else loop.end_bb
                bb.append(ir.Jump(target))
                bb = self.function.new_block()
            case ast.Blank():
                pass
            case _:
                raise LoweringError(f"not a statement: {stmt!r}")
        return bb

    def _if(self, cond, then_stmt, else_stmt, bb, table, loop):
        value, bb = self.exp(cond, bb, table)
        then_bb = self.function.new_block()
        then_last = self.stmt(then_stmt, then_bb, table, loop)
        end_bb = self.function.new_block()
        if else_stmt is not None:
            else_bb = self.function.new_block()
            else_last = self.stmt(else_stmt, else_bb, table, loop)
            bb.append(ir.Branch(value, then_bb, else_bb))
            else_last.append(ir.Jump(end_bb))
        else:
            bb.append(ir.Branch(value, then_bb, end_bb))
        then_last.append(ir.Jump(end_bb))
        return end_bb

    def _while(self, cond, body, bb, table):
        cond_bb = self.function.new_block()
        body_bb = self.function.new_block()
        end_bb = self.function.new_block()
        bb.append(ir.Jump(cond_bb))
        value, cond_last = self.exp(cond, cond_bb, table)
        cond_last.append(ir.Branch(value, body_bb, end_bb))
        body_last = self.stmt(body, body_bb, table, _Loop(cond_bb, end_bb))
        body_last.append(ir.Jump(cond_bb))
        return end_bb

    def block(self, block: ast.Block, bb, table, loop):
        for item in block.items:
            if isinstance(item, ast.ConstDecl):
                for const_def in item.defs:
                    self._local_const(const_def, bb, table)
            elif isinstance(item, ast.VarDecl):
                for var_def in item.defs:
                    bb = self._local_var(var_def, bb, table)
            else:
                bb = self.stmt(item, bb, table, loop)
        return bb

    def _local_const(self, const_def: ast.ConstDef, bb, table):
        dims = _eval_dims(const_def.dims, table)
        tree = _shape(const_def.init, dims, lambda exp: eval_const(exp, table), lambda: 0)
        alloc = bb.append(ir.Alloc(_array_of(dims)))
        _store_tree(_local_values(tree), alloc, bb)
        table.define(const_def.name, Symbol(alloc, len(dims), False))
        if not isinstance(tree, list):
            table.define_const(const_def.name, tree)

    def _local_var(self, var_def: ast.VarDef, bb, table):
        dims = _eval_dims(var_def.dims, table)
        alloc = bb.append(ir.Alloc(_array_of(dims)))
        if var_def.init is not None:
            current = bb

            def leaf(exp):
                nonlocal current
                value, current = self.exp(exp, current, table)
                return value

            tree = _shape(var_def.init, dims, leaf, lambda: ir.Integer(0))
            bb = current
            _store_tree(tree, alloc, bb)
        table.define(var_def.name, Symbol(alloc, len(dims), False))
        return bb


def _param_type(param: ast.FuncParam, table: SymbolTable) -> ir.Type:
    if not param.dims:
        return ir.i32_type()
    return ir.pointer_type(_array_of(_eval_dims(param.dims[1:], table)))


def _global_decl(decl, program: ir.Program, table: SymbolTable) -> None:
    for definition in decl.defs:
        dims = _eval_dims(definition.dims, table)
        const_leaf = lambda exp: eval_const(exp, table)  # noqa: E731
        if definition.init is not None:
            tree = _shape(definition.init, dims, const_leaf, lambda: 0)
        elif dims:
            tree = _shape(ast.InitList(), dims, const_leaf, lambda: 0)
        else:
            tree = 0
        if not isinstance(tree, list):
            table.define_const(definition.name, tree)
        alloc = program.add_global(ir.GlobalAlloc(_global_value(tree)))
        table.define(definition.name, Symbol(alloc, len(dims), False))


def lower_program(program: ast.Program) -> ir.Program:
    """Lower a whole syntax tree into an IR program."""
    result = ir.Program()
    functions: dict[str, ir.Function] = {}
    table = SymbolTable()
    for name, params, ret in _RUNTIME:
        functions[name] = result.add_function(ir.Function("@" + name, params, ret))

    pending: list[tuple[ast.FuncDef, ir.Function]] = []
    for item in program.items:
        if isinstance(item, ast.FuncDef):
            param_types = [_param_type(param, table) for param in item.params]
            ret = ir.i32_type() if item.func_type is ast.FuncType.INT else ir.unit_type()
            function = result.add_function(ir.Function("@" + item.name, param_types, ret))
            functions[item.name] = function
            pending.append((item, function))
        elif isinstance(item, (ast.ConstDecl, ast.VarDecl)):
            _global_decl(item, result, table)
        else:
            raise LoweringError(f"not a top-level item: {item!r}")

    for func_def, function in pending:
        _FunctionLowerer(function, functions).run(func_def, table)
    return result


def gen_text_koopa(program: ast.Program) -> str:
    """Lower ``program`` and render it as Koopa IR text."""
    return generate_koopa(lower_program(program))