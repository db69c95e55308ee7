"""Rendering of an IR program as Koopa text."""

from __future__ import annotations

from typing import Iterator

from sysycc.ir import (
    Aggregate,
    Alloc,
    BasicBlock,
    Binary,
    Branch,
    Call,
    Function,
    GetElemPtr,
    GetPtr,
    Integer,
    Jump,
    Load,
    Program,
    Return,
    Store,
    Value,
)

_INDENT = "  "


class _Names:
    """Hands out unique textual names to values and blocks."""

    def __init__(self) -> None:
        self._next = 0
        self._taken: set[str] = set()
        self._values: dict[Value, str] = {}
        self._blocks: dict[BasicBlock, str] = {}

    def _fresh(self) -> str:
        while True:
            name = f"%{self._next}"
            self._next += 1
            if name not in self._taken:
                self._taken.add(name)
                return name

    def _claim(self, wanted: str) -> str:
        if not wanted.startswith(("%", "@")):
            wanted = "%" + wanted
        name = wanted
        suffix = 0
        while name in self._taken:
            name = f"{wanted}_{suffix}"
            suffix += 1
        self._taken.add(name)
        return name

    def name_value(self, value: Value) -> str:
        name = self._fresh()
        self._values[value] = name
        return name

    def name_block(self, block: BasicBlock) -> str:
        name = self._claim(block.name) if block.name else self._fresh()
        self._blocks[block] = name
        return name

    def value(self, value: Value) -> str:
        if isinstance(value, Integer):
            return str(value.value)
        if isinstance(value, Aggregate):
            return "{" + ", ".join(self.value(elem) for elem in value.elems) + "}"
        try:
            return self._values[value]
        except KeyError:
            raise ValueError(f"operand used before it is defined: {value!r}") from None

    def block(self, block: BasicBlock) -> str:
        try:
            return self._blocks[block]
        except KeyError:
            raise ValueError("jump to a block that is not in the function") from None


def _instruction_body(inst: Value, names: _Names) -> str:
    op = names.value
    if isinstance(inst, Alloc):
        return f"alloc {inst.allocated}"
    if isinstance(inst, Load):
        return f"load {op(inst.src)}"
    if isinstance(inst, Store):
        return f"store {op(inst.value)}, {op(inst.dest)}"
    if isinstance(inst, GetElemPtr):
        return f"getelemptr {op(inst.src)}, {op(inst.index)}"
    if isinstance(inst, GetPtr):
        return f"getptr {op(inst.src)}, {op(inst.index)}"
    if isinstance(inst, Binary):
        return f"{inst.op.value} {op(inst.lhs)}, {op(inst.rhs)}"
    if isinstance(inst, Branch):
        return (
            f"br {op(inst.cond)}, "
            f"{names.block(inst.true_bb)}, {names.block(inst.false_bb)}"
        )
    if isinstance(inst, Jump):
        return f"jump {names.block(inst.target)}"
    if isinstance(inst, Call):
        args = ", ".join(op(arg) for arg in inst.args)
        return f"call {inst.callee.name}({args})"
    if isinstance(inst, Return):
        return "ret" if inst.value is None else f"ret {op(inst.value)}"
    raise TypeError(f"not an instruction: {type(inst).__name__}")


def _signature(function: Function, params: list[str]) -> str:
    ret = "" if function.ret_type.is_unit() else f": {function.ret_type}"
    return f"{function.name}({', '.join(params)}){ret}"


def _declaration(function: Function) -> str:
    return "decl " + _signature(function, [str(ty) for ty in function.param_types])


def _definition(function: Function, names: _Names) -> Iterator[str]:
    params = [
        f"{names.name_value(param)}: {param.ty}" for param in function.params
    ]
    labels = [names.name_block(block) for block in function.blocks]
    yield "fun " + _signature(function, params) + " {"
    for index, (label, block) in enumerate(zip(labels, function.blocks)):
        if index:
            yield ""
        yield f"{label}:"
        for inst in block.insts:
            body = _instruction_body(inst, names)
            if inst.ty.is_unit():
                yield _INDENT + body
            else:
                yield f"{_INDENT}{names.name_value(inst)} = {body}"
    yield "}"


def generate_koopa(program: Program) -> str:
    """Render ``program`` as Koopa IR text."""
    names = _Names()
    lines: list[str] = []
    for alloc in program.globals:
        init = alloc.init
        name = names.name_value(alloc)
        lines.append(f"global {name} = alloc {init.ty}, {names.value(init)}")
    if lines:
        lines.append("")
    for function in program.functions:
        if function.is_declaration():
            lines.append(_declaration(function))
            continue
        if lines and lines[-1] != "":
            lines.append("")
        lines.extend(_definition(function, names))
        lines.append("")
    return "\n".join(lines) + ("\n" if lines and lines[-1] != "" else "")