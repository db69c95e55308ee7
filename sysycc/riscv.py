"""Generation of RISC-V 32 assembly from a lowered program."""

from __future__ import annotations

from typing import Generator, Iterator

from sysycc import ast, ir
from sysycc.ir import BinaryOp
from sysycc.lower import lower_program

_ARG_REGISTERS = 8
_SAVED_TEMPS = range(7)

_SIMPLE_OPS = {
    BinaryOp.ADD: "add",
    BinaryOp.SUB: "sub",
    BinaryOp.MUL: "mul",
    BinaryOp.DIV: "div",
    BinaryOp.MOD: "rem",
    BinaryOp.AND: "and",
    BinaryOp.OR: "or",
    BinaryOp.XOR: "xor",
    BinaryOp.SHL: "sll",
    BinaryOp.SHR: "srl",
    BinaryOp.SAR: "sra",
}

_COMPARE_OPS = {
    BinaryOp.NOT_EQ: ("snez",),
    BinaryOp.EQ: ("seqz",),
    BinaryOp.GT: ("sgtz",),
    BinaryOp.LT: ("sltz",),
    BinaryOp.GE: ("sltz", "seqz"),
    BinaryOp.LE: ("sgtz", "seqz"),
}


def binary_asm(op: BinaryOp) -> str:
    """Instructions computing ``t0 op t1`` into ``t2``."""
    if op in _SIMPLE_OPS:
        return f"{_SIMPLE_OPS[op]} t2, t0, t1\n"
    if op in _COMPARE_OPS:
        lines = ["sub t2, t0, t1\n"]
        lines.extend(f"{test} t2, t2\n" for test in _COMPARE_OPS[op])
        return "".join(lines)
    raise ValueError(f"unsupported binary operator: {op!r}")


def _round16(size: int) -> int:
    return (size + 15) // 16 * 16


def _slot(offset: int) -> str:
    """Put the address ``t3 + offset`` into ``t4``."""
    return f"li t4, {offset}\nadd t4, t3, t4\n"


def _global_words(value: ir.Value) -> Iterator[str]:
    if isinstance(value, ir.GlobalAlloc):
        yield from _global_words(value.init)
    elif isinstance(value, ir.Integer):
        yield f".word {value.value}\n"
    elif isinstance(value, ir.Aggregate):
        for elem in value.elems:
            yield from _global_words(elem)
    else:
        raise ValueError(f"not a global initializer: {value!r}")


def _frame_layout(function: ir.Function) -> tuple[dict, int, int]:
    """Stack offsets of non-unit instructions, local frame size and outgoing-argument area."""
    positions: dict[ir.Value, int] = {}
    local = 0
    outgoing = 0
    for block in function.blocks:
        for inst in block.insts:
            if not inst.ty.is_unit():
                positions[inst] = local
                if isinstance(inst, ir.Alloc):
                    local += inst.allocated.size()
                else:
                    local += 4
            elif isinstance(inst, ir.Call):
                outgoing = max(outgoing, len(inst.args) * 4)
    return positions, _round16(local + 4), _round16(outgoing)


_BlockGen = Generator[ir.BasicBlock, tuple, str]


class _FunctionEmitter:
    def __init__(self, function: ir.Function, global_ids: dict) -> None:
        self.prefix = ".L" + function.name[1:]
        self.global_ids = global_ids
        self.positions, self.local_size, outgoing = _frame_layout(function)
        self.frame = self.local_size + outgoing + 128
        self._count = 0
        self._seen: dict[ir.BasicBlock, int] = {}

    def prologue(self) -> str:
        return (
            f"li t3, -{self.local_size}\n"
            "add t3, sp, t3\n"
            f"li t0, -{self.frame}\n"
            "add sp, sp, t0\n"
            "sw ra, -4(t3)\n"
        )

    def emit(self, entry: ir.BasicBlock) -> str:
        """Emit every block reachable from ``entry`` in depth-first order."""
        stack: list[_BlockGen] = [self._block(entry, 0)]
        ids: list[int] = []
        reply = None
        while True:
            try:
                target = stack[-1].send(reply)
            except StopIteration as done:
                stack.pop()
                if not stack:
                    return done.value
                reply = (ids.pop(), done.value)
                continue
            if target in self._seen:
                reply = (self._seen[target], "")
            else:
                self._count += 1
                self._seen[target] = self._count
                ids.append(self._count)
                stack.append(self._block(target, self._count))
                reply = None

    def _block(self, block: ir.BasicBlock, label: int) -> _BlockGen:
        out = [f"{self.prefix}{label}:\n"]
        for inst in block.insts:
            if isinstance(inst, ir.Jump):
                target_id, target_text = yield inst.target
                out.append(f"j {self.prefix}{target_id}\n")
                out.append(target_text)
            elif isinstance(inst, ir.Branch):
                out.append(self._load("t0", inst.cond))
                true_id, true_text = yield inst.true_bb
                false_id, false_text = yield inst.false_bb
                out.append(f"bnez t0, {self.prefix}{true_id}\n")
                out.append(f"j {self.prefix}{false_id}\n")
                out.append(true_text)
                out.append(false_text)
            else:
                out.append(self._instruction(inst))
        return "".join(out)

    def _position(self, value: ir.Value) -> int:
        try:
            return self.positions[value]
        except KeyError:
            raise ValueError(f"value has no stack slot: {value!r}") from None

    def _global(self, value: ir.Value) -> int:
        try:
            return self.global_ids[value]
        except KeyError:
            raise ValueError(f"value is neither local nor global: {value!r}") from None

    def _load(self, reg: str, value: ir.Value) -> str:
        if isinstance(value, ir.Integer):
            return f"li {reg}, {value.value}\n"
        if isinstance(value, ir.FuncArgRef):
            if value.index < _ARG_REGISTERS:
                return f"mv {reg}, a{value.index}\n"
            offset = self.frame + (value.index - _ARG_REGISTERS) * 4
            return f"li t4, {offset}\nadd t4, sp, t4\nlw {reg}, 0(t4)\n"
        if isinstance(value, (ir.GlobalAlloc, ir.Aggregate)):
            raise ValueError(f"cannot load a global value into a register: {value!r}")
        return _slot(self._position(value)) + f"lw {reg}, 0(t4)\n"

    def _store_result(self, reg: str, inst: ir.Value) -> str:
        return _slot(self._position(inst)) + f"sw {reg}, 0(t4)\n"

    def _instruction(self, inst: ir.Value) -> str:
        if isinstance(inst, ir.Alloc):
            return ""
        if isinstance(inst, ir.Return):
            text = "" if inst.value is None else self._load("a0", inst.value)
            return text + f"lw ra, -4(t3)\nli t0, {self.frame}\nadd sp, sp, t0\nret\n"
        if isinstance(inst, ir.Store):
            return self._store(inst)
        if isinstance(inst, ir.Load):
            return self._load_inst(inst)
        if isinstance(inst, ir.Binary):
            return (
                self._load("t0", inst.lhs)
                + self._load("t1", inst.rhs)
                + binary_asm(inst.op)
                + self._store_result("t2", inst)
            )
        if isinstance(inst, ir.Call):
            return self._call(inst)
        if isinstance(inst, ir.GetElemPtr):
            src_ty = inst.src.ty
            return self._address(inst, src_ty.base.base.size())
        if isinstance(inst, ir.GetPtr):
            return self._address(inst, inst.src.ty.base.size())
        raise ValueError(f"unknown instruction: {type(inst).__name__}")

    def _store(self, inst: ir.Store) -> str:
        text = self._load("t0", inst.value)
        dest = inst.dest
        if dest in self.positions:
            text += _slot(self.positions[dest])
            if isinstance(dest, (ir.GetElemPtr, ir.GetPtr)):
                text += "lw t4, 0(t4)\n"
            return text + "sw t0, 0(t4)\n"
        return text + f"la t5, gvar{self._global(dest)}\nsw t0, 0(t5)\n"

    def _load_inst(self, inst: ir.Load) -> str:
        src = inst.src
        if src in self.positions:
            text = _slot(self.positions[src]) + "lw t0, 0(t4)\n"
            if isinstance(src, (ir.GetElemPtr, ir.GetPtr)):
                text += "lw t0, 0(t0)\n"
        else:
            text = f"la t5, gvar{self._global(src)}\nlw t0, 0(t5)\n"
        return text + self._store_result("t0", inst)

    def _call(self, inst: ir.Call) -> str:
        parts = [
            self._load(f"a{index}", arg)
            for index, arg in enumerate(inst.args[:_ARG_REGISTERS])
        ]
        for index, arg in enumerate(inst.args[_ARG_REGISTERS:]):
            parts.append(self._load("t0", arg))
            parts.append(f"sw t0, {index * 4}(sp)\n")
        saved = f"li t4, {self.frame - 4}\nadd t4, sp, t4\n"
        parts.append(saved + "sw t3, 0(t4)\n")
        parts.extend(f"sw t{i}, {-(i + 2) * 4}(t3)\n" for i in _SAVED_TEMPS)
        parts.append(f"call {inst.callee.name[1:]}\n")
        parts.append(saved + "lw t3, 0(t4)\n")
        parts.extend(f"lw t{i}, {-(i + 2) * 4}(t3)\n" for i in _SAVED_TEMPS)
        if inst in self.positions:
            parts.append(self._store_result("a0", inst))
        return "".join(parts)

    def _address(self, inst, elem_size: int) -> str:
        src = inst.src
        text = self._load("t0", inst.index)
        text += f"li t1, {elem_size}\nmul t0, t0, t1\n"
        if isinstance(src, ir.GlobalAlloc):
            text += f"la t1, gvar{self._global(src)}\n"
        else:
            text += f"li t1, {self._position(src)}\nadd t1, t3, t1\n"
            if not isinstance(src, ir.Alloc):
                text += "lw t1, 0(t1)\n"
        text += "add t1, t1, t0\n"
        return text + self._store_result("t1", inst)


def _emit_program(program: ir.Program) -> str:
    parts: list[str] = []
    global_ids: dict[ir.Value, int] = {}
    for number, alloc in enumerate(program.globals):
        global_ids[alloc] = number
        parts.append(f".data\n.globl gvar{number}\ngvar{number}:\n")
        parts.extend(_global_words(alloc))
    for function in program.functions:
        if function.is_declaration():
            continue
        name = function.name[1:]
        parts.append(f".text\n.globl {name}\n{name}:\n")
        emitter = _FunctionEmitter(function, global_ids)
        parts.append(emitter.prologue())
        parts.append(emitter.emit(function.entry))
    return "".join(parts)


def gen_riscv32(program: ast.Program) -> str:
    """Lower ``program`` and emit RISC-V 32 assembly for it."""
    return _emit_program(lower_program(program))