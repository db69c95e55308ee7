"""In-memory intermediate representation: types, values, blocks, functions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

POINTER_SIZE = 4


class BinaryOp(Enum):
    """Binary operators of the IR, valued by their textual mnemonic."""

    NOT_EQ = "ne"
    EQ = "eq"
    GT = "gt"
    LT = "lt"
    GE = "ge"
    LE = "le"
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    DIV = "div"
    MOD = "mod"
    AND = "and"
    OR = "or"
    XOR = "xor"
    SHL = "shl"
    SHR = "shr"
    SAR = "sar"


@dataclass(frozen=True)
class Type:
    """An IR type: ``i32``, ``unit``, a fixed-length array or a pointer."""

    kind: str
    base: Optional["Type"] = None
    length: int = 0

    def size(self) -> int:
        """Size of a value of this type in bytes."""
        if self.kind == "i32":
            return 4
        if self.kind == "unit":
            return 0
        if self.kind == "array":
            return self.base.size() * self.length
        return POINTER_SIZE

    def is_unit(self) -> bool:
        return self.kind == "unit"

    @property
    def is_pointer(self) -> bool:
        return self.kind == "pointer"

    @property
    def is_array(self) -> bool:
        return self.kind == "array"

    def __str__(self) -> str:
        if self.kind == "array":
            return f"[{self.base}, {self.length}]"
        if self.kind == "pointer":
            return f"*{self.base}"
        return self.kind


def i32_type() -> Type:
    return Type("i32")


def unit_type() -> Type:
    return Type("unit")


def array_type(base: Type, length: int) -> Type:
    if length < 0:
        raise ValueError(f"array length must not be negative: {length}")
    return Type("array", base, length)


def pointer_type(base: Type) -> Type:
    return Type("pointer", base)


def _pointee(value: "Value", what: str) -> Type:
    ty = value.ty
    if not ty.is_pointer:
        raise TypeError(f"{what} needs a pointer operand, got {ty}")
    return ty.base


class Value:
    """Base of every IR value; each subclass exposes a ``ty`` attribute."""

    ty: Type


@dataclass(eq=False)
class Integer(Value):
    value: int

    @property
    def ty(self) -> Type:
        return i32_type()


@dataclass(eq=False)
class Aggregate(Value):
    elems: tuple

    def __post_init__(self) -> None:
        self.elems = tuple(self.elems)
        if not self.elems:
            raise ValueError("an aggregate needs at least one element")

    @property
    def ty(self) -> Type:
        return array_type(self.elems[0].ty, len(self.elems))


@dataclass(eq=False)
class GlobalAlloc(Value):
    init: Value

    @property
    def ty(self) -> Type:
        return pointer_type(self.init.ty)


@dataclass(eq=False)
class FuncArgRef(Value):
    index: int
    ty: Type


@dataclass(eq=False)
class Alloc(Value):
    allocated: Type

    @property
    def ty(self) -> Type:
        return pointer_type(self.allocated)


@dataclass(eq=False)
class Load(Value):
    src: Value

    def __post_init__(self) -> None:
        _pointee(self.src, "load")

    @property
    def ty(self) -> Type:
        return self.src.ty.base


@dataclass(eq=False)
class Store(Value):
    value: Value
    dest: Value

    def __post_init__(self) -> None:
        _pointee(self.dest, "store")

    @property
    def ty(self) -> Type:
        return unit_type()


@dataclass(eq=False)
class GetPtr(Value):
    src: Value
    index: Value

    def __post_init__(self) -> None:
        _pointee(self.src, "getptr")

    @property
    def ty(self) -> Type:
        return self.src.ty


@dataclass(eq=False)
class GetElemPtr(Value):
    src: Value
    index: Value

    def __post_init__(self) -> None:
        if not _pointee(self.src, "getelemptr").is_array:
            raise TypeError(f"getelemptr needs a pointer to an array, got {self.src.ty}")

    @property
    def ty(self) -> Type:
        return pointer_type(self.src.ty.base.base)


@dataclass(eq=False)
class Binary(Value):
    op: BinaryOp
    lhs: Value
    rhs: Value

    @property
    def ty(self) -> Type:
        return i32_type()


@dataclass(eq=False)
class Branch(Value):
    cond: Value
    true_bb: "BasicBlock"
    false_bb: "BasicBlock"

    @property
    def ty(self) -> Type:
        return unit_type()


@dataclass(eq=False)
class Jump(Value):
    target: "BasicBlock"

    @property
    def ty(self) -> Type:
        return unit_type()


@dataclass(eq=False)
class Call(Value):
    callee: "Function"
    args: tuple

    def __post_init__(self) -> None:
        self.args = tuple(self.args)

    @property
    def ty(self) -> Type:
        return self.callee.ret_type


@dataclass(eq=False)
class Return(Value):
    value: Optional[Value] = None

    @property
    def ty(self) -> Type:
        return unit_type()


Instruction = Union[
    Alloc, Load, Store, GetPtr, GetElemPtr, Binary, Branch, Jump, Call, Return
]


@dataclass(eq=False)
class BasicBlock:
    """A named or anonymous sequence of instructions."""

    name: Optional[str] = None
    insts: list = field(default_factory=list)

    def append(self, inst: Value) -> Value:
        """Add an instruction at the end of the block and return it."""
        self.insts.append(inst)
        return inst


@dataclass(eq=False)
class Function:
    """A function; one without blocks is a declaration."""

    name: str
    param_types: tuple
    ret_type: Type
    params: tuple = field(init=False)
    blocks: list = field(init=False, default_factory=list)

    def __post_init__(self) -> None:
        self.param_types = tuple(self.param_types)
        self.params = tuple(
            FuncArgRef(index, ty) for index, ty in enumerate(self.param_types)
        )

    def new_block(self, name: Optional[str] = None) -> BasicBlock:
        """Create a block, place it at the end of the layout and return it."""
        block = BasicBlock(name)
        self.blocks.append(block)
        return block

    def is_declaration(self) -> bool:
        return not self.blocks

    @property
    def entry(self) -> Optional[BasicBlock]:
        return self.blocks[0] if self.blocks else None


@dataclass(eq=False)
class Program:
    """A whole program: global allocations and functions in layout order."""

    globals: list = field(default_factory=list)
    functions: list = field(default_factory=list)

    def add_function(self, function: Function) -> Function:
        self.functions.append(function)
        return function

    def add_global(self, alloc: GlobalAlloc) -> GlobalAlloc:
        self.globals.append(alloc)
        return alloc