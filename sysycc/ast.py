"""Syntax tree of the source language."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from sysycc.ir import BinaryOp


class FuncType(Enum):
    INT = "int"
    VOID = "void"


def _freeze(obj, *names: str) -> None:
    for name in names:
        object.__setattr__(obj, name, tuple(getattr(obj, name)))


@dataclass(frozen=True)
class Number:
    value: int


@dataclass(frozen=True)
class LVal:
    """A name with optional array subscripts."""

    name: str
    indices: tuple = ()

    def __post_init__(self) -> None:
        _freeze(self, "indices")


@dataclass(frozen=True)
class Ident:
    """An expression that reads an lvalue."""

    lval: LVal


@dataclass(frozen=True)
class BinaryExp:
    lhs: "Exp"
    op: BinaryOp
    rhs: "Exp"


@dataclass(frozen=True)
class Call:
    name: str
    args: tuple = ()

    def __post_init__(self) -> None:
        _freeze(self, "args")


Exp = Union[Number, Ident, BinaryExp, Call]


@dataclass(frozen=True)
class InitList:
    """A braced initializer; items are expressions or nested lists."""

    items: tuple = ()

    def __post_init__(self) -> None:
        _freeze(self, "items")


InitVal = Union[Number, Ident, BinaryExp, Call, InitList]


@dataclass(frozen=True)
class ConstDef:
    name: str
    dims: tuple
    init: InitVal

    def __post_init__(self) -> None:
        _freeze(self, "dims")


@dataclass(frozen=True)
class ConstDecl:
    defs: tuple

    def __post_init__(self) -> None:
        _freeze(self, "defs")


@dataclass(frozen=True)
class VarDef:
    name: str
    dims: tuple = ()
    init: Optional[InitVal] = None

    def __post_init__(self) -> None:
        _freeze(self, "dims")


@dataclass(frozen=True)
class VarDecl:
    defs: tuple

    def __post_init__(self) -> None:
        _freeze(self, "defs")


Decl = Union[ConstDecl, VarDecl]


@dataclass(frozen=True)
class Assign:
    lval: LVal
    exp: Exp


@dataclass(frozen=True)
class ExpStmt:
    exp: Exp


@dataclass(frozen=True)
class Return:
    value: Optional[Exp] = None


@dataclass(frozen=True)
class If:
    cond: Exp
    then_stmt: "Stmt"
    else_stmt: Optional["Stmt"] = None


@dataclass(frozen=True)
class While:
    cond: Exp
    body: "Stmt"


@dataclass(frozen=True)
class Continue:
    pass


@dataclass(frozen=True)
class Break:
    pass


@dataclass(frozen=True)
class Blank:
    pass


@dataclass(frozen=True)
class Block:
    """A braced sequence of declarations and statements."""

    items: tuple = ()

    def __post_init__(self) -> None:
        _freeze(self, "items")


Stmt = Union[Assign, ExpStmt, Block, Return, If, While, Continue, Break, Blank]


@dataclass(frozen=True)
class FuncParam:
    """A parameter; a non-empty ``dims`` marks an array whose first bound is unused."""

    name: str
    dims: tuple = ()

    def __post_init__(self) -> None:
        _freeze(self, "dims")


@dataclass(frozen=True)
class FuncDef:
    func_type: FuncType
    name: str
    params: tuple
    body: Block

    def __post_init__(self) -> None:
        _freeze(self, "params")


@dataclass(frozen=True)
class Program:
    """Top-level items in source order: function definitions and declarations."""

    items: tuple = ()

    def __post_init__(self) -> None:
        _freeze(self, "items")