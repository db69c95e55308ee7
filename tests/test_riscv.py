import re

import pytest

from sysycc import ast
from sysycc.ir import BinaryOp
from sysycc.lower import LoweringError
from sysycc.riscv import binary_asm, gen_riscv32


def _main(*items, extra=()):
    body = ast.Block(tuple(items))
    return ast.Program(tuple(extra) + (ast.FuncDef(ast.FuncType.INT, "main", (), body),))


def _var(name):
    return ast.Ident(ast.LVal(name))


def _labels(asm):
    defined = re.findall(r"^(\.L\w+):$", asm, re.M)
    used = re.findall(r"^(?:j|bnez t0,) (\.L\w+)$", asm, re.M)
    return defined, used


def _check_labels(asm, prefix):
    defined, used = _labels(asm)
    assert len(defined) == len(set(defined))
    assert set(used) <= set(defined)
    numbers = [int(label[len(prefix):]) for label in defined if label.startswith(prefix)]
    assert numbers == list(range(len(numbers)))
    return defined, used


@pytest.mark.parametrize(
    "op, expected",
    [
        (BinaryOp.ADD, "add t2, t0, t1\n"),
        (BinaryOp.MOD, "rem t2, t0, t1\n"),
        (BinaryOp.SHR, "srl t2, t0, t1\n"),
        (BinaryOp.NOT_EQ, "sub t2, t0, t1\nsnez t2, t2\n"),
        (BinaryOp.EQ, "sub t2, t0, t1\nseqz t2, t2\n"),
        (BinaryOp.GE, "sub t2, t0, t1\nsltz t2, t2\nseqz t2, t2\n"),
        (BinaryOp.LE, "sub t2, t0, t1\nsgtz t2, t2\nseqz t2, t2\n"),
    ],
)
def test_binary_asm(op, expected):
    assert binary_asm(op) == expected


def test_every_operator_writes_t2():
    for op in BinaryOp:
        lines = binary_asm(op).splitlines()
        assert lines
        assert all(line.split()[1] == "t2," for line in lines)


def test_return_zero():
    asm = gen_riscv32(_main(ast.Return(ast.Number(0))))
    assert asm.startswith(".text\n.globl main\nmain:\n")
    assert ".Lmain0:\n" in asm
    assert "li a0, 0\n" in asm
    assert asm.rstrip().endswith("ret")
    assert "getint" not in asm


def test_frame_sizes_are_consistent():
    asm = gen_riscv32(_main(ast.Return(ast.Number(0))))
    local = int(re.search(r"^li t3, -(\d+)$", asm, re.M).group(1))
    frame = int(re.search(r"^li t0, -(\d+)$", asm, re.M).group(1))
    assert local % 16 == 0
    assert frame % 16 == 0
    assert frame - local >= 128
    assert f"li t0, {frame}\nadd sp, sp, t0\nret\n" in asm


def test_global_scalar():
    program = _main(
        ast.Return(_var("x")),
        extra=(ast.VarDecl((ast.VarDef("x", (), ast.Number(5)),)),),
    )
    asm = gen_riscv32(program)
    assert asm.startswith(".data\n.globl gvar0\ngvar0:\n.word 5\n")
    assert "la t5, gvar0\nlw t0, 0(t5)\n" in asm


def test_global_array_zero_filled():
    decl = ast.VarDecl(
        (ast.VarDef("a", (ast.Number(3),), ast.InitList((ast.Number(7),))),)
    )
    asm = gen_riscv32(_main(ast.Return(ast.Number(0)), extra=(decl,)))
    words = re.findall(r"^\.word (-?\d+)$", asm, re.M)
    assert words == ["7", "0", "0"]


def test_global_array_row_major():
    decl = ast.ConstDecl(
        (
            ast.ConstDef(
                "a",
                (ast.Number(2), ast.Number(2)),
                ast.InitList(tuple(ast.Number(n) for n in (1, 2, 3, 4))),
            ),
        )
    )
    asm = gen_riscv32(_main(ast.Return(ast.Number(0)), extra=(decl,)))
    assert re.findall(r"^\.word (\d+)$", asm, re.M) == ["1", "2", "3", "4"]


def test_local_array_access():
    asm = gen_riscv32(
        _main(
            ast.VarDecl((ast.VarDef("a", (ast.Number(2),)),)),
            ast.Assign(ast.LVal("a", (ast.Number(1),)), ast.Number(3)),
            ast.Return(ast.Ident(ast.LVal("a", (ast.Number(1),)))),
        )
    )
    assert "li t0, 1\nli t1, 4\nmul t0, t0, t1\n" in asm
    assert "lw t4, 0(t4)\nsw t0, 0(t4)\n" in asm
    assert "lw t0, 0(t0)\n" in asm


def test_if_else_labels():
    asm = gen_riscv32(
        _main(
            ast.VarDecl((ast.VarDef("a", (), ast.Call("getint")),)),
            ast.If(
                _var("a"),
                ast.Block((ast.Return(ast.Number(1)),)),
                ast.Block((ast.Return(ast.Number(2)),)),
            ),
            ast.Return(ast.Number(0)),
        )
    )
    defined, used = _check_labels(asm, ".Lmain")
    assert "bnez t0, .Lmain1\n" in asm
    assert len(defined) >= 3
    assert "call getint\n" in asm


def test_while_with_break_labels():
    i = ast.LVal("i")
    loop = ast.While(
        ast.BinaryExp(_var("i"), BinaryOp.LT, ast.Number(3)),
        ast.Block(
            (
                ast.Assign(i, ast.BinaryExp(_var("i"), BinaryOp.ADD, ast.Number(1))),
                ast.If(ast.BinaryExp(_var("i"), BinaryOp.EQ, ast.Number(2)), ast.Break()),
            )
        ),
    )
    asm = gen_riscv32(
        _main(ast.VarDecl((ast.VarDef("i", (), ast.Number(0)),)), loop, ast.Return(_var("i")))
    )
    defined, used = _check_labels(asm, ".Lmain")
    assert binary_asm(BinaryOp.LT) in asm
    assert binary_asm(BinaryOp.ADD) in asm
    assert len(used) > len(set(used)) or len(defined) > 3


def test_call_with_stack_arguments():
    params = tuple(ast.FuncParam(f"p{n}") for n in range(9))
    callee = ast.FuncDef(
        ast.FuncType.INT, "f", params, ast.Block((ast.Return(_var("p8")),))
    )
    call = ast.Call("f", tuple(ast.Number(n) for n in range(9)))
    asm = gen_riscv32(_main(ast.Return(call), extra=(callee,)))
    assert "li a7, 7\n" in asm
    assert "li t0, 8\nsw t0, 0(sp)\n" in asm
    assert "call f\n" in asm
    assert "mv t0, a0\n" in asm
    assert "add t4, sp, t4\nlw t0, 0(t4)\n" in asm
    assert "sw a0, 0(t4)\n" in asm


def test_call_saves_and_restores_temporaries():
    asm = gen_riscv32(
        _main(ast.ExpStmt(ast.Call("putint", (ast.Number(5),))), ast.Return(ast.Number(0)))
    )
    before, after = asm.split("call putint\n")
    for n in range(7):
        assert re.search(rf"^sw t{n}, -\d+\(t3\)$", before, re.M)
        assert re.search(rf"^lw t{n}, -\d+\(t3\)$", after, re.M)
    assert "sw t3, 0(t4)\n" in before
    assert "lw t3, 0(t4)\n" in after


def test_labels_are_per_function():
    helper = ast.FuncDef(
        ast.FuncType.VOID,
        "helper",
        (),
        ast.Block((ast.If(ast.Number(1), ast.Blank()),)),
    )
    asm = gen_riscv32(
        _main(ast.ExpStmt(ast.Call("helper")), ast.Return(ast.Number(0)), extra=(helper,))
    )
    assert asm.index("helper:\n") < asm.index("main:\n")
    _check_labels(asm, ".Lhelper")
    _check_labels(asm, ".Lmain")
    assert "call helper\n" in asm


def test_break_outside_loop_raises():
    with pytest.raises(LoweringError):
        gen_riscv32(_main(ast.Break()))


def test_undefined_name_raises():
    with pytest.raises(LoweringError):
        gen_riscv32(_main(ast.Return(_var("missing"))))