# sysycc

`sysycc` turns a SysY program, given as a syntax tree, into Koopa IR text or
RISC-V 32 assembly.

SysY is a small C-like language: `int` and `void` functions, integer
constants and variables, multi-dimensional arrays with nested initialiser
lists, array parameters, `if`/`else`, `while`, `break`, `continue` and
short-circuit `&&` / `||`.

## Modules

- `sysycc.ast` — the syntax tree, built from frozen dataclasses:
  `Program`, `FuncDef`, `FuncParam`, `FuncType`, `Block`, declarations
  (`ConstDecl`, `ConstDef`, `VarDecl`, `VarDef`, `InitList`), statements
  (`Assign`, `ExpStmt`, `Return`, `If`, `While`, `Continue`, `Break`,
  `Blank`) and expressions (`Number`, `Ident`, `LVal`, `BinaryExp`, `Call`).
  Binary operators are members of `sysycc.ir.BinaryOp`.
- `sysycc.ir` — an in-memory Koopa-style IR: the `Type` class and its
  constructors `i32_type()`, `unit_type()`, `array_type(base, length)` and
  `pointer_type(base)`; values and instructions (`Integer`, `Aggregate`,
  `GlobalAlloc`, `FuncArgRef`, `Alloc`, `Load`, `Store`, `GetPtr`,
  `GetElemPtr`, `Binary`, `Branch`, `Jump`, `Call`, `Return`);
  `BasicBlock`, `Function` and `Program`. Building a `Load`, `Store`,
  `GetPtr` or `GetElemPtr` on an operand of the wrong type raises
  `TypeError`.
- `sysycc.lower` — turns a syntax tree into IR. `lower_program(program)`
  returns an IR `Program`; `gen_text_koopa(program)` returns its Koopa text.
  `SymbolTable` holds nested scopes; `eval_const(exp, table)` folds a
  constant expression with 32-bit signed wrap-around and truncating
  division. `LoweringError` is raised for undefined names or functions,
  `break`/`continue` outside a loop, non-constant array bounds, non-positive
  array lengths, division by zero in a constant, and initialiser lists that
  do not fit the array shape.
- `sysycc.koopa_text` — `generate_koopa(program)` prints an IR `Program` as
  Koopa text.
- `sysycc.riscv` — `gen_riscv32(program)` compiles a syntax tree to RISC-V 32
  assembly text; `binary_asm(op)` gives the instructions for one binary
  operator applied to `t0` and `t1` with the result in `t2`.

The runtime library functions `getint`, `getch`, `getarray`, `putint`,
`putch`, `putarray`, `starttime` and `stoptime` are declared in every
program and can be called without being defined.

## Use

Build a `sysycc.ast.Program`, then:

```python
from sysycc import ast
from sysycc.lower import gen_text_koopa
from sysycc.riscv import gen_riscv32

program = ast.Program((
    ast.FuncDef(ast.FuncType.INT, "main", (), ast.Block((
        ast.Return(ast.Number(0)),
    ))),
))

koopa_source = gen_text_koopa(program)
assembly = gen_riscv32(program)
```

In the assembly, global variables are emitted as `gvar0`, `gvar1`, … in the
`.data` section, one `.word` per integer. Each defined function gets its own
`.text` section; its basic blocks are emitted depth-first from the entry
block with labels `.L<function>0`, `.L<function>1`, …. Every non-unit
instruction gets its own stack slot; no register allocation or optimisation
is done.

## What it does not do

- There is no parser: the package does not read SysY source text. The
  syntax tree has to be built by the caller.
- There is no command-line program; the package is used as a library and
  returns text rather than writing files.