import pytest

from sysycc.ir import (
    Aggregate,
    Alloc,
    BinaryOp,
    Binary,
    Branch,
    Call,
    Function,
    GlobalAlloc,
    Integer,
    Jump,
    Load,
    Program,
    Return,
    Store,
    i32_type,
    pointer_type,
    unit_type,
)
from sysycc.koopa_text import generate_koopa


def _return_zero_program():
    program = Program()
    main = program.add_function(Function("@main", [], i32_type()))
    entry = main.new_block("%entry")
    entry.append(Return(Integer(0)))
    return program


def _branching_program():
    program = Program()
    putint = program.add_function(Function("@putint", [i32_type()], unit_type()))
    getint = program.add_function(Function("@getint", [], i32_type()))
    main = program.add_function(Function("@main", [i32_type()], i32_type()))
    entry = main.new_block("%entry")
    slot = entry.append(Alloc(i32_type()))
    entry.append(Store(main.params[0], slot))
    read = entry.append(Call(getint, []))
    loaded = entry.append(Load(slot))
    cond = entry.append(Binary(BinaryOp.LT, loaded, read))
    then_bb = main.new_block()
    end_bb = main.new_block()
    entry.append(Branch(cond, then_bb, end_bb))
    then_bb.append(Call(putint, [loaded]))
    then_bb.append(Jump(end_bb))
    end_bb.append(Return(loaded))
    return program


def test_return_zero_exact_text():
    text = generate_koopa(_return_zero_program())
    assert text == "fun @main(): i32 {\n%entry:\n  ret 0\n}\n"


def test_declaration_line():
    program = Program()
    program.add_function(Function("@getint", [], i32_type()))
    assert generate_koopa(program).splitlines() == ["decl @getint(): i32"]


def test_global_aggregate_line():
    program = Program()
    program.add_global(GlobalAlloc(Aggregate([Integer(1), Integer(2)])))
    first = generate_koopa(program).splitlines()[0]
    assert first == "global %0 = alloc [i32, 2], {1, 2}"


def test_unit_declaration_has_no_return_type():
    program = Program()
    program.add_function(
        Function("@putarray", [i32_type(), pointer_type(i32_type())], unit_type())
    )
    line = generate_koopa(program).strip()
    assert line.startswith("decl @putarray(")
    assert not line.endswith(": unit")
    assert str(pointer_type(i32_type())) in line


def test_assignment_count_matches_non_unit_instructions():
    program = _branching_program()
    text = generate_koopa(program)
    main = program.functions[-1]
    non_unit = sum(
        1 for block in main.blocks for inst in block.insts if not inst.ty.is_unit()
    )
    assigned = [line for line in text.splitlines() if " = " in line]
    assert len(assigned) == non_unit


def test_defined_names_are_unique():
    text = generate_koopa(_branching_program())
    defined = [line.split(" = ")[0].strip() for line in text.splitlines() if " = " in line]
    labels = [line[:-1] for line in text.splitlines() if line.endswith(":")]
    everything = defined + labels
    assert len(everything) == len(set(everything))


def test_branch_and_jump_targets_are_labels():
    text = generate_koopa(_branching_program())
    lines = text.splitlines()
    labels = {line[:-1] for line in lines if line.endswith(":")}
    targets = []
    for line in lines:
        stripped = line.strip()
        if stripped.startswith("br "):
            targets.extend(part.strip() for part in stripped.split(",")[1:])
        elif stripped.startswith("jump "):
            targets.append(stripped.split()[1])
    assert len(targets) == 3
    assert set(targets) <= labels


def test_labels_follow_layout_order():
    program = _branching_program()
    lines = generate_koopa(program).splitlines()
    label_lines = [i for i, line in enumerate(lines) if line.endswith(":")]
    assert len(label_lines) == len(program.functions[-1].blocks)
    assert label_lines == sorted(label_lines)
    assert lines[label_lines[0]] == "%entry:"


def test_output_is_deterministic():
    first = generate_koopa(_branching_program())
    second = generate_koopa(_branching_program())
    assert first == second
    assert "%entry:" in first.splitlines()
    assert first.splitlines()[-1] == "}"


def test_declarations_precede_definition_in_layout_order():
    lines = generate_koopa(_branching_program()).splitlines()
    assert lines[0].startswith("decl @putint(")
    assert lines[1].startswith("decl @getint(")
    fun_index = next(i for i, line in enumerate(lines) if line.startswith("fun "))
    assert fun_index > 1
    assert lines[-1] == "}"


def test_global_referenced_by_its_name_inside_function():
    program = Program()
    glob = program.add_global(GlobalAlloc(Integer(7)))
    main = program.add_function(Function("@main", [], i32_type()))
    entry = main.new_block("%entry")
    loaded = entry.append(Load(glob))
    entry.append(Return(loaded))
    lines = generate_koopa(program).splitlines()
    global_name = lines[0].split(" = ")[0].split()[1]
    load_line = next(line for line in lines if "load" in line)
    assert load_line.strip().endswith(global_name)


def test_duplicate_block_names_are_disambiguated():
    program = Program()
    main = program.add_function(Function("@main", [], unit_type()))
    first = main.new_block("%entry")
    second = main.new_block("%entry")
    first.append(Jump(second))
    second.append(Return())
    labels = [line for line in generate_koopa(program).splitlines() if line.endswith(":")]
    assert len(labels) == 2
    assert len(set(labels)) == 2


def test_non_instruction_in_block_raises():
    program = Program()
    main = program.add_function(Function("@main", [], i32_type()))
    main.new_block("%entry").append(Integer(3))
    with pytest.raises(TypeError):
        generate_koopa(program)


def test_operand_from_another_function_raises():
    program = Program()
    other = Function("@other", [], i32_type())
    stray = other.new_block("%entry").append(Alloc(i32_type()))
    main = program.add_function(Function("@main", [], i32_type()))
    main.new_block("%entry").append(Load(stray))
    with pytest.raises(ValueError):
        generate_koopa(program)


def test_jump_to_foreign_block_raises():
    program = Program()
    other = Function("@other", [], unit_type())
    foreign = other.new_block()
    main = program.add_function(Function("@main", [], unit_type()))
    main.new_block("%entry").append(Jump(foreign))
    with pytest.raises(ValueError):
        generate_koopa(program)