# tests/test_evaluator.py
import pytest
from tests.helpers_imports import mod

Op = mod.opcodes.Operation
Instruction = mod.opcodes.Instruction
evaluate = mod.cpu.evaluate
RegisterOutOfBounds = mod.errors.RegisterOutOfBounds


@pytest.mark.parametrize("op,a,b,expected", [
    (Op.ADD_REGISTER, 1, 2, 9),          # 5 + 4
    (Op.ADD_IMMEDIATE, 1, 2, 7),         # 5 + 2
    (Op.MULTIPLY_REGISTER, 1, 2, 20),
    (Op.MULTIPLY_IMMEDIATE, 1, 3, 15),
    (Op.AND_REGISTER, 1, 2, 4),          # 0b101 & 0b100
    (Op.AND_IMMEDIATE, 1, 1, 1),
    (Op.OR_REGISTER, 1, 2, 5),
    (Op.OR_IMMEDIATE, 2, 3, 7),
    (Op.SET_REGISTER, 1, 99, 5),         # b ignored, even out of range
    (Op.SET_IMMEDIATE, 42, 99, 42),
    (Op.GREATER_THAN_IMMEDIATE_REGISTER, 5, 2, 1),
    (Op.GREATER_THAN_REGISTER_IMMEDIATE, 1, 5, 0),
    (Op.GREATER_THAN_REGISTER_REGISTER, 1, 2, 1),
    (Op.EQUAL_IMMEDIATE_REGISTER, 4, 2, 1),
    (Op.EQUAL_REGISTER_IMMEDIATE, 2, 4, 1),
    (Op.EQUAL_REGISTER_REGISTER, 1, 2, 0),
])
def test_each_operation(op, a, b, expected):
    before = (0, 5, 4, 0)
    after = evaluate(before, Instruction(op, a, b, 3))
    assert after == (0, 5, 4, expected)


def test_only_c_changes_and_input_untouched():
    before = [3, 2, 1, 1]
    after = evaluate(before, Instruction(Op.MULTIPLY_REGISTER, 2, 1, 2))
    assert after == (3, 2, 2, 1)
    assert before == [3, 2, 1, 1]
    assert isinstance(after, tuple)


def test_comparisons_store_exactly_one_or_zero():
    for op in mod.opcodes.COMPARISONS:
        for regs in ((0, 0, 0, 0), (9, 1, 3, 9), (-4, 7, 7, -1)):
            assert evaluate(regs, Instruction(op, 1, 2, 0))[0] in (0, 1)


def test_arithmetic_does_not_wrap():
    regs = (2 ** 40, 2 ** 40, 0, 0)
    after = evaluate(regs, Instruction(Op.MULTIPLY_REGISTER, 0, 1, 2))
    assert after[2] == 2 ** 80


def test_output_register_out_of_bounds():
    with pytest.raises(RegisterOutOfBounds) as exc:
        evaluate((0, 0, 0, 0), Instruction(Op.SET_IMMEDIATE, 1, 0, 4))
    assert exc.value.index == 4
    assert exc.value.valid_range == (0, 4)


def test_register_operand_out_of_bounds():
    with pytest.raises(RegisterOutOfBounds) as exc:
        evaluate((0, 0, 0, 0), Instruction(Op.ADD_REGISTER, 0, 7, 1))
    assert exc.value.index == 7
    # immediate operands are never bounds-checked
    assert evaluate((0, 0, 0, 0), Instruction(Op.ADD_IMMEDIATE, 0, 7, 1)) == (0, 7, 0, 0)


def test_eqri_reads_a_as_register():
    assert evaluate((0, 0, 7, 0), Instruction(Op.EQUAL_REGISTER_IMMEDIATE, 2, 7, 0))[0] == 1
    assert evaluate((0, 0, 0, 0), Instruction(Op.EQUAL_REGISTER_IMMEDIATE, 0, 9, 1))[1] == 0
    with pytest.raises(RegisterOutOfBounds):
        evaluate((0, 0, 0, 0), Instruction(Op.EQUAL_REGISTER_IMMEDIATE, 9, 0, 0))


def test_errors_are_vm_errors():
    with pytest.raises(mod.errors.VMError):
        evaluate((0,), Instruction(Op.SET_REGISTER, 3, 0, 0))
    with pytest.raises(IndexError):
        evaluate((0,), Instruction(Op.SET_REGISTER, 3, 0, 0))


def test_mnemonic_table_is_complete():
    assert len(mod.opcodes.OPERATIONS) == 16
    assert set(mod.opcodes.MNEMONICS) == {
        "addr", "addi", "mulr", "muli", "banr", "bani", "borr", "bori",
        "setr", "seti", "gtir", "gtri", "gtrr", "eqir", "eqri", "eqrr",
    }
    assert mod.opcodes.decode_mnemonic(" MULR ") is Op.MULTIPLY_REGISTER
    with pytest.raises(KeyError):
        mod.opcodes.decode_mnemonic("divr")
    assert str(Instruction(Op.ADD_IMMEDIATE, 3, 16, 3)) == "addi 3 16 3"


def test_make_registers():
    assert mod.registers.make_registers(4) == (0, 0, 0, 0)
    assert mod.registers.make_registers(6, [1, 2]) == (1, 2, 0, 0, 0, 0)
    with pytest.raises(ValueError):
        mod.registers.make_registers(2, [1, 2, 3])
    assert mod.registers.format_registers((1, 2)) == "[1, 2]"
