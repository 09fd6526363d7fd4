# tests/test_assembler.py
import pytest
from tests.helpers_imports import mod
from tests.programs import DIVISOR_SUM, GOLDEN, WORKED_SAMPLE

asm = mod.tools_assembler
Op = mod.opcodes.Operation
ParseError = mod.errors.ParseError


def test_parse_bound_program():
    program = asm.parse_program(DIVISOR_SUM)
    assert program.ip_register == 3
    assert len(program) == 20
    assert program.instructions[0] == mod.opcodes.Instruction(Op.ADD_IMMEDIATE, 3, 16, 3)
    assert program.is_resolved


def test_comments_blank_lines_and_hex():
    src = """
    # a comment line
    #ip 2
    seti 0x10 0 1   ; inline comment

    addr 1 1 0
    """
    program = asm.parse_program(src)
    assert program.ip_register == 2
    assert [str(i) for i in program.instructions] == ["seti 16 0 1", "addr 1 1 0"]


def test_program_without_directive():
    program = asm.parse_program("seti 7 0 0\naddi 0 1 1\n")
    assert program.ip_register is None
    assert len(program) == 2


def test_numeric_program_is_unresolved():
    program = asm.parse_program("9 2 1 2\n3 0 0 1\n")
    assert not program.is_resolved
    assert program.instructions[0] == mod.opcodes.RawInstruction(9, 2, 1, 2)


@pytest.mark.parametrize("src,lineno", [
    ("seti 1 0 0\n#ip 0\n", 2),               # directive after instructions
    ("#ip 0\n#ip 1\n", 2),                    # duplicate directive
    ("#ip\n", 1),
    ("#ip -1\n", 1),
    ("seti 1 0 0\n7 1 0 0\n", 2),             # mixed mnemonic / numeric
    ("\nfoo 1 2 3\n", 2),                     # unknown operation
    ("seti 1 0\n", 1),                        # missing operand
    ("seti 1 0 0 0\n", 1),                    # extra operand
    ("seti one 0 0\n", 1),
    ("-3 1 0 0\n", 1),                        # negative opcode
])
def test_parse_errors_carry_line_numbers(src, lineno):
    with pytest.raises(ParseError) as exc:
        asm.parse_program(src)
    assert exc.value.lineno == lineno
    assert str(exc.value).startswith(f"[line {lineno}]")


def test_parse_golden_program():
    program = asm.parse_program(GOLDEN)
    assert program.ip_register == 0
    assert str(program.instructions[-1]) == "seti 9 0 5"


def test_parse_samples():
    samples = asm.parse_samples(WORKED_SAMPLE + "\n" + WORKED_SAMPLE)
    assert len(samples) == 2
    s = samples[0]
    assert s.before == (3, 2, 1, 1)
    assert s.after == (3, 2, 2, 1)
    assert s.instruction == mod.opcodes.RawInstruction(9, 2, 1, 2)
    assert s.opcode == 9


def test_parse_samples_errors():
    with pytest.raises(ParseError):
        asm.parse_samples("Before: [3, 2, 1, 1]\n9 2 1 2\n")
    with pytest.raises(ParseError):
        asm.parse_samples("Before: [3, 2, 1, 1]\nmulr 2 1 2\nAfter:  [3, 2, 2, 1]\n")
    with pytest.raises(ParseError) as exc:
        asm.parse_samples("Before: [3, 2, 1, 1]\n9 2 1 2\nAfter:  [3, 2, 2]\n")
    assert exc.value.lineno == 3
    with pytest.raises(ParseError):
        asm.parse_samples("Before: 3, 2, 1, 1\n9 2 1 2\nAfter:  [3, 2, 2, 1]\n")


def test_parse_sampled_input_splits_sections():
    text = WORKED_SAMPLE + "\n\n\n9 1 2 3\n4 0 0 0\n"
    samples, program = asm.parse_sampled_input(text)
    assert len(samples) == 1
    assert [i.opcode for i in program.instructions] == [9, 4]


def test_parse_sampled_input_keeps_program_line_numbers():
    text = WORKED_SAMPLE + "\n9 1 2 3\n4 0 0\n"
    with pytest.raises(ParseError) as exc:
        asm.parse_sampled_input(text)
    assert exc.value.lineno == 6


def test_hex_opcode_and_case_insensitive_mnemonic():
    assert asm.parse_instruction("0x9 1 2 3") == mod.opcodes.RawInstruction(9, 1, 2, 3)
    assert asm.parse_instruction("MULR 4 5 1").op is Op.MULTIPLY_REGISTER
    with pytest.raises(ParseError) as exc:
        asm.parse_instruction("0xZZ 1 2 3", 4)
    assert "Unknown operation" in str(exc.value)
    assert exc.value.lineno == 4
