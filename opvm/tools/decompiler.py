# decompiler.py: render instructions as assignment pseudo-code
from typing import List, Optional

from ..core.cpu import Program
from ..core.opcodes import COMPARISONS, OPERAND_MODES, REG, Operation, RawInstruction

_SYMBOLS = {
    Operation.ADD_REGISTER: "+", Operation.ADD_IMMEDIATE: "+",
    Operation.MULTIPLY_REGISTER: "*", Operation.MULTIPLY_IMMEDIATE: "*",
    Operation.AND_REGISTER: "&", Operation.AND_IMMEDIATE: "&",
    Operation.OR_REGISTER: "|", Operation.OR_IMMEDIATE: "|",
    Operation.GREATER_THAN_IMMEDIATE_REGISTER: ">",
    Operation.GREATER_THAN_REGISTER_IMMEDIATE: ">",
    Operation.GREATER_THAN_REGISTER_REGISTER: ">",
    Operation.EQUAL_IMMEDIATE_REGISTER: "==",
    Operation.EQUAL_REGISTER_IMMEDIATE: "==",
    Operation.EQUAL_REGISTER_REGISTER: "==",
}


def _reg(index: int, ip_register: Optional[int]) -> str:
    return "ip" if index == ip_register else f"r{index}"


def _operand(mode: str, value: int, ip_register: Optional[int]) -> str:
    return _reg(value, ip_register) if mode == REG else str(value)


def render_instruction(instr, ip_register: Optional[int] = None) -> str:
    """'mulr 4 5 1' -> 'r1 = r4 * r5'; the bound IP register prints as 'ip'."""
    if isinstance(instr, RawInstruction):
        return f"r{instr.c} = op{instr.opcode}({instr.a}, {instr.b})"
    mode_a, mode_b = OPERAND_MODES[instr.op]
    target = _reg(instr.c, ip_register)
    a = _operand(mode_a, instr.a, ip_register)
    if instr.op in (Operation.SET_REGISTER, Operation.SET_IMMEDIATE):
        text = f"{target} = {a}"
    else:
        b = _operand(mode_b, instr.b, ip_register)
        expr = f"{a} {_SYMBOLS[instr.op]} {b}"
        text = f"{target} = ({expr})" if instr.op in COMPARISONS else f"{target} = {expr}"
    if instr.c == ip_register and instr.op == Operation.SET_IMMEDIATE:
        text += f"    # goto {instr.a + 1}"
    return text


def decompile(program: Program) -> List[str]:
    width = max(2, len(str(max(len(program.instructions) - 1, 0))))
    return [
        f"{ip:0{width}d}: {render_instruction(instr, program.ip_register)}"
        for ip, instr in enumerate(program.instructions)
    ]
