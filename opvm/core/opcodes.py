# opcodes.py: operation set, operand modes and instruction records
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple


class Operation(str, Enum):
    ADD_REGISTER = "addr"
    ADD_IMMEDIATE = "addi"
    MULTIPLY_REGISTER = "mulr"
    MULTIPLY_IMMEDIATE = "muli"
    AND_REGISTER = "banr"
    AND_IMMEDIATE = "bani"
    OR_REGISTER = "borr"
    OR_IMMEDIATE = "bori"
    SET_REGISTER = "setr"
    SET_IMMEDIATE = "seti"
    GREATER_THAN_IMMEDIATE_REGISTER = "gtir"
    GREATER_THAN_REGISTER_IMMEDIATE = "gtri"
    GREATER_THAN_REGISTER_REGISTER = "gtrr"
    EQUAL_IMMEDIATE_REGISTER = "eqir"
    EQUAL_REGISTER_IMMEDIATE = "eqri"
    EQUAL_REGISTER_REGISTER = "eqrr"

    def __str__(self) -> str:
        return self.value


OPERATIONS: Tuple[Operation, ...] = tuple(Operation)

# Decode table: mnemonic -> operation
MNEMONICS: Dict[str, Operation] = {op.value: op for op in Operation}

# ---- Operand modes ----
# REG  : operand is a register index (dereferenced, bounds-checked)
# IMM  : operand is the literal value
# NONE : operand ignored (b of setr/seti)
REG = "reg"
IMM = "imm"
NONE = "none"

OPERAND_MODES: Dict[Operation, Tuple[str, str]] = {
    Operation.ADD_REGISTER:                    (REG, REG),
    Operation.ADD_IMMEDIATE:                   (REG, IMM),
    Operation.MULTIPLY_REGISTER:               (REG, REG),
    Operation.MULTIPLY_IMMEDIATE:              (REG, IMM),
    Operation.AND_REGISTER:                    (REG, REG),
    Operation.AND_IMMEDIATE:                   (REG, IMM),
    Operation.OR_REGISTER:                     (REG, REG),
    Operation.OR_IMMEDIATE:                    (REG, IMM),
    Operation.SET_REGISTER:                    (REG, NONE),
    Operation.SET_IMMEDIATE:                   (IMM, NONE),
    Operation.GREATER_THAN_IMMEDIATE_REGISTER: (IMM, REG),
    Operation.GREATER_THAN_REGISTER_IMMEDIATE: (REG, IMM),
    Operation.GREATER_THAN_REGISTER_REGISTER:  (REG, REG),
    Operation.EQUAL_IMMEDIATE_REGISTER:        (IMM, REG),
    Operation.EQUAL_REGISTER_IMMEDIATE:        (REG, IMM),
    Operation.EQUAL_REGISTER_REGISTER:         (REG, REG),
}

# Register/register operations whose a and b may be swapped
COMMUTATIVE = frozenset({
    Operation.ADD_REGISTER,
    Operation.MULTIPLY_REGISTER,
    Operation.AND_REGISTER,
    Operation.OR_REGISTER,
    Operation.EQUAL_REGISTER_REGISTER,
})

COMPARISONS = frozenset({
    Operation.GREATER_THAN_IMMEDIATE_REGISTER,
    Operation.GREATER_THAN_REGISTER_IMMEDIATE,
    Operation.GREATER_THAN_REGISTER_REGISTER,
    Operation.EQUAL_IMMEDIATE_REGISTER,
    Operation.EQUAL_REGISTER_IMMEDIATE,
    Operation.EQUAL_REGISTER_REGISTER,
})


def decode_mnemonic(name: str) -> Operation:
    try:
        return MNEMONICS[name.strip().lower()]
    except KeyError:
        raise KeyError(f"Unknown operation mnemonic: {name!r}") from None


@dataclass(frozen=True)
class Instruction:
    op: Operation
    a: int
    b: int
    c: int

    def __str__(self) -> str:
        return f"{self.op.value} {self.a} {self.b} {self.c}"


@dataclass(frozen=True)
class RawInstruction:
    """Instruction whose numeric opcode has not been resolved to an Operation yet."""
    opcode: int
    a: int
    b: int
    c: int

    def __str__(self) -> str:
        return f"{self.opcode} {self.a} {self.b} {self.c}"

    def with_operation(self, op: Operation) -> Instruction:
        return Instruction(op, self.a, self.b, self.c)


@dataclass(frozen=True)
class Sample:
    """Observed execution of one unresolved instruction: registers before and after."""
    before: Tuple[int, ...]
    instruction: RawInstruction
    after: Tuple[int, ...]

    def __post_init__(self):
        object.__setattr__(self, "before", tuple(self.before))
        object.__setattr__(self, "after", tuple(self.after))

    @property
    def opcode(self) -> int:
        return self.instruction.opcode
