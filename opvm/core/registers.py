# registers.py: register file helpers (fixed-size tuples of ints)
from typing import Iterable, Tuple

from .errors import RegisterOutOfBounds

RegisterFile = Tuple[int, ...]

SAMPLE_REGISTERS = 4     # register count of the sampled 4-register machine
BOUND_IP_REGISTERS = 6   # register count of the machine with an IP register


def make_registers(count: int, values: Iterable[int] = ()) -> RegisterFile:
    """Return a register file of 'count' registers, seeded from 'values' (rest zero)."""
    seed = [int(v) for v in values]
    if len(seed) > count:
        raise ValueError(f"{len(seed)} initial values given for {count} registers")
    return tuple(seed + [0] * (count - len(seed)))


def check_register(registers: RegisterFile, index: int) -> int:
    if not (0 <= index < len(registers)):
        raise RegisterOutOfBounds(index, (0, len(registers)))
    return index


def with_register(registers: RegisterFile, index: int, value: int) -> RegisterFile:
    """Functional update: a copy of 'registers' with register 'index' set to 'value'."""
    check_register(registers, index)
    return registers[:index] + (value,) + registers[index + 1:]


def format_registers(registers: RegisterFile) -> str:
    return "[" + ", ".join(str(v) for v in registers) + "]"
