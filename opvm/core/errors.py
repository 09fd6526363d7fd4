# errors.py: exception hierarchy shared by the VM core and the analysis tools
from typing import Iterable, Optional, Tuple


class VMError(Exception):
    """Base class for every error raised by opvm."""


class RegisterOutOfBounds(VMError, IndexError):
    """
    An operand used as a register index is outside the register file.
    The resolver catches this to reject operations for a sample; during a
    program run it is fatal.
    """

    def __init__(self, index: int, valid_range: Tuple[int, int]):
        self.index = index
        self.valid_range = valid_range
        lo, hi = valid_range
        super().__init__(f"Register index out of bounds: {index} not in [{lo}, {hi})")


class ParseError(VMError, ValueError):
    def __init__(self, message: str, lineno: Optional[int] = None):
        self.lineno = lineno
        if lineno is not None:
            message = f"[line {lineno}] {message}"
        super().__init__(message)


class ResolutionError(VMError, ValueError):
    """Samples do not determine a unique opcode -> operation mapping."""


class NoCandidates(ResolutionError):
    def __init__(self, opcode: int):
        self.opcode = opcode
        super().__init__(f"No possible operations left for opcode {opcode}")


class AmbiguousMapping(ResolutionError):
    def __init__(self, opcode: int, candidates: Iterable = ()):
        self.opcode = opcode
        self.candidates = sorted(str(c) for c in candidates)
        super().__init__(
            f"Multiple possible operations left for opcode {opcode}: {', '.join(self.candidates)}"
        )


class OptimizationError(VMError, RuntimeError):
    """A loop idiom was applied to code or a state it does not describe."""


class StepLimitExceeded(VMError, RuntimeError):
    def __init__(self, steps: int, ip: int):
        self.steps = steps
        self.ip = ip
        super().__init__(f"Step limit of {steps} exceeded at ip={ip}")


class UnresolvedProgram(VMError, ValueError):
    """A program still holds numeric opcodes and cannot be executed."""
