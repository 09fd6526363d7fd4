# loop_optimizer.py: recognise known hot loops and replace them by their closed form
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Tuple

from ..core.cpu import ExecutionState, Machine, Program
from ..core.errors import OptimizationError
from ..core.opcodes import COMMUTATIVE, Instruction, Operation

logger = logging.getLogger(__name__)

# ---- Template fields ----
# int     : operand must equal this literal
# "*"     : operand ignored
# "@N"    : operand must equal the address start+N
# "#NAME" : captures an immediate (same name -> same value)
# "NAME"  : register role; distinct roles bind distinct registers,
#           "ip" is pre-bound to the program's IP register
Template = Tuple[Tuple[Operation, object, object, object], ...]


def _register_roles(bindings: Dict[str, int]) -> Dict[str, int]:
    return {k: v for k, v in bindings.items() if not k.startswith("#")}


def _bind(bindings: Dict[str, int], field, value: int, start: int) -> bool:
    if isinstance(field, int):
        return value == field
    if field == "*":
        return True
    if field.startswith("@"):
        return value == start + int(field[1:])
    if field in bindings:
        return bindings[field] == value
    if not field.startswith("#") and value in _register_roles(bindings).values():
        return False
    bindings[field] = value
    return True


def _match_from(instrs, start: int, template: Template, offset: int, bindings: Dict[str, int]) -> Optional[Dict[str, int]]:
    if offset == len(template):
        return bindings
    op, fa, fb, fc = template[offset]
    instr = instrs[start + offset]
    if not isinstance(instr, Instruction) or instr.op != op:
        return None
    orders = [(instr.a, instr.b)]
    if op in COMMUTATIVE and instr.a != instr.b:
        orders.append((instr.b, instr.a))
    for a, b in orders:
        trial = dict(bindings)
        if _bind(trial, fa, a, start) and _bind(trial, fb, b, start) and _bind(trial, fc, instr.c, start):
            found = _match_from(instrs, start, template, offset + 1, trial)
            if found is not None:
                return found
    return None


def match_template(program: Program, start: int, template: Template) -> Optional[Dict[str, int]]:
    """Match 'template' against the program at 'start'; return the role bindings or None."""
    if program.ip_register is None:
        return None
    if start < 0 or start + len(template) > len(program.instructions):
        return None
    return _match_from(program.instructions, start, template, 0, {"ip": program.ip_register})


class LoopIdiom(ABC):
    """
    A loop occupying [start, end) with a known closed form. The loop is left
    through its last instruction, so after apply() the IP register holds end-1
    and execution continues at end.
    """
    name = "idiom"
    template: Template = ()

    def __init__(self, start: int, roles: Dict[str, int]):
        self.start = start
        self.end = start + len(self.template)
        self.roles = dict(roles)
        self.ip_register = roles["ip"]

    @classmethod
    def accepts(cls, roles: Dict[str, int]) -> bool:
        return all(v >= 0 for v in _register_roles(roles).values())

    @classmethod
    def detect(cls, program: Program, start: int) -> Optional["LoopIdiom"]:
        roles = match_template(program, start, cls.template)
        if roles is None or not cls.accepts(roles):
            return None
        return cls(start, roles)

    def matches(self, program: Program) -> bool:
        roles = match_template(program, self.start, self.template)
        return roles == self.roles and self.accepts(roles)

    @abstractmethod
    def apply(self, state: ExecutionState) -> ExecutionState:
        ...

    def _enter(self, state: ExecutionState) -> List[int]:
        if state.ip != self.start:
            raise OptimizationError(f"{self.name} entered at ip={state.ip}, expected {self.start}")
        highest = max(_register_roles(self.roles).values())
        if highest >= len(state.registers):
            raise OptimizationError(f"{self.name} needs register {highest}, file has {len(state.registers)}")
        return list(state.registers)

    def exited(self, registers: List[int]) -> bool:
        """Whether the loop's exit test holds for registers."""
        return True

    def _leave(self, registers: List[int], state: ExecutionState) -> ExecutionState:
        if not self.exited(registers):
            raise OptimizationError(f"{self.name} at {self.start}: loop exit test fails after apply")
        registers[self.ip_register] = self.end - 1
        return ExecutionState(self.end, tuple(registers), state.steps)

    def describe(self) -> str:
        roles = ", ".join(f"{k}={v}" for k, v in sorted(self.roles.items()))
        return f"{self.name} [{self.start}, {self.end}) {roles}"

    def __repr__(self):
        return f"{type(self).__name__}(start={self.start}, roles={self.roles})"


class DivisorCountingIdiom(LoopIdiom):
    """
        K = 0
        while (K + 1) * D <= B:
            K += 1
    leaves K = max(0, B // D) and T = 1.
    """
    name = "divisor-counting"
    template: Template = (
        (Operation.SET_IMMEDIATE, 0, "*", "K"),
        (Operation.ADD_IMMEDIATE, "K", 1, "T"),
        (Operation.MULTIPLY_IMMEDIATE, "T", "#D", "T"),
        (Operation.GREATER_THAN_REGISTER_REGISTER, "T", "B", "T"),
        (Operation.ADD_REGISTER, "T", "ip", "ip"),
        (Operation.ADD_IMMEDIATE, "ip", 1, "ip"),
        (Operation.SET_IMMEDIATE, "@8", "*", "ip"),
        (Operation.ADD_IMMEDIATE, "K", 1, "K"),
        (Operation.SET_IMMEDIATE, "@0", "*", "ip"),
    )

    @classmethod
    def accepts(cls, roles: Dict[str, int]) -> bool:
        # D <= 0 never terminates for B >= 0
        return super().accepts(roles) and roles["#D"] > 0

    def apply(self, state: ExecutionState) -> ExecutionState:
        regs = self._enter(state)
        k, t, b, d = self.roles["K"], self.roles["T"], self.roles["B"], self.roles["#D"]
        if d <= 0:
            raise OptimizationError(f"{self.name}: divisor must be positive, got {d}")
        regs[k] = max(0, regs[b] // d)
        regs[t] = 1
        return self._leave(regs, state)

    def exited(self, registers: List[int]) -> bool:
        return (registers[self.roles["K"]] + 1) * self.roles["#D"] > registers[self.roles["B"]]


class DivisorSumIdiom(LoopIdiom):
    """
        do:
            if X * Y == N:
                S += X
            Y += 1
        while not Y > N
    X and N are never written inside the loop, so X*Y == N holds for at most
    one Y (X != 0): Y = N / X when X divides N and that Y is in range.
    """
    name = "divisor-sum"
    template: Template = (
        (Operation.MULTIPLY_REGISTER, "X", "Y", "T"),
        (Operation.EQUAL_REGISTER_REGISTER, "T", "N", "T"),
        (Operation.ADD_REGISTER, "T", "ip", "ip"),
        (Operation.ADD_IMMEDIATE, "ip", 1, "ip"),
        (Operation.ADD_REGISTER, "X", "S", "S"),
        (Operation.ADD_IMMEDIATE, "Y", 1, "Y"),
        (Operation.GREATER_THAN_REGISTER_REGISTER, "Y", "N", "T"),
        (Operation.ADD_REGISTER, "ip", "T", "ip"),
        (Operation.SET_IMMEDIATE, "@-1", "*", "ip"),
    )

    def apply(self, state: ExecutionState) -> ExecutionState:
        regs = self._enter(state)
        x, y, n = regs[self.roles["X"]], regs[self.roles["Y"]], regs[self.roles["N"]]
        # body runs once even when Y already exceeds N
        last = max(y, n)
        if x != 0 and n % x == 0 and y <= n // x <= last:
            regs[self.roles["S"]] += x
        regs[self.roles["Y"]] = last + 1
        regs[self.roles["T"]] = 1
        return self._leave(regs, state)

    def exited(self, registers: List[int]) -> bool:
        return registers[self.roles["Y"]] > registers[self.roles["N"]]


IDIOMS = (DivisorCountingIdiom, DivisorSumIdiom)


def find_idioms(program: Program, idioms: Sequence = IDIOMS) -> List[LoopIdiom]:
    """Scan every address of the program for every known idiom."""
    found = []
    for start in range(len(program.instructions)):
        for cls in idioms:
            idiom = cls.detect(program, start)
            if idiom is not None:
                logger.info("found %s", idiom.describe())
                found.append(idiom)
    return found


def verify_idiom(program: Program, idiom: LoopIdiom, state: ExecutionState, max_steps: int = 1_000_000) -> bool:
    """Compare idiom.apply with the plain loop from 'state'; see Machine.check_idiom."""
    return Machine(program).check_idiom(idiom, state, max_steps)
