# cpu.py: evaluator, program model and the IP-bound program runner
import logging
import operator
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from .errors import OptimizationError, StepLimitExceeded, UnresolvedProgram
from .observe import TraceSink, new_metrics
from .opcodes import OPERAND_MODES, REG, Instruction, Operation, RawInstruction
from .registers import (
    BOUND_IP_REGISTERS,
    SAMPLE_REGISTERS,
    RegisterFile,
    check_register,
    make_registers,
    with_register,
)

logger = logging.getLogger(__name__)


def _gt(x: int, y: int) -> int:
    return 1 if x > y else 0


def _eq(x: int, y: int) -> int:
    return 1 if x == y else 0


_COMPUTE: Dict[Operation, Callable[[int, int], int]] = {
    Operation.ADD_REGISTER:                    operator.add,
    Operation.ADD_IMMEDIATE:                   operator.add,
    Operation.MULTIPLY_REGISTER:               operator.mul,
    Operation.MULTIPLY_IMMEDIATE:              operator.mul,
    Operation.AND_REGISTER:                    operator.and_,
    Operation.AND_IMMEDIATE:                   operator.and_,
    Operation.OR_REGISTER:                     operator.or_,
    Operation.OR_IMMEDIATE:                    operator.or_,
    Operation.SET_REGISTER:                    lambda x, _: x,
    Operation.SET_IMMEDIATE:                   lambda x, _: x,
    Operation.GREATER_THAN_IMMEDIATE_REGISTER: _gt,
    Operation.GREATER_THAN_REGISTER_IMMEDIATE: _gt,
    Operation.GREATER_THAN_REGISTER_REGISTER:  _gt,
    Operation.EQUAL_IMMEDIATE_REGISTER:        _eq,
    Operation.EQUAL_REGISTER_IMMEDIATE:        _eq,
    Operation.EQUAL_REGISTER_REGISTER:         _eq,
}


# -----------------------------------------------------------------------
# Evaluator
# -----------------------------------------------------------------------
def _operand(registers: RegisterFile, mode: str, value: int) -> int:
    if mode == REG:
        return registers[check_register(registers, value)]
    return value


def evaluate(registers: Sequence[int], instruction: Instruction) -> RegisterFile:
    """
    Execute one instruction against a register file and return the new file.
    Only register c changes. Raises RegisterOutOfBounds when c, or an operand
    the operation reads as a register, is not a valid index.
    """
    registers = tuple(registers)
    op = instruction.op
    check_register(registers, instruction.c)
    mode_a, mode_b = OPERAND_MODES[op]
    a = _operand(registers, mode_a, instruction.a)
    b = _operand(registers, mode_b, instruction.b)
    return with_register(registers, instruction.c, _COMPUTE[op](a, b))


# -----------------------------------------------------------------------
# Program and execution state
# -----------------------------------------------------------------------
@dataclass(frozen=True)
class Program:
    instructions: Tuple[Union[Instruction, RawInstruction], ...]
    ip_register: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "instructions", tuple(self.instructions))

    def __len__(self) -> int:
        return len(self.instructions)

    @property
    def is_resolved(self) -> bool:
        return all(isinstance(i, Instruction) for i in self.instructions)

    def patched(self, index: int, instruction: Instruction) -> "Program":
        """Return a copy with the instruction at 'index' replaced."""
        if not (0 <= index < len(self.instructions)):
            raise IndexError(f"No instruction at {index} (program has {len(self.instructions)})")
        instrs = list(self.instructions)
        instrs[index] = instruction
        return Program(tuple(instrs), self.ip_register)


@dataclass
class ExecutionState:
    ip: int
    registers: RegisterFile
    steps: int = field(default=0, compare=False)

    def __post_init__(self):
        self.registers = tuple(self.registers)

    def copy(self) -> "ExecutionState":
        return ExecutionState(self.ip, self.registers, self.steps)


# -----------------------------------------------------------------------
# Runner
# -----------------------------------------------------------------------
class Machine:
    """
    Runs a resolved Program until the instruction pointer leaves it.
    Supports:
      - IP binding: the bound register mirrors the instruction pointer
        (write ip, execute, read ip back, then +1)
      - loop idioms keyed by start address, replacing a whole loop by its
        closed form (optionally checked against the plain loop on first entry)
      - probes: callables run before the instruction at an address
      - step limit, JSONL trace events and run metrics
    """

    def __init__(
        self,
        program: Program,
        optimizations: Sequence = (),
        max_steps: Optional[int] = None,
        trace_sink: Optional[TraceSink] = None,
        verify_steps: Optional[int] = None,
    ):
        if not program.is_resolved:
            raw = next(i for i in program.instructions if not isinstance(i, Instruction))
            raise UnresolvedProgram(f"Program still holds unresolved opcode {raw.opcode}; resolve it first")
        self.program = program
        self.instructions = program.instructions
        self.ip_register = program.ip_register
        self.max_steps = max_steps
        self.verify_steps = verify_steps
        self.trace_sink = trace_sink
        self.metrics = new_metrics()
        self.stopped_at: Optional[int] = None

        self._idioms: Dict[int, object] = {}
        self._verified = set()
        self._probes: Dict[int, List[Callable[[ExecutionState], Optional[bool]]]] = {}
        for idiom in optimizations:
            self.add_idiom(idiom)

    @property
    def idioms(self) -> List[object]:
        return [self._idioms[start] for start in sorted(self._idioms)]

    # Hooks
    def set_trace_sink(self, sink):
        self.trace_sink = sink

    def add_idiom(self, idiom):
        if not idiom.matches(self.program):
            raise OptimizationError(f"Idiom {idiom.name} does not match the program at {idiom.start}")
        if idiom.start in self._idioms:
            raise OptimizationError(f"Two idioms start at address {idiom.start}")
        hidden = [ip for ip in self._probes if idiom.start < ip < idiom.end]
        if hidden:
            raise OptimizationError(f"Idiom {idiom.name} would skip the hook at {hidden[0]}")
        self._idioms[idiom.start] = idiom

    def add_probe(self, ip: int, probe: Callable[[ExecutionState], Optional[bool]]):
        """probe(state) is called before the instruction at 'ip'; a truthy result stops the run."""
        for idiom in self._idioms.values():
            if idiom.start < ip < idiom.end:
                raise OptimizationError(f"Hook at {ip} lies inside idiom {idiom.name} [{idiom.start}, {idiom.end})")
        self._probes.setdefault(ip, []).append(probe)

    # -------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------
    def step(self, state: ExecutionState) -> ExecutionState:
        """Execute the instruction at state.ip in place and return the state."""
        ip = state.ip
        instr = self.instructions[ip]
        registers = state.registers
        if self.ip_register is not None:
            registers = with_register(registers, self.ip_register, ip)
        registers = evaluate(registers, instr)
        next_ip = registers[self.ip_register] if self.ip_register is not None else ip
        state.registers = registers
        state.ip = next_ip + 1
        state.steps += 1
        if self.trace_sink:
            self._emit_trace(ip, instr.op.value, state, instr=instr)
        return state

    def advance(self, state: ExecutionState) -> ExecutionState:
        """One step, or a whole loop when an idiom starts at state.ip."""
        idiom = self._idioms.get(state.ip)
        if idiom is not None:
            self._apply_idiom(idiom, state)
        else:
            self.step(state)
        return state

    def run(self, initial: ExecutionState, until: Optional[Callable[[int], bool]] = None) -> ExecutionState:
        """
        Run from a copy of 'initial' until ip leaves the program, 'until(ip)'
        holds, or a probe asks to stop. Returns the final state.
        """
        state = initial.copy()
        if self.ip_register is not None:
            check_register(state.registers, self.ip_register)
        self.stopped_at = None
        count = len(self.instructions)
        started = state.steps

        while 0 <= state.ip < count:
            if until is not None and until(state.ip):
                break
            if self.max_steps is not None and state.steps - started >= self.max_steps:
                raise StepLimitExceeded(self.max_steps, state.ip)

            probes = self._probes.get(state.ip)
            if probes and self._run_probes(probes, state):
                self.stopped_at = state.ip
                break

            self.advance(state)

        self.metrics["instr_count"] += state.steps - started
        logger.debug("run finished: ip=%d steps=%d registers=%s", state.ip, state.steps - started, state.registers)
        return state

    def _run_probes(self, probes, state: ExecutionState) -> bool:
        self.metrics["probe_hits"] += 1
        stop = False
        for probe in probes:
            if probe(state):
                stop = True
        return stop

    def _apply_idiom(self, idiom, state: ExecutionState):
        if self.verify_steps is not None and idiom.start not in self._verified:
            self._verified.add(idiom.start)
            self.check_idiom(idiom, state, self.verify_steps)
        ip = state.ip
        after = idiom.apply(state.copy())
        state.ip = after.ip
        state.registers = after.registers
        state.steps += 1
        self.metrics["idiom_hits"][idiom.name] = 1 + self.metrics["idiom_hits"].get(idiom.name, 0)
        logger.debug("idiom %s applied at %d -> ip=%d", idiom.name, ip, state.ip)
        if self.trace_sink:
            self._emit_trace(ip, idiom.name, state, idiom=True)

    def check_idiom(self, idiom, state: ExecutionState, max_steps: int) -> bool:
        """
        Run the loop at idiom.start without substitution and compare the exit
        state with idiom.apply. Raises OptimizationError on mismatch; returns
        False (check skipped) when the plain loop needs more than 'max_steps'.
        """
        plain = Machine(self.program, max_steps=max_steps)
        entry = ExecutionState(state.ip, state.registers)
        try:
            expected = plain.run(entry, until=lambda ip: not (idiom.start <= ip < idiom.end))
        except StepLimitExceeded:
            logger.warning("idiom %s at %d not verified: plain loop exceeds %d steps",
                           idiom.name, idiom.start, max_steps)
            return False
        actual = idiom.apply(entry.copy())
        if (expected.ip, expected.registers) != (actual.ip, actual.registers):
            raise OptimizationError(
                f"Idiom {idiom.name} at {idiom.start} diverges: expected ip={expected.ip} "
                f"{list(expected.registers)}, got ip={actual.ip} {list(actual.registers)}"
            )
        logger.debug("idiom %s at %d verified in %d plain steps", idiom.name, idiom.start, expected.steps)
        return True

    # Observability helper
    def _emit_trace(self, ip: int, op_name: str, state: ExecutionState, instr=None, idiom=False):
        event = {
            "ts": time.time(),
            "ip": ip,
            "op_name": op_name,
            "a": instr.a if instr is not None else None,
            "b": instr.b if instr is not None else None,
            "c": instr.c if instr is not None else None,
            "next_ip": state.ip,
            "registers": list(state.registers),
            "step": state.steps,
            "idiom": bool(idiom),
        }
        self.metrics["by_opcode"][op_name] = 1 + self.metrics["by_opcode"].get(op_name, 0)
        self.metrics["by_ip"][ip] = 1 + self.metrics["by_ip"].get(ip, 0)
        self.trace_sink.emit(event)


def initial_state(register_count: int, values: Sequence[int] = (), ip: int = 0) -> ExecutionState:
    return ExecutionState(ip, make_registers(register_count, values))


def run(program: Program, initial: Optional[ExecutionState] = None,
        register_count: Optional[int] = None, **machine_opts) -> ExecutionState:
    """
    Run 'program' from 'initial' (default: ip 0, all registers zero; 6
    registers for IP-bound programs, 4 otherwise).
    """
    if initial is None:
        if register_count is None:
            register_count = BOUND_IP_REGISTERS if program.ip_register is not None else SAMPLE_REGISTERS
        initial = initial_state(register_count)
    return Machine(program, **machine_opts).run(initial)
