# halting.py: which input values make a program halt, found by watching its exit comparison
#
# Typical shape: the program loops producing a value in some register and, at
# one address, compares it with r0 (e.g. 'eqrr 1 0 5'), halting on equality.
# Watching that register at that address yields every value that would halt
# the program, in the order the program would reach them.
import logging
from typing import List, Optional, Sequence

from ..core.cpu import ExecutionState, Machine, Program, initial_state
from ..core.opcodes import Instruction, Operation
from ..core.registers import BOUND_IP_REGISTERS, check_register

logger = logging.getLogger(__name__)


def jump_to_end(program: Program, index: int) -> Program:
    """Replace the instruction at 'index' by a jump past the last instruction."""
    if program.ip_register is None:
        raise ValueError("jump_to_end needs a program with a bound IP register")
    jump = Instruction(Operation.SET_IMMEDIATE, len(program.instructions), 0, program.ip_register)
    return program.patched(index, jump)


def _default_state(initial: Optional[ExecutionState]) -> ExecutionState:
    return initial if initial is not None else initial_state(BOUND_IP_REGISTERS)


def halting_values(
    program: Program,
    watch_ip: int,
    register: int,
    initial: Optional[ExecutionState] = None,
    optimizations: Sequence = (),
    max_steps: Optional[int] = None,
) -> List[int]:
    """
    Distinct values of 'register' seen each time execution reaches 'watch_ip',
    in order, stopping at the first repeat (the sequence cycles from there) or
    when the program ends. The first value halts the program soonest, the last
    one latest.
    """
    state = _default_state(initial)
    check_register(state.registers, register)
    seen = set()
    values: List[int] = []

    def probe(st: ExecutionState) -> bool:
        value = st.registers[register]
        if value in seen:
            return True
        seen.add(value)
        values.append(value)
        return False

    # an idiom covering the watched address would run past it
    kept = [idiom for idiom in optimizations if not (idiom.start < watch_ip < idiom.end)]
    for idiom in optimizations:
        if idiom not in kept:
            logger.info("dropping %s: it covers watched address %d", idiom.name, watch_ip)
    machine = Machine(program, optimizations=kept, max_steps=max_steps)
    machine.add_probe(watch_ip, probe)
    final = machine.run(state)
    if machine.stopped_at is None:
        logger.info("program ended at ip=%d before the watched values cycled", final.ip)
    logger.info("%d distinct values at ip %d in r%d", len(values), watch_ip, register)
    return values


def first_halting_value(
    program: Program,
    compare_ip: int,
    register: int,
    initial: Optional[ExecutionState] = None,
    optimizations: Sequence = (),
    max_steps: Optional[int] = None,
) -> int:
    """
    Value of 'register' the first time the comparison at 'compare_ip' runs,
    obtained by turning that comparison into a jump to the end of the program.
    """
    patched = jump_to_end(program, compare_ip)
    kept = [idiom for idiom in optimizations if idiom.matches(patched)]
    final = Machine(patched, optimizations=kept, max_steps=max_steps).run(_default_state(initial))
    return final.registers[register]
