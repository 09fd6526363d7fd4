# resolver.py: deduce numeric opcode -> Operation from before/after samples
import logging
from typing import Dict, FrozenSet, Iterable, List, Mapping, Sequence, Set

from ..core.cpu import Program, evaluate
from ..core.errors import AmbiguousMapping, NoCandidates, RegisterOutOfBounds, ResolutionError
from ..core.opcodes import OPERATIONS, Operation, RawInstruction, Sample

logger = logging.getLogger(__name__)

OPCODE_COUNT = len(OPERATIONS)


def candidate_operations(sample: Sample) -> Set[Operation]:
    """Operations that turn sample.before into sample.after with the sample's operands."""
    raw = sample.instruction
    ops = set()
    for op in OPERATIONS:
        try:
            result = evaluate(sample.before, raw.with_operation(op))
        except RegisterOutOfBounds:
            # operand not a valid register for this operation
            continue
        if result == sample.after:
            ops.add(op)
    return ops


def count_ambiguous_samples(samples: Iterable[Sample], threshold: int = 3) -> int:
    """Number of samples consistent with at least 'threshold' operations."""
    return sum(1 for s in samples if len(candidate_operations(s)) >= threshold)


class OpcodeResolver:
    """
    Constraint table opcode -> still-possible operations. Each observed sample
    narrows its opcode's set; every singleton is then removed from all other
    opcodes, repeatedly, until nothing changes.
    """

    def __init__(self, opcodes: Iterable[int] = range(OPCODE_COUNT)):
        self.table: Dict[int, Set[Operation]] = {op: set(OPERATIONS) for op in opcodes}
        self._propagated: Set[int] = set()

    def candidates(self, opcode: int) -> FrozenSet[Operation]:
        return frozenset(self.table.get(opcode, OPERATIONS))

    def snapshot(self) -> Dict[int, FrozenSet[Operation]]:
        return {opcode: frozenset(ops) for opcode, ops in self.table.items()}

    def observe(self, sample: Sample):
        opcode = sample.opcode
        possible = self.table.setdefault(opcode, set(OPERATIONS))
        before = len(possible)
        possible &= candidate_operations(sample)
        if not possible:
            raise NoCandidates(opcode)
        if len(possible) < before:
            logger.debug("opcode %d: %d -> %d candidates", opcode, before, len(possible))
        self._propagate([opcode])

    def observe_all(self, samples: Iterable[Sample]):
        for sample in samples:
            self.observe(sample)

    def _propagate(self, worklist: List[int]):
        while worklist:
            opcode = worklist.pop()
            ops = self.table[opcode]
            if len(ops) != 1 or opcode in self._propagated:
                continue
            self._propagated.add(opcode)
            found = next(iter(ops))
            logger.debug("opcode %d resolved to %s", opcode, found)
            for other, other_ops in self.table.items():
                if other == opcode or found not in other_ops:
                    continue
                other_ops.discard(found)
                if not other_ops:
                    raise NoCandidates(other)
                if len(other_ops) == 1:
                    worklist.append(other)

    def mapping(self) -> Dict[int, Operation]:
        # unobserved opcodes may still have become singletons through elimination
        self._propagate(list(self.table))
        if logger.isEnabledFor(logging.DEBUG):
            open_sets = {op: sorted(map(str, ops)) for op, ops in self.snapshot().items() if len(ops) != 1}
            logger.debug("unresolved opcodes before mapping: %s", open_sets or "none")
        result: Dict[int, Operation] = {}
        for opcode in sorted(self.table):
            ops = self.table[opcode]
            if not ops:
                raise NoCandidates(opcode)
            if len(ops) > 1:
                raise AmbiguousMapping(opcode, ops)
            result[opcode] = next(iter(ops))
        return result


def resolve(samples: Sequence[Sample]) -> Dict[int, Operation]:
    resolver = OpcodeResolver()
    resolver.observe_all(samples)
    mapping = resolver.mapping()
    logger.info("resolved %d opcodes from %d samples", len(mapping), len(samples))
    return mapping


def translate_program(program: Program, mapping: Mapping[int, Operation]) -> Program:
    """Replace numeric opcodes by their resolved operations."""
    instrs = []
    for index, instr in enumerate(program.instructions):
        if isinstance(instr, RawInstruction):
            if instr.opcode not in mapping:
                raise ResolutionError(f"Opcode {instr.opcode} at {index} has no resolved operation")
            instr = instr.with_operation(mapping[instr.opcode])
        instrs.append(instr)
    return Program(tuple(instrs), program.ip_register)


def mapping_to_names(mapping: Mapping[int, Operation]) -> Dict[str, str]:
    return {str(opcode): op.value for opcode, op in sorted(mapping.items())}
