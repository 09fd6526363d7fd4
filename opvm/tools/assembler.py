# assembler.py: text front-end for programs ("#ip N" + instruction lines) and opcode samples
from typing import Iterable, List, Optional, Tuple, Union

from ..core.cpu import Program
from ..core.errors import ParseError
from ..core.opcodes import Instruction, RawInstruction, Sample, decode_mnemonic

IP_DIRECTIVE = "#ip"
BEFORE_PREFIX = "Before:"
AFTER_PREFIX = "After:"


def _lines(source: Union[str, Iterable[str]]) -> List[str]:
    if isinstance(source, str):
        return source.splitlines()
    return [line.rstrip("\n") for line in source]


def _strip_inline_comments(line: str) -> str:
    p = line.find(";")
    return line if p == -1 else line[:p]


def _parse_int(tok: str, lineno: Optional[int]) -> int:
    tok = tok.strip()
    try:
        if tok.lower().startswith(("0x", "-0x")):
            return int(tok, 16)
        return int(tok)
    except ValueError:
        raise ParseError(f"Expected an integer, got {tok!r}", lineno) from None


def parse_instruction(line: str, lineno: Optional[int] = None) -> Union[Instruction, RawInstruction]:
    """
    Parse '<mnemonic> a b c' into an Instruction, or '<opcode> a b c' into a
    RawInstruction when the first token is a number.
    """
    toks = _strip_inline_comments(line).split()
    if len(toks) != 4:
        raise ParseError(f"Instruction needs an operation and three operands: {line.strip()!r}", lineno)
    head, a, b, c = toks
    a, b, c = (_parse_int(t, lineno) for t in (a, b, c))
    try:
        return Instruction(decode_mnemonic(head), a, b, c)
    except KeyError:
        pass
    try:
        opcode = _parse_int(head, lineno)
    except ParseError:
        raise ParseError(f"Unknown operation: {head}", lineno) from None
    if opcode < 0:
        raise ParseError(f"Negative opcode: {opcode}", lineno)
    return RawInstruction(opcode, a, b, c)


class ProgramAssembler:
    """
    Single-pass reader for program text:
        #ip 3          (optional, before any instruction)
        addi 3 16 3
        seti 1 3 4     ; comments after ';' are ignored
    Lines starting with '#' other than the directive are comments.
    """

    def __init__(self, source: Union[str, Iterable[str]]):
        self.lines = _lines(source)
        self.ip_register: Optional[int] = None
        self.instructions: List[Union[Instruction, RawInstruction]] = []

    def _directive(self, line: str, lineno: int):
        toks = line.split()
        if len(toks) != 2:
            raise ParseError(f"#ip syntax: '#ip <register>', got {line!r}", lineno)
        if self.instructions:
            raise ParseError("#ip must precede all instructions", lineno)
        if self.ip_register is not None:
            raise ParseError("Duplicate #ip directive", lineno)
        reg = _parse_int(toks[1], lineno)
        if reg < 0:
            raise ParseError(f"Negative IP register: {reg}", lineno)
        self.ip_register = reg

    def assemble(self) -> Program:
        kinds = set()
        for lineno, raw in enumerate(self.lines, start=1):
            line = _strip_inline_comments(raw).strip()
            if not line:
                continue
            if line.startswith(IP_DIRECTIVE):
                self._directive(line, lineno)
                continue
            if line.startswith("#"):
                continue
            instr = parse_instruction(line, lineno)
            kinds.add(type(instr))
            if len(kinds) > 1:
                raise ParseError("Program mixes mnemonic and numeric opcodes", lineno)
            self.instructions.append(instr)
        return Program(tuple(self.instructions), self.ip_register)


def parse_program(source: Union[str, Iterable[str]]) -> Program:
    return ProgramAssembler(source).assemble()


# -----------------------------------------------------------------------------
# Samples
# -----------------------------------------------------------------------------

def parse_registers(line: str, prefix: str, lineno: Optional[int] = None) -> Tuple[int, ...]:
    """Parse 'Before: [3, 2, 1, 1]' (or 'After:') into a register tuple."""
    line = line.strip()
    if not line.startswith(prefix):
        raise ParseError(f"Expected '{prefix} [..]', got {line!r}", lineno)
    body = line[len(prefix):].strip()
    if not (body.startswith("[") and body.endswith("]")):
        raise ParseError(f"Register list must be bracketed: {body!r}", lineno)
    inner = body[1:-1].strip()
    if not inner:
        raise ParseError("Empty register list", lineno)
    return tuple(_parse_int(tok, lineno) for tok in inner.split(","))


def parse_samples(source: Union[str, Iterable[str]]) -> List[Sample]:
    """Parse 'Before:' / instruction / 'After:' groups separated by blank lines."""
    numbered = [(n, l.strip()) for n, l in enumerate(_lines(source), start=1) if l.strip()]
    samples: List[Sample] = []
    if len(numbered) % 3:
        lineno = numbered[-(len(numbered) % 3)][0]
        raise ParseError("Incomplete sample (need Before, instruction and After lines)", lineno)
    for i in range(0, len(numbered), 3):
        (n1, before_line), (n2, instr_line), (n3, after_line) = numbered[i:i + 3]
        before = parse_registers(before_line, BEFORE_PREFIX, n1)
        instr = parse_instruction(instr_line, n2)
        if not isinstance(instr, RawInstruction):
            raise ParseError("Sample instruction must use a numeric opcode", n2)
        after = parse_registers(after_line, AFTER_PREFIX, n3)
        if len(before) != len(after):
            raise ParseError(f"Before has {len(before)} registers but After has {len(after)}", n3)
        samples.append(Sample(before, instr, after))
    return samples


def parse_sampled_input(source: Union[str, Iterable[str]]) -> Tuple[List[Sample], Program]:
    """
    Split input holding a sample section followed by an unresolved program.
    Everything up to the last 'After:' line is samples; the rest is the program.
    """
    lines = _lines(source)
    last_after = -1
    for idx, line in enumerate(lines):
        if line.strip().startswith(AFTER_PREFIX):
            last_after = idx
    samples = parse_samples(lines[:last_after + 1])
    # blank out the sample section so program errors keep the input's line numbers
    program = ProgramAssembler([""] * (last_after + 1) + lines[last_after + 1:])
    return samples, program.assemble()
