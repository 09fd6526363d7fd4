# cli.py: command-line interface and interactive monitor for the opcode VM
# Provides commands to run, resolve, decompile and analyse programs, and to step them interactively.

import argparse
import json
import logging
import shlex
import sys
from pathlib import Path
from typing import List, Optional

# Local module imports
from opvm.core.cpu import ExecutionState, Machine, Program, initial_state
from opvm.core.observe import TraceSink
from opvm.core.registers import BOUND_IP_REGISTERS, SAMPLE_REGISTERS, format_registers, with_register
from opvm.tools.assembler import parse_program, parse_sampled_input
from opvm.tools.decompiler import decompile, render_instruction
from opvm.tools.halting import halting_values
from opvm.tools.loop_optimizer import find_idioms
from opvm.tools.resolver import OpcodeResolver, count_ambiguous_samples, mapping_to_names, translate_program
from opvm.tools.trace_analyse import analyze

logger = logging.getLogger("opvm.cli")


# -----------------------------------------------------------------------------
# Utilities
# -----------------------------------------------------------------------------

def read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def load_program(path: str) -> Program:
    return parse_program(read_text(Path(path)))


def parse_assignment(text: str):
    """'R=V' -> (R, V); integers accept 0x prefixes."""
    reg, sep, value = text.partition("=")
    if not sep:
        raise argparse.ArgumentTypeError(f"expected R=V, got {text!r}")
    try:
        return int(reg, 0), int(value, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected integers in R=V, got {text!r}") from None


def _register_count(args: argparse.Namespace, program: Program) -> int:
    if args.registers is not None:
        return args.registers
    return BOUND_IP_REGISTERS if program.ip_register is not None else SAMPLE_REGISTERS


def build_initial(args: argparse.Namespace, program: Program) -> ExecutionState:
    state = initial_state(_register_count(args, program), ip=getattr(args, "ip", 0) or 0)
    for reg, value in getattr(args, "set", None) or []:
        state.registers = with_register(state.registers, reg, value)
    return state


def _print_state(state: ExecutionState):
    print(f"IP={state.ip} REGS {format_registers(state.registers)}")


# -----------------------------------------------------------------------------
# Command handlers
# -----------------------------------------------------------------------------

def cmd_run(args: argparse.Namespace) -> int:
    program = load_program(args.program)
    idioms = find_idioms(program) if args.optimize else []

    # Trace configuration
    if args.trace_file:
        sink = TraceSink(path=args.trace_file)
        print(f"Tracing to '{args.trace_file}'")
    elif args.trace_metrics:
        # metrics are only counted while a sink is attached
        sink = TraceSink()
    else:
        sink = None

    machine = Machine(program, optimizations=idioms, max_steps=args.max_steps,
                      trace_sink=sink, verify_steps=args.verify_steps)
    try:
        final = machine.run(build_initial(args, program))
    finally:
        if sink is not None:
            sink.close()

    _print_state(final)

    if args.status:
        print(f"Steps: {final.steps}  Instructions: {len(program)}  IP register: {program.ip_register}")
        for idiom in idioms:
            print(f"Idiom: {idiom.describe()} hits={machine.metrics['idiom_hits'].get(idiom.name, 0)}")

    # Dump metrics if requested
    if args.trace_metrics:
        Path(args.trace_metrics).write_text(json.dumps(machine.metrics, indent=2), encoding="utf-8")
        print(f"Metrics saved to '{args.trace_metrics}'")
    return 0


def cmd_resolve(args: argparse.Namespace) -> int:
    samples, program = parse_sampled_input(read_text(Path(args.input)))
    print(f"Samples: {len(samples)}")
    print(f"Behaving like {args.threshold} or more operations: "
          f"{count_ambiguous_samples(samples, args.threshold)}")

    resolver = OpcodeResolver()
    resolver.observe_all(samples)
    mapping = resolver.mapping()
    for opcode, op in sorted(mapping.items()):
        print(f"  {opcode:2d}: {op}")
    if len(program):
        print(f"Program: {len(program)} instructions")

    if args.mapping_out:
        Path(args.mapping_out).write_text(json.dumps(mapping_to_names(mapping), indent=2), encoding="utf-8")
        print(f"Mapping saved to '{args.mapping_out}'")
    return 0


def cmd_execute(args: argparse.Namespace) -> int:
    samples, raw_program = parse_sampled_input(read_text(Path(args.input)))
    resolver = OpcodeResolver()
    resolver.observe_all(samples)
    program = translate_program(raw_program, resolver.mapping())
    final = Machine(program, max_steps=args.max_steps).run(build_initial(args, program))
    _print_state(final)
    return 0


def cmd_decompile(args: argparse.Namespace) -> int:
    program = load_program(args.program)
    if program.ip_register is not None:
        print(f"; ip bound to r{program.ip_register}")
    for line in decompile(program):
        print(line)
    return 0


def cmd_idioms(args: argparse.Namespace) -> int:
    program = load_program(args.program)
    found = find_idioms(program)
    if not found:
        print("No known loop idioms found.")
    for idiom in found:
        print(idiom.describe())
    return 0


def cmd_halts(args: argparse.Namespace) -> int:
    program = load_program(args.program)
    idioms = find_idioms(program) if args.optimize else []
    values = halting_values(program, args.watch_ip, args.register,
                            initial=build_initial(args, program),
                            optimizations=idioms, max_steps=args.max_steps)
    if not values:
        print(f"Address {args.watch_ip} never reached.")
        return 1
    print(f"Distinct values of r{args.register} at ip {args.watch_ip}: {len(values)}")
    print(f"First (fewest steps): {values[0]}")
    print(f"Last (most steps): {values[-1]}")
    return 0


def cmd_tracestats(args: argparse.Namespace) -> int:
    analyze(args.trace, top=args.top)
    return 0


# -----------------------------------------------------------------------------
# Monitor (interactive)
# -----------------------------------------------------------------------------

class Monitor:
    """Interactive monitor: step/run, breakpoints, inspect and set registers."""

    def __init__(self, program: Program, state: ExecutionState, optimize: bool = False,
                 trace_sink: Optional[TraceSink] = None, run_limit: Optional[int] = None):
        self.program = program
        self.run_limit = run_limit or 1000000
        idioms = find_idioms(program) if optimize else []
        self.machine = Machine(program, optimizations=idioms, trace_sink=trace_sink)
        self.initial = state.copy()
        self.state = state.copy()
        self.breakpoints = set()
        self.trace: bool = False

    def prompt(self):
        return f"vm@{self.state.ip:03d}> "

    @property
    def halted(self) -> bool:
        return not (0 <= self.state.ip < len(self.program))

    def print_regs(self):
        print(f"ip={self.state.ip} steps={self.state.steps} regs={format_registers(self.state.registers)}")

    def disasm_one(self, ip: int) -> str:
        if not (0 <= ip < len(self.program)):
            return f"{ip:03d}: <end>"
        mark = "*" if ip in self.breakpoints else " "
        instr = self.program.instructions[ip]
        return f"{ip:03d}:{mark} {str(instr):<16} {render_instruction(instr, self.program.ip_register)}"

    def do_disasm(self, args: List[str]):
        addr = int(args[0], 0) if args else self.state.ip
        count = int(args[1], 0) if len(args) > 1 else 8
        for i in range(count):
            if addr + i >= len(self.program):
                break
            print(self.disasm_one(addr + i))

    def _advance(self):
        ip = self.state.ip
        if self.trace:
            print(self.disasm_one(ip))
        self.machine.advance(self.state)

    def do_step(self, args: List[str]):
        n = int(args[0], 0) if args else 1
        for _ in range(n):
            if self.halted:
                print(f"Program ended at ip={self.state.ip}.")
                return
            self._advance()
        self.print_regs()

    def do_run(self, args: List[str]):
        max_steps = int(args[0], 0) if args else self.run_limit
        steps = 0
        while not self.halted and steps < max_steps:
            self._advance()
            steps += 1
            if self.state.ip in self.breakpoints:
                print(f"Breakpoint at {self.state.ip}.")
                break
        print(f"Run finished after {steps} steps. IP={self.state.ip}")
        self.print_regs()

    def do_break(self, args: List[str]):
        if not args:
            print("Breakpoints:", sorted(self.breakpoints) or "none")
            return
        addr = int(args[0], 0)
        if addr in self.breakpoints:
            self.breakpoints.discard(addr)
            print(f"Breakpoint {addr} cleared")
        else:
            self.breakpoints.add(addr)
            print(f"Breakpoint {addr} set")

    def do_set(self, args: List[str]):
        if len(args) < 2:
            print("set <register> <value>   (register 'ip' moves the instruction pointer)")
            return
        value = int(args[1], 0)
        if args[0] == "ip":
            self.state.ip = value
        else:
            self.state.registers = with_register(self.state.registers, int(args[0], 0), value)
        self.print_regs()

    def do_regs(self, args: List[str]):
        self.print_regs()

    def do_reset(self, args: List[str]):
        self.state = self.initial.copy()
        print("State reset.")
        self.print_regs()

    def do_trace(self, args: List[str]):
        self.trace = not self.trace
        print(f"Trace {'ON' if self.trace else 'OFF'}")

    def do_idioms(self, args: List[str]):
        idioms = self.machine.idioms
        if not idioms:
            print("No idioms active.")
        for idiom in idioms:
            print(idiom.describe())

    def loop(self):
        print("Interactive monitor. Type 'help' for commands. Ctrl-D to exit.")
        while True:
            try:
                line = input(self.prompt())
            except EOFError:
                print()
                break
            if not line.strip():
                continue
            parts = shlex.split(line)
            cmd, *args = parts
            if cmd in ("quit", "exit"):
                break
            elif cmd == "help":
                print("""
Commands:
  step [n]                 Execute n instructions (an active idiom counts as one).
  run [max_steps]          Run until the program ends, a breakpoint or max steps.
  break [addr]             Toggle a breakpoint; without addr list them.
  regs                     Show ip, step count and registers.
  set <reg|ip> <value>     Set a register or the instruction pointer.
  disasm [addr] [count]    Disassemble from addr (default: current ip).
  trace                    Toggle printing each executed instruction.
  idioms                   List active loop idioms.
  reset                    Return to the initial state.
  help, exit, quit         Show help / exit.
                """)
            else:
                fn = getattr(self, f"do_{cmd}", None)
                if fn:
                    try:
                        fn(args)
                    except Exception as e:
                        print(f"Error: {e}")
                else:
                    print(f"Unknown command: {cmd}. Type 'help'.")


def cmd_monitor(args: argparse.Namespace) -> int:
    program = load_program(args.program)

    # Trace configuration for monitor
    sink = None
    if getattr(args, "trace_file", None):
        sink = TraceSink(path=str(Path(args.trace_file)))
        print(f"Tracing to '{args.trace_file}'")

    mon = Monitor(program, build_initial(args, program), optimize=args.optimize, trace_sink=sink,
                  run_limit=args.max_steps)
    try:
        mon.loop()
    finally:
        if sink is not None:
            sink.close()
    return 0


# -----------------------------------------------------------------------------
# Argument parsing
# -----------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Register-machine opcode VM CLI / Monitor")
    p.add_argument("--log-level", default="warning",
                   choices=["debug", "info", "warning", "error"], help="Logging level")
    sub = p.add_subparsers(dest="cmd", required=True)

    # initial state common options
    def add_state_opts(prs: argparse.ArgumentParser):
        prs.add_argument("--registers", type=int, help="Register count (default 6 with #ip, else 4)")
        prs.add_argument("--set", type=parse_assignment, action="append", metavar="R=V",
                         help="Initial register value (repeatable)")
        prs.add_argument("--max-steps", type=int, help="Abort after this many steps")

    # run
    pr = sub.add_parser("run", help="Run a program until the IP leaves it")
    pr.add_argument("program", help="Program source file")
    add_state_opts(pr)
    pr.add_argument("--ip", type=int, default=0, help="Start address")
    pr.add_argument("--optimize", action="store_true", help="Replace known loop idioms by closed forms")
    pr.add_argument("--verify-steps", type=int,
                    help="Check each idiom against the plain loop on first entry (step budget)")
    pr.add_argument("--status", action="store_true", help="Print step count and idiom hits after run")
    pr.add_argument("--trace-file", help="Write JSONL trace to file")
    pr.add_argument("--trace-metrics", help="Write metrics JSON to file")

    # resolve
    ps = sub.add_parser("resolve", help="Deduce opcode numbers from Before/After samples")
    ps.add_argument("input", help="Samples file (optionally followed by a numeric program)")
    ps.add_argument("--threshold", type=int, default=3, help="Report samples matching this many operations")
    ps.add_argument("--mapping-out", help="Write opcode -> mnemonic JSON to file")

    # execute
    pe = sub.add_parser("execute", help="Resolve opcodes from samples, then run the trailing program")
    pe.add_argument("input", help="Samples followed by a numeric program")
    add_state_opts(pe)

    # decompile
    pd = sub.add_parser("decompile", help="Print a program as assignment pseudo-code")
    pd.add_argument("program", help="Program source file")

    # idioms
    pi = sub.add_parser("idioms", help="List loop idioms the optimizer recognises")
    pi.add_argument("program", help="Program source file")

    # halts
    ph = sub.add_parser("halts", help="Values of a register at an address, up to the first repeat")
    ph.add_argument("program", help="Program source file")
    ph.add_argument("--watch-ip", type=int, required=True, help="Address to watch")
    ph.add_argument("--register", type=int, required=True, help="Register to record")
    ph.add_argument("--optimize", action="store_true", help="Replace known loop idioms by closed forms")
    add_state_opts(ph)

    # tracestats
    pt = sub.add_parser("tracestats", help="Summarise a JSONL trace file")
    pt.add_argument("trace", help="Trace file written by --trace-file")
    pt.add_argument("--top", type=int, default=10, help="Entries per ranking")

    # monitor
    pm = sub.add_parser("monitor", help="Interactive monitor for stepping and inspecting")
    pm.add_argument("program", help="Program source file")
    add_state_opts(pm)
    pm.add_argument("--optimize", action="store_true", help="Replace known loop idioms by closed forms")
    pm.add_argument("--trace-file", help="Write JSONL trace to file")

    return p


# -----------------------------------------------------------------------------
# Main
# -----------------------------------------------------------------------------

COMMANDS = {
    "run": cmd_run,
    "resolve": cmd_resolve,
    "execute": cmd_execute,
    "decompile": cmd_decompile,
    "idioms": cmd_idioms,
    "halts": cmd_halts,
    "tracestats": cmd_tracestats,
    "monitor": cmd_monitor,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper()),
                        format="%(levelname)s %(name)s: %(message)s")

    handler = COMMANDS.get(args.cmd)
    if handler is None:
        parser.error("Unknown command")
        return 2
    logger.debug("command %s", args.cmd)
    return handler(args)


if __name__ == "__main__":
    sys.exit(main())
