# tests/test_runner.py
import json

import pytest
from tests.helpers_imports import mod
from tests.programs import DIVISOR_SUM, GOLDEN

cpu = mod.cpu
Op = mod.opcodes.Operation
Instruction = mod.opcodes.Instruction


def golden():
    return mod.tools_assembler.parse_program(GOLDEN)


def test_golden_program_six_registers():
    final = cpu.run(golden())
    assert final.ip == 7
    assert final.registers == (6, 5, 6, 0, 0, 9)
    assert final.steps == 5


def test_golden_program_five_registers_fails_on_last_instruction():
    with pytest.raises(mod.errors.RegisterOutOfBounds) as exc:
        cpu.run(golden(), register_count=5)
    assert exc.value.index == 5


def test_run_does_not_touch_initial_state():
    initial = cpu.initial_state(6)
    final = cpu.Machine(golden()).run(initial)
    assert initial.ip == 0 and initial.registers == (0,) * 6 and initial.steps == 0
    assert final is not initial


def test_program_without_ip_register_runs_straight_line():
    program = cpu.Program((
        Instruction(Op.SET_IMMEDIATE, 7, 0, 0),
        Instruction(Op.ADD_IMMEDIATE, 0, 1, 1),
    ))
    final = cpu.run(program)
    assert final.ip == 2
    assert final.registers == (7, 8, 0, 0)


def test_ip_register_mirrors_instruction_pointer():
    # r0 is bound: 'setr 0 0 1' copies the current address into r1
    program = mod.tools_assembler.parse_program("#ip 0\nseti 0 0 2\nsetr 0 0 1\n")
    final = cpu.run(program)
    assert final.registers[1] == 1
    assert final.registers[0] == 1


def test_jump_out_of_program_terminates():
    # negative target ends the run too
    program = mod.tools_assembler.parse_program("#ip 1\nseti -5 0 1\nseti 9 0 0\n")
    final = cpu.run(program)
    assert final.ip == -4
    assert final.registers[0] == 0


def test_ip_register_must_fit_register_file():
    program = mod.tools_assembler.parse_program("#ip 7\nseti 0 0 0\n")
    with pytest.raises(mod.errors.RegisterOutOfBounds):
        cpu.run(program)


def test_unresolved_program_is_refused():
    program = mod.tools_assembler.parse_program("9 2 1 2\n")
    with pytest.raises(mod.errors.UnresolvedProgram):
        cpu.Machine(program)


def test_step_limit():
    program = mod.tools_assembler.parse_program("#ip 0\nseti -1 0 0\n")
    with pytest.raises(mod.errors.StepLimitExceeded) as exc:
        cpu.run(program, max_steps=10)
    assert exc.value.steps == 10
    assert exc.value.ip == 0


def test_probe_stops_run():
    machine = cpu.Machine(golden())
    seen = []

    def probe(state):
        seen.append(state.registers)
        return True

    machine.add_probe(4, probe)
    final = machine.run(cpu.initial_state(6))
    assert machine.stopped_at == 4
    assert final.ip == 4
    assert seen == [(3, 5, 6, 0, 0, 0)]


def test_probe_returning_false_keeps_running():
    machine = cpu.Machine(golden())
    hits = []
    machine.add_probe(2, lambda st: hits.append(st.ip))
    final = machine.run(cpu.initial_state(6))
    assert hits == [2]
    assert machine.stopped_at is None
    assert final.ip == 7
    assert machine.metrics["probe_hits"] == 1


def test_trace_collector_and_metrics():
    buf = []
    machine = cpu.Machine(golden(), trace_sink=mod.observe.TraceSink(collector=buf))
    machine.run(cpu.initial_state(6))
    assert [ev["ip"] for ev in buf] == [0, 1, 2, 4, 6]
    assert [ev["op_name"] for ev in buf] == ["seti", "seti", "addi", "setr", "seti"]
    assert buf[2]["next_ip"] == 4
    assert buf[-1]["registers"] == [6, 5, 6, 0, 0, 9]
    assert not any(ev["idiom"] for ev in buf)

    m = machine.metrics
    assert m["instr_count"] == 5
    assert m["by_opcode"] == {"seti": 3, "addi": 1, "setr": 1}
    assert m["by_ip"] == {0: 1, 1: 1, 2: 1, 4: 1, 6: 1}


def test_trace_file(tmp_path):
    path = tmp_path / "trace.jsonl"
    machine = cpu.Machine(golden())
    with mod.observe.TraceSink(path=str(path)) as sink:
        machine.set_trace_sink(sink)
        machine.run(cpu.initial_state(6))
    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 5
    first = json.loads(lines[0])
    assert first["op_name"] == "seti" and first["c"] == 1 and first["step"] == 1


def test_bare_sink_counts_metrics_only():
    machine = cpu.Machine(golden(), trace_sink=mod.observe.TraceSink())
    machine.run(cpu.initial_state(6))
    assert machine.metrics["by_opcode"]["seti"] == 3


def test_patched_program_is_a_copy():
    program = golden()
    patched = program.patched(6, Instruction(Op.SET_IMMEDIATE, 1, 0, 5))
    assert str(program.instructions[6]) == "seti 9 0 5"
    assert cpu.run(patched).registers[5] == 1
    with pytest.raises(IndexError):
        program.patched(7, Instruction(Op.SET_IMMEDIATE, 1, 0, 5))


def test_hook_inside_idiom_is_refused():
    program = mod.tools_assembler.parse_program(DIVISOR_SUM)
    idiom = mod.tools_optimizer.find_idioms(program)[0]
    machine = cpu.Machine(program, optimizations=[idiom])
    with pytest.raises(mod.errors.OptimizationError):
        machine.add_probe(7, lambda st: False)
    # the idiom's own start address is still observable
    machine.add_probe(3, lambda st: False)

    other = cpu.Machine(program)
    other.add_probe(7, lambda st: False)
    with pytest.raises(mod.errors.OptimizationError):
        other.add_idiom(idiom)
