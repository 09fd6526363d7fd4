# tests/test_trace_analyse.py
from tests.helpers_imports import mod
from tests.programs import DIVISOR_COUNTING, GOLDEN


def write_trace(path, source, values=()):
    program = mod.tools_assembler.parse_program(source)
    idioms = mod.tools_optimizer.find_idioms(program)
    with mod.observe.TraceSink(path=str(path)) as sink:
        machine = mod.cpu.Machine(program, optimizations=idioms, trace_sink=sink)
        machine.run(mod.cpu.initial_state(6, values))


def test_summarise_golden_trace(tmp_path):
    path = tmp_path / "trace.jsonl"
    write_trace(path, GOLDEN)
    summary = mod.tools_trace.summarise(str(path))
    assert summary["events"] == 5
    assert summary["steps"] == 5
    assert summary["top_ops"][0] == ("seti", 3)
    assert summary["idiom_hits"] == {}


def test_analyze_prints_idiom_hits(tmp_path, capsys):
    path = tmp_path / "trace.jsonl"
    write_trace(path, DIVISOR_COUNTING, [0, 0, 1000])
    summary = mod.tools_trace.analyze(str(path), top=3)
    out = capsys.readouterr().out
    assert "Top opcodes:" in out
    assert "divisor-counting" in out
    assert summary["idiom_hits"] == {"divisor-counting": 1}
    assert len(summary["hot_ips"]) == 2
