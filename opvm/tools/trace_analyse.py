# trace_analyse.py: summarise a JSONL trace written by the machine's TraceSink
import json
import sys
from collections import Counter
from typing import Any, Dict


def summarise(path: str, top: int = 10) -> Dict[str, Any]:
    ops = Counter()
    ips = Counter()
    idioms = Counter()
    events = 0
    last_step = 0

    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            ev = json.loads(line)
            events += 1
            ops[ev.get("op_name", "?")] += 1
            ips[ev.get("ip", -1)] += 1
            if ev.get("idiom"):
                idioms[ev.get("op_name", "?")] += 1
            last_step = max(last_step, ev.get("step", 0))

    return {
        "events": events,
        "steps": last_step,
        "top_ops": ops.most_common(top),
        "hot_ips": ips.most_common(top),
        "idiom_hits": dict(idioms),
    }


def analyze(path: str, top: int = 10) -> Dict[str, Any]:
    summary = summarise(path, top)
    print("Events:", summary["events"], " Steps:", summary["steps"])
    print("Top opcodes:", summary["top_ops"])
    print("Hot addresses:", summary["hot_ips"])
    print("Idiom hits:", summary["idiom_hits"])
    return summary


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python -m opvm.tools.trace_analyse <trace.jsonl>")
        sys.exit(2)
    analyze(sys.argv[1])
