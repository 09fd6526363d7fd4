# observe.py: JSONL trace sink and run metrics for the machine
import json
from typing import Optional, Dict, Any


class TraceSink:
    """Simple sink that appends JSON lines to a file path or a list-like collector."""
    def __init__(self, path: Optional[str] = None, collector: Optional[list] = None):
        self.path = path
        self.collector = collector
        self._fh = None

    def emit(self, event: Dict[str, Any]):
        if self.path:
            if self._fh is None:
                self._fh = open(self.path, "a", encoding="utf-8")
            self._fh.write(json.dumps(event, separators=(",", ":")) + "\n")
        elif self.collector is not None:
            self.collector.append(event)

    def close(self):
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


def new_metrics() -> Dict[str, Any]:
    return {
        "instr_count": 0,
        "by_opcode": {},        # mnemonic -> count
        "by_ip": {},            # address -> count (hot spots)
        "idiom_hits": {},       # idiom name -> count
        "probe_hits": 0,
    }
