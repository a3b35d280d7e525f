# crew_engine/validate_rules.py
# Validate every .json in the rules folder and print errors with file/line/col:
#   python -m crew_engine.validate_rules [folder]
# Exit code 2 when any file (or the assembled rule book) is invalid.

import json
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .errors import RuleTableError
from .load_rules import DEFAULT_RULES_DIR, RuleSpec, _iter_rule_objects_from_raw, build_rule_book


def _print_context(txt: str, lineno: int) -> None:
    lines = txt.splitlines()
    ln = lineno - 1
    start = max(0, ln - 2)
    end = min(len(lines), ln + 2)
    print("---- context ----")
    for i in range(start, end):
        marker = ">>" if i == ln else "  "
        print(f"{marker} {i + 1:4d}: {lines[i]}")
    print("-----------------")


def validate_json_file(p: Path, collected: dict) -> bool:
    try:
        txt = p.read_text(encoding="utf-8")
    except OSError as e:
        print(f"{p.name}: ERROR reading file: {e}")
        return False
    try:
        raw = json.loads(txt)
    except json.JSONDecodeError as e:
        print(f"{p.name}: JSON parse error: {e.msg} (line {e.lineno}, col {e.colno})")
        _print_context(txt, e.lineno)
        return False

    ok = True
    for idx, obj in enumerate(_iter_rule_objects_from_raw(raw)):
        try:
            rule = RuleSpec.model_validate(obj)
        except ValidationError as e:
            print(f"{p.name}[{idx}]: schema error:")
            for err in e.errors():
                loc = ".".join(str(x) for x in err["loc"]) or "<root>"
                print(f"    {loc}: {err['msg']}")
            ok = False
            continue
        if rule.enabled:
            collected[rule.id] = rule
    if ok:
        print(f"{p.name}: OK")
    return ok


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    rules_dir = Path(argv[0]) if argv else DEFAULT_RULES_DIR
    if not rules_dir.exists():
        print("Rules folder not found:", rules_dir.resolve())
        return 1
    files = sorted(rules_dir.glob("*.json"))
    if not files:
        print("No .json files found in:", rules_dir.resolve())
        return 0

    collected: dict = {}
    ok_count = 0
    bad_count = 0
    for f in files:
        if validate_json_file(f, collected):
            ok_count += 1
        else:
            bad_count += 1
    print(f"\nSummary: {ok_count} OK, {bad_count} INVALID ({len(files)} files checked)")

    if bad_count:
        return 2
    try:
        book = build_rule_book(collected, [f.name for f in files])
    except RuleTableError as e:
        print(f"Rule book INVALID: {e}")
        return 2
    print(f"Rule book OK: sha256 {book.provenance['ruleset_hash_sha256']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
