from __future__ import annotations

"""Redaction utility.

CONTRACT
- Inputs: text strings, optional literal secret values
- Outputs:
  - redacted text string
- Invariants:
  - Replaces every registered credential value with [REDACTED]
  - Replaces known token shapes (GitHub, Sonar, Codecov-ish) with [REDACTED]
- Failure:
  - None (returns original text when nothing matches)
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

REDACTED = "[REDACTED]"

DEFAULT_PATTERNS = [
    re.compile(r"ghp_[A-Za-z0-9]{20,}"),
    re.compile(r"ghs_[A-Za-z0-9]{20,}"),
    re.compile(r"github_pat_[A-Za-z0-9_]{20,}"),
    re.compile(r"sq[apu]_[A-Fa-f0-9]{40}"),
]

# Values shorter than this are too likely to collide with ordinary output.
_MIN_SECRET_LEN = 4


@dataclass(frozen=True)
class Redactor:
    patterns: list[re.Pattern] = field(default_factory=lambda: list(DEFAULT_PATTERNS))
    secrets: tuple[str, ...] = ()

    def with_secrets(self, values: Iterable[str]) -> Redactor:
        merged = set(self.secrets)
        merged.update(v for v in values if v and len(v) >= _MIN_SECRET_LEN)
        # Longest first so a secret containing another is replaced whole.
        ordered = tuple(sorted(merged, key=len, reverse=True))
        return Redactor(patterns=self.patterns, secrets=ordered)

    def redact(self, text: str) -> str:
        out = text
        for value in self.secrets:
            out = out.replace(value, REDACTED)
        for pat in self.patterns:
            out = pat.sub(REDACTED, out)
        return out

    def redact_value(self, value: object) -> object:
        if isinstance(value, str):
            return self.redact(value)
        if isinstance(value, dict):
            return {k: self.redact_value(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.redact_value(v) for v in value]
        return value


if __name__ == "__main__":
    import argparse
    import sys

    parser = argparse.ArgumentParser(description="Redact secrets from text")
    parser.add_argument("--text", help="Text to redact")
    parser.add_argument("--file", help="File to read and redact")
    parser.add_argument("--secret", action="append", default=[], help="Literal value to redact")
    args = parser.parse_args()

    r = Redactor().with_secrets(args.secret)
    if args.text:
        print(r.redact(args.text))
    elif args.file:
        try:
            content = Path(args.file).read_text(encoding="utf-8")
        except OSError as e:
            print(f"Error reading file: {e}", file=sys.stderr)
            sys.exit(1)
        print(r.redact(content))
    else:
        parser.print_help()
        sys.exit(1)
