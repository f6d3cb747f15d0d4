from __future__ import annotations

import re

PRINT_CALL = "Console.WriteLine"
_ARGUMENT_PATTERN = re.compile(r"\((.*)\)")


def extract_literal_prints(source: str) -> str:
    """Approximate program output from literal print calls, one per line.

    Only the text between the first `(` and the last `)` of each matching line
    is kept, with double quotes removed. Interpolation, concatenation, variables
    and control flow are not evaluated.

    Example:
        ```python
        assert extract_literal_prints('Console.WriteLine("A");\\nConsole.WriteLine("B");') == "A\\nB"
        ```
    """
    lines: list[str] = []
    for line in source.splitlines():
        if PRINT_CALL not in line:
            continue
        match = _ARGUMENT_PATTERN.search(line)
        if match:
            lines.append(match.group(1).replace('"', ""))
    return "\n".join(lines)
