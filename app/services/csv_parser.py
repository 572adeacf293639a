"""
Minimal CSV tokenizer for allowlist uploads.

Supports comma separators, double-quoted fields (commas, newlines and doubled
quotes inside are literal) and any mix of CRLF/CR/LF line endings. Every
physical row is returned, blank ones included; dropping blank rows is the
caller's job.
"""

from typing import List

QUOTE = '"'
SEPARATOR = ","
NEWLINE = "\n"
CARRIAGE_RETURN = "\r"


def parse_csv(text: str) -> List[List[str]]:
    rows: List[List[str]] = []
    row: List[str] = []
    field: List[str] = []
    in_quotes = False

    i = 0
    length = len(text)
    while i < length:
        char = text[i]

        if char == CARRIAGE_RETURN:
            i += 1
            continue

        if in_quotes:
            if char == QUOTE:
                if i + 1 < length and text[i + 1] == QUOTE:
                    field.append(QUOTE)
                    i += 1
                else:
                    in_quotes = False
            else:
                field.append(char)
        elif char == QUOTE:
            in_quotes = True
        elif char == SEPARATOR:
            row.append("".join(field))
            field = []
        elif char == NEWLINE:
            row.append("".join(field))
            field = []
            rows.append(row)
            row = []
        else:
            field.append(char)

        i += 1

    # Flush the trailing row even without a terminating newline
    row.append("".join(field))
    rows.append(row)

    return rows


def is_blank_row(cells: List[str]) -> bool:
    return all(not cell or not cell.strip() for cell in cells)
