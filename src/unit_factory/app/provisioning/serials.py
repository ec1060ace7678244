"""Serial number formatting and parsing.

Canonical form: ``{PREFIX}-{PRODUCT_CODE}-{SEQ}``, e.g. ``SV-TURNTABLE-00001``.
SEQ is zero-padded to the configured width; sequences that outgrow the width
are written in full. Product codes may themselves contain ``-``, so parsing
splits on the first and last separator only.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..settings import DEFAULT_SERIAL_PAD_WIDTH, DEFAULT_SERIAL_PREFIX

SEPARATOR = '-'


@dataclass(frozen=True, slots=True)
class SerialIdFormatter:
    prefix: str = DEFAULT_SERIAL_PREFIX
    pad_width: int = DEFAULT_SERIAL_PAD_WIDTH

    def format(self, product_code: str, sequence: int) -> str:
        if sequence < 1:
            raise ValueError('sequence must be >= 1')
        if not product_code or product_code != product_code.strip():
            raise ValueError('product_code must be non-empty without surrounding whitespace')
        return f'{self.prefix}{SEPARATOR}{product_code}{SEPARATOR}{sequence:0{self.pad_width}d}'

    def parse(self, serial: str) -> tuple[str, int]:
        """Inverse of :meth:`format`. Raises ValueError on foreign serials."""
        head, sep, seq_text = serial.rpartition(SEPARATOR)
        prefix, sep2, product_code = head.partition(SEPARATOR)
        if not sep or not sep2 or prefix != self.prefix or not product_code:
            raise ValueError(f'not a {self.prefix} serial: {serial!r}')
        if not (seq_text.isascii() and seq_text.isdigit()) or len(seq_text) < self.pad_width:
            raise ValueError(f'malformed sequence in serial: {serial!r}')
        sequence = int(seq_text)
        if sequence < 1:
            raise ValueError(f'malformed sequence in serial: {serial!r}')
        return product_code, sequence

    def search_pattern(self, product_code: str) -> str:
        """LIKE pattern matching every serial issued for ``product_code``."""
        return f'{self.prefix}{SEPARATOR}{product_code}{SEPARATOR}%'


_default = SerialIdFormatter()


def format_serial(product_code: str, sequence: int) -> str:
    return _default.format(product_code, sequence)


def parse_serial(serial: str) -> tuple[str, int]:
    return _default.parse(serial)
