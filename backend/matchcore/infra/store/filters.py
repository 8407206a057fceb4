"""Filter and ordering predicates shared by every store transport."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

OPS = frozenset({"eq", "neq", "gt", "gte", "lt", "lte", "in", "not_in", "contains", "is"})

_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def check_identifier(name: str) -> str:
	"""Reject anything that is not a plain column, table or function name."""

	if not isinstance(name, str) or not _IDENT.match(name):
		raise ValueError(f"invalid identifier: {name!r}")
	return name


@dataclass(frozen=True, slots=True)
class Filter:
	column: str
	op: str
	value: Any

	def __post_init__(self) -> None:
		check_identifier(self.column)
		if self.op not in OPS:
			raise ValueError(f"unsupported filter op: {self.op}")
		if self.op in ("in", "not_in") and isinstance(self.value, (str, bytes)):
			raise ValueError(f"{self.op} filter expects a sequence")
		if self.op == "is" and self.value not in (None, True, False):
			raise ValueError("is filter expects None, True or False")


@dataclass(frozen=True, slots=True)
class Order:
	column: str
	descending: bool = False
	nulls_last: bool = True

	def __post_init__(self) -> None:
		check_identifier(self.column)
