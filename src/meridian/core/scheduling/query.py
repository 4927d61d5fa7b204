"""
Query predicates over task records.

``ScheduleService.query`` and ``count`` accept a filter document in a
small Mongo-style language, evaluated in memory against the wire form of
each task (camelCase keys):

    {"appId": "web-1"}                                  equality
    {"repeat": {"$gte": 60}, "module": {"$exists": True}}
    {"$or": [{"handler": "send"}, {"onEnd": "done"}]}
    {"timetable": 1735689600}                           list contains scalar
    {"data.0": "nightly"}                               dotted path

Operators: ``$eq $ne $gt $gte $lt $lte $in $nin $exists $all $size $regex
$not`` (``$options`` alongside ``$regex``); logical ``$and $or $nor``.
An unknown operator raises :class:`~meridian.core.errors.QueryError`.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from typing import Any

from meridian.core.errors import QueryError

Predicate = Callable[[dict[str, Any]], bool]

_MISSING = object()

_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}


def compile_query(query: dict[str, Any]) -> Predicate:
    """Validate ``query`` and return a predicate over task records.

    Raises:
        QueryError: If the document is malformed or uses an unknown operator.
    """
    if not isinstance(query, dict):
        raise QueryError(f"Query must be a mapping, got {type(query).__name__}")
    _validate(query)
    return lambda doc: _match_document(doc, query)


def filter_documents(docs: Iterable[dict[str, Any]], query: dict[str, Any]) -> list[dict[str, Any]]:
    predicate = compile_query(query)
    return [doc for doc in docs if predicate(doc)]


# =============================================================================
# VALIDATION
# =============================================================================

_LOGICAL = {"$and", "$or", "$nor"}
_FIELD_OPERATORS = {
    "$eq", "$ne", "$gt", "$gte", "$lt", "$lte", "$in", "$nin",
    "$exists", "$all", "$size", "$regex", "$options", "$not",
}


def _validate(query: dict[str, Any]) -> None:
    for key, condition in query.items():
        if key.startswith("$"):
            if key not in _LOGICAL:
                raise QueryError(f"Unknown operator '{key}'")
            if not isinstance(condition, list) or not condition:
                raise QueryError(f"'{key}' expects a non-empty list of queries")
            for sub in condition:
                if not isinstance(sub, dict):
                    raise QueryError(f"'{key}' expects a list of mappings")
                _validate(sub)
        elif _is_operator_doc(condition):
            _validate_operators(condition)


def _validate_operators(condition: dict[str, Any]) -> None:
    for op, arg in condition.items():
        if op not in _FIELD_OPERATORS:
            raise QueryError(f"Unknown operator '{op}'")
        if op in ("$in", "$nin", "$all") and not isinstance(arg, list):
            raise QueryError(f"'{op}' expects a list")
        if op == "$size" and (isinstance(arg, bool) or not isinstance(arg, int)):
            raise QueryError("'$size' expects an integer")
        if op == "$options" and "$regex" not in condition:
            raise QueryError("'$options' requires '$regex'")
        if op == "$regex":
            try:
                _compile_regex(arg, condition.get("$options", ""))
            except re.error as e:
                raise QueryError(f"Invalid '$regex': {e}", cause=e) from e
        if op == "$not":
            if isinstance(arg, dict):
                _validate_operators(arg)
            elif not isinstance(arg, str):
                raise QueryError("'$not' expects an operator document or a pattern")


def _is_operator_doc(condition: Any) -> bool:
    return (
        isinstance(condition, dict)
        and bool(condition)
        and all(isinstance(k, str) and k.startswith("$") for k in condition)
    )


# =============================================================================
# EVALUATION
# =============================================================================


def _match_document(doc: dict[str, Any], query: dict[str, Any]) -> bool:
    for key, condition in query.items():
        if key == "$and":
            if not all(_match_document(doc, sub) for sub in condition):
                return False
        elif key == "$or":
            if not any(_match_document(doc, sub) for sub in condition):
                return False
        elif key == "$nor":
            if any(_match_document(doc, sub) for sub in condition):
                return False
        elif not _match_field(_resolve(doc, key), condition):
            return False
    return True


def _resolve(doc: Any, path: str) -> Any:
    current = doc
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part, _MISSING)
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else _MISSING
        else:
            return _MISSING
        if current is _MISSING:
            return _MISSING
    return current


def _match_field(value: Any, condition: Any) -> bool:
    if _is_operator_doc(condition):
        return all(
            _apply(op, value, arg, condition)
            for op, arg in condition.items()
            if op != "$options"
        )
    return _equals(value, condition)


def _equals(value: Any, expected: Any) -> bool:
    if value is _MISSING:
        return expected is None
    if value == expected:
        return True
    return isinstance(value, list) and not isinstance(expected, list) and expected in value


def _apply(op: str, value: Any, arg: Any, condition: dict[str, Any]) -> bool:
    if op == "$eq":
        return _equals(value, arg)
    if op == "$ne":
        return not _equals(value, arg)
    if op in ("$gt", "$gte", "$lt", "$lte"):
        return _compare(op, value, arg)
    if op == "$in":
        return any(_equals(value, candidate) for candidate in arg)
    if op == "$nin":
        return not any(_equals(value, candidate) for candidate in arg)
    if op == "$exists":
        return (value is not _MISSING) == bool(arg)
    if op == "$all":
        return isinstance(value, list) and all(item in value for item in arg)
    if op == "$size":
        return isinstance(value, list) and len(value) == arg
    if op == "$regex":
        pattern = _compile_regex(arg, condition.get("$options", ""))
        return _regex_match(pattern, value)
    if op == "$not":
        if isinstance(arg, dict):
            return not _match_field(value, arg)
        return not _regex_match(_compile_regex(arg, ""), value)
    raise QueryError(f"Unknown operator '{op}'")


def _compare(op: str, value: Any, arg: Any) -> bool:
    if value is _MISSING or value is None:
        return False
    if isinstance(value, list):
        return any(_compare(op, item, arg) for item in value)
    try:
        if op == "$gt":
            return value > arg
        if op == "$gte":
            return value >= arg
        if op == "$lt":
            return value < arg
        return value <= arg
    except TypeError:
        return False


def _compile_regex(pattern: Any, options: str) -> re.Pattern:
    if isinstance(pattern, re.Pattern):
        return pattern
    flags = 0
    for letter in options or "":
        flags |= _REGEX_FLAGS.get(letter, 0)
    return re.compile(str(pattern), flags)


def _regex_match(pattern: re.Pattern, value: Any) -> bool:
    if isinstance(value, list):
        return any(_regex_match(pattern, item) for item in value)
    return isinstance(value, str) and pattern.search(value) is not None


__all__ = ["Predicate", "compile_query", "filter_documents"]
