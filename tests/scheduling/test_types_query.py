"""Tests for ScheduleTask wire form and query predicates."""

import pytest

from meridian.core.errors import QueryError
from meridian.core.scheduling import ScheduleTask, compile_query, filter_documents


class TestScheduleTask:
    """Wire form is camelCase with None fields omitted."""

    def test_to_dict(self):
        task = ScheduleTask(task_id="abc", app_id="web-1", start=10, repeat=60, on_end="done")
        assert task.to_dict() == {
            "taskId": "abc",
            "appId": "web-1",
            "start": 10,
            "repeat": 60,
            "onEnd": "done",
            "data": [],
        }

    def test_from_dict_accepts_both_key_styles(self):
        camel = ScheduleTask.from_dict({"taskId": "a", "appId": "w", "onEnd": "x"})
        snake = ScheduleTask.from_dict({"task_id": "a", "app_id": "w", "on_end": "x"})
        assert camel == snake

    def test_from_dict_sorts_timetable(self):
        task = ScheduleTask.from_dict({"taskId": "a", "appId": "w", "timetable": [30, 10, 20]})
        assert task.timetable == [10, 20, 30]

    def test_from_dict_requires_ids(self):
        with pytest.raises(ValueError):
            ScheduleTask.from_dict({"taskId": "a"})

    def test_null_data_becomes_empty(self):
        assert ScheduleTask.from_dict({"taskId": "a", "appId": "w", "data": None}).data == []

    def test_coerce_copies(self):
        task = ScheduleTask(task_id="a", app_id="w", timetable=[1], data=[{"k": 1}])
        copied = ScheduleTask.coerce(task)
        copied.timetable.append(2)
        copied.data[0]["k"] = 2
        assert task.timetable == [1]
        assert task.data == [{"k": 1}]


DOCS = [
    {"taskId": "a", "appId": "web-1", "start": 100, "repeat": 60, "module": "mailer",
     "handler": "send", "data": ["nightly", {"to": "ops"}]},
    {"taskId": "b", "appId": "web-2", "start": 200, "timetable": [300, 400], "data": []},
    {"taskId": "c", "appId": "web-1", "start": 300, "onEnd": "cleanup", "data": ["weekly"]},
]


def ids(query):
    return [doc["taskId"] for doc in filter_documents(DOCS, query)]


class TestQuery:
    """Mongo-style filter documents."""

    def test_equality(self):
        assert ids({"appId": "web-1"}) == ["a", "c"]

    def test_empty_query_matches_all(self):
        assert ids({}) == ["a", "b", "c"]

    def test_comparisons(self):
        assert ids({"start": {"$gt": 100}}) == ["b", "c"]
        assert ids({"start": {"$gte": 100, "$lt": 300}}) == ["a", "b"]
        assert ids({"start": {"$lte": 100}}) == ["a"]
        assert ids({"start": {"$ne": 200}}) == ["a", "c"]

    def test_in_and_nin(self):
        assert ids({"appId": {"$in": ["web-2", "web-9"]}}) == ["b"]
        assert ids({"appId": {"$nin": ["web-2"]}}) == ["a", "c"]

    def test_exists(self):
        assert ids({"repeat": {"$exists": True}}) == ["a"]
        assert ids({"onEnd": {"$exists": False}}) == ["a", "b"]

    def test_missing_field_equals_none(self):
        assert ids({"repeat": None}) == ["b", "c"]

    def test_list_contains_scalar(self):
        assert ids({"timetable": 400}) == ["b"]
        assert ids({"timetable": {"$gt": 350}}) == ["b"]

    def test_all_and_size(self):
        assert ids({"timetable": {"$all": [300, 400]}}) == ["b"]
        assert ids({"data": {"$size": 0}}) == ["b"]

    def test_dotted_paths(self):
        assert ids({"data.0": "nightly"}) == ["a"]
        assert ids({"data.1.to": "ops"}) == ["a"]
        assert ids({"data.5": {"$exists": True}}) == []

    def test_regex(self):
        assert ids({"data": {"$regex": "^week"}}) == ["c"]
        assert ids({"handler": {"$regex": "SEND", "$options": "i"}}) == ["a"]

    def test_not(self):
        assert ids({"start": {"$not": {"$gt": 100}}}) == ["a"]
        assert ids({"appId": {"$not": "web-1"}}) == ["b"]

    def test_logical(self):
        assert ids({"$or": [{"appId": "web-2"}, {"onEnd": "cleanup"}]}) == ["b", "c"]
        assert ids({"$and": [{"appId": "web-1"}, {"start": {"$gt": 100}}]}) == ["c"]
        assert ids({"$nor": [{"appId": "web-1"}]}) == ["b"]

    @pytest.mark.parametrize(
        "query",
        [
            {"start": {"$between": [1, 2]}},
            {"$xor": [{"a": 1}]},
            {"$or": []},
            {"$or": [1]},
            {"appId": {"$in": "web-1"}},
            {"data": {"$size": "1"}},
            {"handler": {"$options": "i"}},
            {"handler": {"$regex": "("}},
            {"start": {"$not": 5}},
        ],
    )
    def test_invalid_queries(self, query):
        with pytest.raises(QueryError):
            compile_query(query)

    def test_query_must_be_mapping(self):
        with pytest.raises(QueryError):
            compile_query(["appId"])
