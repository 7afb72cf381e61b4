import pytest

from platform_health.exceptions import QueryRejectedError, RequestValidationError
from platform_health.health.guard import QueryGuard


@pytest.mark.parametrize(
    "query",
    [
        '*[_type == "product"][0...10]{_id, title}',
        'count(*[_type == "user"])',
        '*[_type == "license" && status == "active"]{_id}',
    ],
)
def test_reads_pass(query):
    assert QueryGuard().check(query) == query


@pytest.mark.parametrize(
    "query, reason",
    [
        ("", "non-empty"),
        ("   ", "non-empty"),
        ('delete(*[_type == "product"])', "mutation"),
        ('{"mutations": [{"delete": {"id": "x"}}]}', "mutation"),
        ("*", "whole dataset"),
        ("*{_id}", "whole dataset"),
        ("* | order(_createdAt)", "whole dataset"),
    ],
)
def test_rejections(query, reason):
    with pytest.raises(QueryRejectedError, match=reason):
        QueryGuard().check(query)


def test_length_limit():
    with pytest.raises(QueryRejectedError, match="limit is 10"):
        QueryGuard(max_length=10).check('*[_type == "product"]')


def test_rejections_are_validation_errors():
    with pytest.raises(RequestValidationError):
        QueryGuard().check(None)


def test_read_only_can_be_disabled():
    assert QueryGuard(read_only=False).check("*") == "*"
