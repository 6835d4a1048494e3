"""
Unit tests for the response equivalence oracle.
"""

import pytest

from squash.comparator import ResponseComparator
from squash.models import ResponseSnapshot

from fakes import make_response


@pytest.fixture
def comparator():
    return ResponseComparator()


def sig(comparator, **kwargs):
    return comparator.signature(make_response(**kwargs))


class TestBasicRules:
    def test_identical_responses_are_equivalent(self, comparator):
        assert comparator.equivalent(sig(comparator), sig(comparator))

    def test_status_code_mismatch(self, comparator):
        assert not comparator.equivalent(sig(comparator), sig(comparator, status=403))

    def test_content_type_mismatch(self, comparator):
        assert not comparator.equivalent(sig(comparator), sig(comparator, content_type="text/html"))

    def test_content_length_absence_must_match(self, comparator):
        base = sig(comparator)
        without = comparator.signature(ResponseSnapshot(status_code=200, headers={"content-type": "text/plain"}, body=b"ok"))
        assert base.content_length == "2"
        assert without.content_length is None
        assert not comparator.equivalent(base, without)

    def test_body_length_mismatch(self, comparator):
        base = sig(comparator, body=b"ok", headers={"content-length": "10"})
        cand = sig(comparator, body=b"okay", headers={"content-length": "10"})
        assert not comparator.equivalent(base, cand)

    def test_same_length_different_text_body_is_equivalent(self, comparator):
        assert comparator.equivalent(sig(comparator, body=b"abc"), sig(comparator, body=b"xyz"))


class TestLocationRule:
    def test_candidate_gains_location(self, comparator):
        base = sig(comparator, status=302)
        cand = sig(comparator, status=302, headers={"location": "/login"})
        assert not comparator.equivalent(base, cand)

    def test_different_locations(self, comparator):
        base = sig(comparator, status=302, headers={"location": "/home"})
        cand = sig(comparator, status=302, headers={"location": "/login"})
        assert not comparator.equivalent(base, cand)

    def test_empty_location_counts_as_absent(self, comparator):
        base = sig(comparator, status=302, headers={"location": ""})
        cand = sig(comparator, status=302)
        assert comparator.equivalent(base, cand)


class TestJsonRule:
    def test_same_keys_different_values(self, comparator):
        base = sig(comparator, body=b'{"a":1,"b":2}', content_type="application/json")
        cand = sig(comparator, body=b'{"b":7,"a":9}', content_type="application/json")
        assert comparator.equivalent(base, cand)

    def test_different_keys_same_length(self, comparator):
        base = sig(comparator, body=b'{"ab":1}', content_type="application/json")
        cand = sig(comparator, body=b'{"cd":1}', content_type="application/json")
        assert not comparator.equivalent(base, cand)

    def test_unparseable_body_falls_back_to_bytes(self, comparator):
        base = sig(comparator, body=b"{oops", content_type="application/json")
        same = sig(comparator, body=b"{oops", content_type="application/json")
        other = sig(comparator, body=b"{nope", content_type="application/json")
        assert comparator.equivalent(base, same)
        assert not comparator.equivalent(base, other)

    def test_json_detection_uses_content_type(self, comparator):
        base = sig(comparator, body=b'{"ab":1}', content_type="application/problem+json; charset=utf-8")
        assert base.is_json
        assert base.json_keys == ("ab",)

    def test_array_keys_are_indices(self, comparator):
        assert sig(comparator, body=b"[1,2]", content_type="application/json").json_keys == ("0", "1")

    def test_empty_body_parses_as_empty_object(self, comparator):
        assert sig(comparator, body=b"", content_type="application/json").json_keys == ()

    def test_deeply_nested_body_falls_back_to_bytes(self, comparator):
        deep = b"[" * 5000 + b"]" * 5000
        base = sig(comparator, body=deep, content_type="application/json")
        assert base.json_keys is None
        assert comparator.equivalent(base, sig(comparator, body=deep, content_type="application/json"))


class TestExtraRules:
    def test_extra_rule_runs_after_builtins(self):
        seen = []

        def body_equal(base, cand):
            seen.append(True)
            return base.body == cand.body

        comparator = ResponseComparator(extra_rules=[body_equal])
        assert not comparator.equivalent(sig(comparator, body=b"abc"), sig(comparator, body=b"xyz"))
        assert not comparator.equivalent(sig(comparator, status=200), sig(comparator, status=500))
        assert len(seen) == 1
