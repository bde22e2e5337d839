import pytest

from cuotas_recon.references import (
    ReferenceIndex,
    amounts_match,
    normalize_reference,
    reference_digits,
    references_match,
)


def test_normalize_reference():
    assert normalize_reference(" 00 12 AB ") == "12ab"
    assert normalize_reference(115088341384.0) == "115088341384"
    assert normalize_reference(None) == ""
    assert reference_digits("REF-00123") == "00123"


@pytest.mark.parametrize("a, b", [
    ("0018115088341384", "115088341384"),   # bank prefix
    ("123", "123"),                          # exact, even when short
    ("AB12345678", "99912345678"),           # same last 8 digits
    ("1234567890", "001234567800"),          # shared 8-digit run
    ("000555555551234", "555555551234"),     # leading zeros
])
def test_references_match(a, b):
    assert references_match(a, b)
    assert references_match(b, a)


@pytest.mark.parametrize("a, b", [
    ("12345678", "87654321"),
    ("123", "1234"),       # both shorter than 8 digits
    ("", "12345678"),
    (None, "12345678"),
])
def test_references_do_not_match(a, b):
    assert not references_match(a, b)


def test_amounts_match_inclusive_tolerance():
    assert amounts_match(100.01, 100.0)
    assert amounts_match(100.0, 100.0)
    assert not amounts_match(100.02, 100.0)
    assert not amounts_match(None, 100.0)
    assert amounts_match(0.0, 0.0)


def test_reference_index_agrees_with_linear_scan():
    refs = [
        "0018115088341384", "115088341384", "555555551234", "99555555551234",
        "123", "12345678", "87654321", "", "AB12345678", "1234567890", "7",
    ]
    queries = refs + ["001234567800", "5555", "0000123", "99912345678"]
    index = ReferenceIndex(refs, lambda r: r)

    for q in queries:
        expected = [r for r in refs if references_match(q, r)]
        assert index.matches(q) == expected, q


def test_reference_index_keeps_insertion_order():
    items = [("b", "12345678"), ("a", "0012345678"), ("c", "999")]
    index = ReferenceIndex(items, lambda it: it[1])
    assert [it[0] for it in index.matches("12345678")] == ["b", "a"]
    assert len(index) == 3
