"""
Filter node evaluation tests.
"""

from datetime import date

from licensetag.application.services.coverage_index import CoverageIndex
from licensetag.application.services.filters import (
    AndFilter,
    AnyFilter,
    CollectionFilter,
    DOIFilter,
    HoldingsFilter,
    ISSNFilter,
    NodeKind,
    NotFilter,
    OrFilter,
    PackageFilter,
    SourceFilter,
    SubjectFilter,
)
from licensetag.domain.coverage import CoverageEntry
from licensetag.domain.record import IntermediateRecord


def _record(**fields) -> IntermediateRecord:
    return IntermediateRecord(**fields)


class _Counting(AnyFilter):
    """Any filter that remembers how often it was asked."""

    def __init__(self, result: bool):
        object.__setattr__(self, "result", result)
        object.__setattr__(self, "calls", 0)

    def evaluate(self, record):
        object.__setattr__(self, "calls", self.calls + 1)
        return self.result


class TestLeafFilters:
    def test_any(self):
        assert AnyFilter().evaluate(_record())
        assert AnyFilter()(_record())

    def test_issn_normalizes_both_sides(self):
        node = ISSNFilter(values=frozenset({"12345678"}))
        assert node.values == frozenset({"1234-5678"})
        assert node.evaluate(_record(eissn=["1234-5678"]))
        assert node.evaluate(_record(issn=["12345678"]))
        assert not node.evaluate(_record(issn=["8765-4321"]))
        assert not node.evaluate(_record())

    def test_doi_presence(self):
        node = DOIFilter()
        assert node.evaluate(_record(doi="10.1000/1"))
        assert not node.evaluate(_record(doi=""))
        assert not node.evaluate(_record(doi="   "))

    def test_doi_list_is_case_insensitive(self):
        node = DOIFilter(values=frozenset({"10.1000/ABC"}))
        assert node.evaluate(_record(doi="10.1000/abc"))
        assert not node.evaluate(_record(doi="10.1000/abd"))
        assert not node.evaluate(_record())

    def test_attribute_sets_match_exactly(self):
        assert CollectionFilter(values=frozenset({"Free Journals"})).evaluate(
            _record(collections=["Other", "Free Journals"])
        )
        assert not CollectionFilter(values=frozenset({"free journals"})).evaluate(
            _record(collections=["Free Journals"])
        )
        assert PackageFilter(values=frozenset({"P1"})).evaluate(_record(packages=["P1"]))
        assert SourceFilter(values=frozenset({"48"})).evaluate(_record(source_id="48"))
        assert not SourceFilter(values=frozenset({"48"})).evaluate(_record(source_id="49"))
        assert SubjectFilter(values=frozenset({"Law"})).evaluate(_record(subjects=["Law"]))

    def test_empty_value_set_never_matches(self):
        node = SourceFilter(values=frozenset({""}))
        assert node.values == frozenset()
        assert not node.evaluate(_record(source_id=""))

    def test_value_filters_compare_by_value(self):
        assert SourceFilter(values=frozenset({"1"})) == SourceFilter(values=frozenset({"1"}))
        assert SourceFilter(values=frozenset({"1"})) != PackageFilter(values=frozenset({"1"}))

    def test_kinds(self):
        assert HoldingsFilter.kind == NodeKind.HOLDINGS
        assert ISSNFilter.kind == NodeKind.ISSN
        assert NotFilter.kind == NodeKind.NOT


class TestHoldingsFilter:
    def setup_method(self):
        self.index = CoverageIndex(
            [
                CoverageEntry(print_identifier="1234-5678", first_issue_date="1996"),
                CoverageEntry(print_identifier="0001-4273", embargo="P1Y"),
            ]
        )
        self.node = HoldingsFilter(index=self.index, today=date(2024, 6, 15))

    def test_covered(self):
        assert self.node.evaluate(_record(issn=["1234-5678"], date="2001"))
        assert self.node.evaluate(_record(eissn=["12345678"], date=""))

    def test_not_covered(self):
        assert not self.node.evaluate(_record(issn=["1234-5678"], date="1995"))

    def test_unknown_or_missing_identifier_fails_closed(self):
        assert not self.node.evaluate(_record(issn=["9999-9999"], date="2001"))
        assert not self.node.evaluate(_record(date="2001"))

    def test_unparsable_date_fails_closed(self):
        assert not self.node.evaluate(_record(issn=["1234-5678"], date="n.d."))

    def test_reference_date(self):
        assert self.node.evaluate(_record(issn=["0001-4273"], date="2023"))
        assert not self.node.evaluate(_record(issn=["0001-4273"], date="2024"))


class TestBooleanFilters:
    def setup_method(self):
        index = CoverageIndex([CoverageEntry(print_identifier="1234-5678", first_issue_date="2000")])
        self.issn = ISSNFilter(values=frozenset({"1234-5678"}))
        self.holdings = HoldingsFilter(index=index)

    def test_and_requires_every_child(self):
        node = AndFilter(children=(self.issn, self.holdings))
        assert node.evaluate(_record(issn=["1234-5678"], date="2001"))
        assert not node.evaluate(_record(issn=["1234-5678"], date="1999"))
        assert not node.evaluate(_record(issn=["8765-4321"], date="2001"))

    def test_or_requires_one_child(self):
        node = OrFilter(children=(self.issn, SourceFilter(values=frozenset({"48"}))))
        assert node.evaluate(_record(issn=["1234-5678"]))
        assert node.evaluate(_record(source_id="48"))
        assert not node.evaluate(_record(source_id="49"))

    def test_not(self):
        assert not NotFilter(child=AnyFilter()).evaluate(_record())
        assert NotFilter(child=self.issn).evaluate(_record())

    def test_empty_and_or(self):
        assert AndFilter().evaluate(_record())
        assert not OrFilter().evaluate(_record())

    def test_short_circuit(self):
        first, second = _Counting(False), _Counting(True)
        assert not AndFilter(children=(first, second)).evaluate(_record())
        assert (first.calls, second.calls) == (1, 0)

        first, second = _Counting(True), _Counting(False)
        assert OrFilter(children=(first, second)).evaluate(_record())
        assert (first.calls, second.calls) == (1, 0)

    def test_nested_tree(self):
        tree = OrFilter(
            children=(
                AndFilter(children=(SourceFilter(values=frozenset({"48"})), self.holdings)),
                CollectionFilter(values=frozenset({"Free Journals"})),
            )
        )
        assert tree.evaluate(_record(source_id="48", issn=["1234-5678"], date="2010"))
        assert not tree.evaluate(_record(source_id="49", issn=["1234-5678"], date="2010"))
        assert tree.evaluate(_record(source_id="49", collections=["Free Journals"]))
