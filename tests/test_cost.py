"""Tests for point-cost estimation and binning"""

from wikimirror.cost import (
    FULL_CONTENT,
    ChildCounts,
    CostOptions,
    batch_entity_cost,
    bin_by_cost,
    estimate_base_cost,
    estimate_cost,
    inventory_cost,
    is_complex,
    paginated_cost,
)


# ============ Estimation ============


class TestEstimateCost:
    def test_full_pages_of_revisions_and_votes(self):
        options = CostOptions(revision_limit=100, vote_limit=100)
        cost = estimate_cost(ChildCounts(revision_count=100, vote_count=100), options)
        assert cost == estimate_base_cost(options) + 200

    def test_partial_page_charged_in_full(self):
        assert paginated_cost(101, 100, 1) == 200
        assert paginated_cost(1, 100, 1) == 100

    def test_zero_and_missing_counts_cost_nothing(self):
        assert paginated_cost(0, 100, 1) == 0
        assert paginated_cost(None, 100, 1) == 0
        assert paginated_cost(-3, 100, 1) == 0

    def test_monotonic_in_counts(self):
        previous = 0
        for count in range(0, 500, 7):
            cost = estimate_cost(ChildCounts(revision_count=count, vote_count=count))
            assert cost >= previous
            previous = cost

    def test_limit_boundary(self):
        options = CostOptions(revision_limit=50, vote_limit=50)
        at_limit = estimate_cost(ChildCounts(revision_count=50, vote_count=0), options)
        below_limit = estimate_cost(ChildCounts(revision_count=49, vote_count=0), options)
        assert at_limit == below_limit

    def test_multiplier_scales(self):
        counts = ChildCounts(revision_count=10, vote_count=10)
        single = estimate_cost(counts, CostOptions())
        double = estimate_cost(counts, CostOptions(multiplier=2))
        assert double == single * 2

    def test_field_selection_changes_base(self):
        assert estimate_base_cost(FULL_CONTENT) > estimate_base_cost(CostOptions())

    def test_full_content_charges_only_selected_fields(self):
        # root, attributions, alternate titles, source, text content
        assert estimate_base_cost(FULL_CONTENT) == 1 + 2 + 1 + 1 + 1
        assert estimate_base_cost(CostOptions(include_children=True)) == estimate_base_cost(CostOptions()) + 1


class TestInventoryCost:
    def test_uses_floor_for_small_entities(self):
        cost = inventory_cost(ChildCounts(revision_count=3, vote_count=0), floor=20)
        assert cost == estimate_base_cost(CostOptions()) + 20

    def test_large_entity_fits_one_page(self):
        cost = inventory_cost(ChildCounts(revision_count=250, vote_count=40), floor=20)
        assert cost == estimate_base_cost(CostOptions()) + 250 + 40


class TestBatchEntityCost:
    def test_caps_each_collection_at_batch_limit(self):
        base = estimate_base_cost(FULL_CONTENT)
        assert batch_entity_cost(500, 3, 100) == base + 100 + 3

    def test_missing_counts(self):
        assert batch_entity_cost(None, None, 100) == estimate_base_cost(FULL_CONTENT)


def test_is_complex():
    assert is_complex(501, 500)
    assert not is_complex(500, 500)


# ============ Binning ============


class TestBinByCost:
    def test_every_item_in_exactly_one_bucket_in_order(self):
        items = list(range(20))
        buckets = bin_by_cost(items, cost=lambda i: 10, soft_budget=35, max_items=100)
        assert [i for b in buckets for i in b] == items

    def test_respects_soft_budget(self):
        buckets = bin_by_cost(list(range(10)), cost=lambda i: 10, soft_budget=35, max_items=100)
        assert all(len(b) == 3 for b in buckets[:-1])
        assert all(sum(10 for _ in b) <= 35 for b in buckets)

    def test_respects_max_items(self):
        buckets = bin_by_cost(list(range(7)), cost=lambda i: 1, soft_budget=1000, max_items=3)
        assert [len(b) for b in buckets] == [3, 3, 1]

    def test_oversized_item_gets_own_bucket(self):
        costs = {"a": 5, "big": 500, "b": 5}
        buckets = bin_by_cost(["a", "big", "b"], cost=costs.get, soft_budget=100, max_items=10)
        assert buckets == [["a"], ["big"], ["b"]]

    def test_empty(self):
        assert bin_by_cost([], cost=lambda i: 1, soft_budget=10, max_items=10) == []
