from receiptbot.domain.categories import FuzzyCategoryMatcher, find_exact, normalize_category_name

CATEGORIES = ["Groceries", "Household", "Eating out"]


def test_normalize_capitalises_first_letter_only():
    assert normalize_category_name("  pet   food ") == "Pet food"
    assert normalize_category_name("iPhone") == "IPhone"
    assert normalize_category_name("") == ""


def test_find_exact_ignores_case():
    assert find_exact("groceries", CATEGORIES) == "Groceries"
    assert find_exact("grocery", CATEGORIES) is None


class TestFuzzyCategoryMatcher:
    def setup_method(self):
        self.matcher = FuzzyCategoryMatcher()

    def test_exact_match_wins(self):
        assert self.matcher.closest("HOUSEHOLD", CATEGORIES) == "Household"

    def test_category_containing_input(self):
        assert self.matcher.closest("eating", CATEGORIES) == "Eating out"

    def test_input_containing_category(self):
        assert self.matcher.closest("household chemicals", CATEGORIES) == "Household"

    def test_similar_spelling(self):
        assert self.matcher.closest("Grocries", CATEGORIES) == "Groceries"

    def test_no_match(self):
        assert self.matcher.closest("Travel", CATEGORIES) is None
        assert self.matcher.closest("", CATEGORIES) is None
        assert self.matcher.closest("Food", []) is None
