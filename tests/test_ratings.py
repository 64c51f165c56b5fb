from datetime import datetime, timezone

import pytest

from ratings import average, fold_rating, rating_label

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
RATER = {"id": "u-bob", "name": "Bob"}


class TestFoldRating:
    def test_first_rating_sets_average(self):
        changes = fold_rating({"name": "Alice"}, 4, "thanks", RATER, NOW)
        assert changes["ratings"] == [4]
        assert changes["average_rating"] == 4.0
        assert changes["rating_comments"] == [{
            "rating": 4,
            "comment": "thanks",
            "user_id": "u-bob",
            "user_name": "Bob",
            "created_at": NOW,
        }]

    def test_appends_to_existing_ratings(self):
        donor = {"ratings": [5, 3], "rating_comments": [{"rating": 5}, {"rating": 3}], "average_rating": 4.0}
        changes = fold_rating(donor, 1, "", RATER, NOW)
        assert changes["ratings"] == [5, 3, 1]
        assert changes["average_rating"] == pytest.approx(3.0)
        assert len(changes["rating_comments"]) == 3

    def test_does_not_mutate_donor(self):
        donor = {"ratings": [5]}
        fold_rating(donor, 2, "", RATER, NOW)
        assert donor == {"ratings": [5]}

    @pytest.mark.parametrize("bad", [0, 6, 4.5, True, "5"])
    def test_rejects_out_of_range(self, bad):
        with pytest.raises(ValueError):
            fold_rating({}, bad, "", RATER, NOW)


class TestRatingLabel:
    def test_no_ratings(self):
        assert rating_label({"name": "Alice"}) == "No ratings yet"
        assert average([]) is None

    def test_formats_one_decimal(self):
        assert rating_label({"average_rating": 4}) == "4.0"
        assert rating_label({"average_rating": 3.666}) == "3.7"
