"""Unit tests for utils/pagination.py - paginated fetching."""

import pytest
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

from gyro_aws.utils.pagination import boto_pages, paginate


def page_fetcher(pages):
    """Build a fetch_page callable serving pages keyed by incoming token."""
    fetch = MagicMock(side_effect=lambda token: pages[token])
    return fetch


class TestPaginate:
    """Tests for paginate function."""

    def test_concatenates_pages_in_order(self):
        """Test that N pages yield all items and call the fetcher N times."""
        fetch = page_fetcher({
            None: ([1, 2], "t1"),
            "t1": ([3], "t2"),
            "t2": ([4, 5], None),
        })

        assert list(paginate(fetch)) == [1, 2, 3, 4, 5]
        assert fetch.call_count == 3
        assert [c.args[0] for c in fetch.call_args_list] == [None, "t1", "t2"]

    def test_empty_string_token_ends_sequence(self):
        """Test that an empty continuation token is treated as the last page."""
        fetch = page_fetcher({None: (["a"], "")})

        assert list(paginate(fetch)) == ["a"]
        assert fetch.call_count == 1

    def test_predicate_filters_items(self):
        """Test that only items matching the predicate are yielded."""
        fetch = page_fetcher({None: ([1, 2, 3], "t1"), "t1": ([4], None)})

        assert list(paginate(fetch, predicate=lambda n: n % 2 == 0)) == [2, 4]

    def test_is_lazy(self):
        """Test that later pages are only fetched when needed."""
        fetch = page_fetcher({None: ([1], "t1"), "t1": ([2], None)})

        items = paginate(fetch)
        assert fetch.call_count == 0

        assert next(items) == 1
        assert fetch.call_count == 1

    def test_not_found_on_first_call_yields_nothing(self, client_error):
        """Test that a not-found error ends the sequence silently."""
        fetch = MagicMock(side_effect=client_error("ResourceNotFoundException", "gone"))

        assert list(paginate(fetch)) == []
        assert fetch.call_count == 1

    def test_other_errors_propagate(self, client_error):
        """Test that non not-found errors are raised."""
        fetch = MagicMock(side_effect=client_error("AccessDenied", "nope"))

        with pytest.raises(ClientError):
            list(paginate(fetch))


class TestBotoPages:
    """Tests for boto_pages function."""

    def test_passes_token_and_params(self):
        """Test that the token and fixed parameters reach the boto3 call."""
        method = MagicMock(side_effect=[
            {"Functions": [{"FunctionName": "a"}], "NextMarker": "m1"},
            {"Functions": [{"FunctionName": "b"}]},
        ])

        fetch = boto_pages(method, "Functions", "NextMarker", "Marker", MaxItems=50)
        names = [f["FunctionName"] for f in paginate(fetch)]

        assert names == ["a", "b"]
        assert method.call_args_list[0].kwargs == {"MaxItems": 50}
        assert method.call_args_list[1].kwargs == {"MaxItems": 50, "Marker": "m1"}

    def test_defaults_to_next_token(self):
        """Test the NextToken convention used by most services."""
        method = MagicMock(side_effect=[
            {"SecretList": [1], "NextToken": "n1"},
            {"SecretList": [2], "NextToken": None},
        ])

        assert list(paginate(boto_pages(method, "SecretList"))) == [1, 2]
        assert method.call_args_list[1].kwargs == {"NextToken": "n1"}

    def test_missing_items_key_is_empty(self):
        """Test that a response without the items key yields nothing."""
        method = MagicMock(return_value={})

        assert list(paginate(boto_pages(method, "Tags"))) == []
