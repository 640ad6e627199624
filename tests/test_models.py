"""
Unit tests for data models.
"""

from datetime import datetime

import pytest

from rent_watch.exceptions import CriteriaValidationError, DeliveryFailure, FetchFailure
from rent_watch.models.config import (
    Configuration,
    ListingSourceConfig,
    SchedulerConfig,
    TelegramConfig,
)
from rent_watch.models.conversation import (
    ConversationSession,
    ConversationState,
    EventKind,
    build_callback_data,
    parse_callback_data,
)
from rent_watch.models.delivery import DeliveryResult, DispatchReport
from rent_watch.models.listing import Listing
from rent_watch.models.search import SearchCriteria


class TestSearchCriteria:
    """Test SearchCriteria validation and copying."""

    def test_valid_full_criteria(self):
        """Test that complete criteria validate."""
        criteria = SearchCriteria(
            min_price=500, max_price=1200, num_rooms=2, districts=["Ruzafa"]
        )
        assert criteria.validate() is True

    def test_single_field_is_enough(self):
        """Test that any one populated field makes criteria valid."""
        assert SearchCriteria(max_price=900).validate() is True
        assert SearchCriteria(num_rooms=3).validate() is True
        assert SearchCriteria(districts=["Campanar"]).validate() is True

    def test_empty_criteria_rejected(self):
        """Test that criteria with no field set are rejected."""
        with pytest.raises(CriteriaValidationError, match="At least one"):
            SearchCriteria().validate()

    def test_equal_prices_rejected(self):
        """Test that min price equal to max price is rejected."""
        with pytest.raises(CriteriaValidationError, match="lower than maximum"):
            SearchCriteria(min_price=800, max_price=800).validate()

    def test_inverted_prices_rejected(self):
        """Test that max price below min price is rejected."""
        with pytest.raises(CriteriaValidationError):
            SearchCriteria(min_price=1200, max_price=500).validate()

    def test_negative_price_rejected(self):
        """Test that negative prices are rejected."""
        with pytest.raises(CriteriaValidationError, match="negative"):
            SearchCriteria(min_price=-1).validate()

    @pytest.mark.parametrize("rooms", [0, 6])
    def test_room_count_out_of_range_rejected(self, rooms):
        """Test that room counts outside 1..5 are rejected."""
        with pytest.raises(CriteriaValidationError, match="between 1 and 5"):
            SearchCriteria(num_rooms=rooms).validate()

    def test_five_rooms_accepted(self):
        """Test that 5 rooms (meaning five or more) is accepted."""
        assert SearchCriteria(num_rooms=5).validate() is True

    def test_validation_error_is_value_error(self):
        """Test that criteria errors can be caught as ValueError."""
        with pytest.raises(ValueError):
            SearchCriteria(num_rooms=0).validate()

    def test_with_prices_keeps_other_fields(self):
        """Test that replacing prices leaves rooms and districts alone."""
        criteria = SearchCriteria(num_rooms=3, districts=["Benimaclet"])

        updated = criteria.with_prices(600, 1000)

        assert updated.min_price == 600
        assert updated.max_price == 1000
        assert updated.num_rooms == 3
        assert updated.districts == ["Benimaclet"]

    def test_copy_does_not_share_district_list(self):
        """Test that copies own their district list."""
        criteria = SearchCriteria(districts=["Ruzafa"])

        clone = criteria.copy()
        clone.districts.append("Campanar")

        assert criteria.districts == ["Ruzafa"]


class TestListing:
    """Test Listing model."""

    def test_photos_capped_at_three(self):
        """Test that at most three photos are kept."""
        listing = Listing(
            external_id="1",
            url="https://example.com/1",
            photo_urls=["a", "b", "", "c", "d"],
        )
        assert listing.photo_urls == ["a", "b", "c"]

    def test_empty_id_invalid(self):
        """Test that a listing without an id is invalid."""
        listing = Listing(external_id="", url="https://example.com/1")
        with pytest.raises(ValueError, match="external_id"):
            listing.validate()

    def test_negative_price_invalid(self):
        """Test that a negative listing price is invalid."""
        listing = Listing(external_id="1", url="https://example.com/1", price=-5)
        with pytest.raises(ValueError, match="price"):
            listing.validate()


class TestCallbackData:
    """Test callback data encoding."""

    def test_encode_without_payload(self):
        """Test that payload-less buttons encode to their tag."""
        assert build_callback_data(EventKind.START_CREATE) == "CREATE_SEARCH"

    def test_encode_with_payload(self):
        """Test that payloads follow a colon."""
        assert build_callback_data(EventKind.SELECT_ROOMS, "2") == "SET_ROOMS:2"

    def test_parse_payload_with_colon(self):
        """Test that only the first colon separates tag and payload."""
        kind, payload = parse_callback_data("TOGGLE_DISTRICT:Area: North")
        assert kind == EventKind.TOGGLE_DISTRICT
        assert payload == "Area: North"

    def test_parse_without_payload(self):
        """Test that missing payloads parse as None."""
        assert parse_callback_data("DISTRICTS_DONE") == (EventKind.DONE, None)

    def test_unknown_tag_rejected(self):
        """Test that unknown tags raise ValueError."""
        with pytest.raises(ValueError):
            parse_callback_data("NOT_A_BUTTON")

    def test_text_is_not_a_button(self):
        """Test that text events never travel as callback data."""
        with pytest.raises(ValueError):
            build_callback_data(EventKind.TEXT)
        with pytest.raises(ValueError):
            parse_callback_data("TEXT")


class TestConversationSession:
    """Test ConversationSession."""

    def test_reset_clears_draft_and_target(self):
        """Test that reset returns to idle with an empty draft."""
        session = ConversationSession(user_id=1)
        session.state = ConversationState.EDITING_DISTRICTS
        session.draft.districts.append("Ruzafa")
        session.editing_search_id = 7

        session.reset()

        assert session.state == ConversationState.IDLE
        assert session.draft == SearchCriteria()
        assert session.editing_search_id is None

    def test_editing_states(self):
        """Test the editing state flag."""
        assert ConversationState.EDITING_MIN_PRICE.is_editing
        assert not ConversationState.AWAITING_MIN_PRICE.is_editing
        assert not ConversationState.IDLE.is_editing


class TestDeliveryModels:
    """Test delivery result models."""

    def test_failed_result_needs_message(self):
        """Test that a failed result must carry an error message."""
        result = DeliveryResult(
            success=False, delivery_time=datetime.now(), error_message=None
        )
        with pytest.raises(ValueError, match="error_message"):
            result.validate()

    def test_report_counts(self):
        """Test dispatch report counters."""
        ok = Listing(external_id="1", url="u1")
        bad = Listing(external_id="2", url="u2")
        report = DispatchReport(confirmed=[ok], failed=[bad])

        assert report.confirmed_count == 1
        assert report.attempted_count == 2


class TestExceptions:
    """Test exception types."""

    def test_fetch_failure_keeps_cause(self):
        """Test that FetchFailure keeps the original error."""
        cause = TimeoutError("slow")
        error = FetchFailure("timed out", cause)
        assert error.cause is cause

    def test_delivery_failure_message(self):
        """Test DeliveryFailure message and attributes."""
        error = DeliveryFailure("123", "blocked", attempts=3)
        assert "123" in str(error)
        assert error.attempts == 3


class TestConfiguration:
    """Test configuration models."""

    def test_defaults_are_valid(self, sample_configuration):
        """Test that defaults pass validation."""
        assert sample_configuration.validate() is True
        assert len(sample_configuration.districts) == 9

    def test_interval_minimum(self):
        """Test that polling intervals below a minute are rejected."""
        with pytest.raises(ValueError, match="at least 60"):
            SchedulerConfig(interval_seconds=30, fetch_timeout_seconds=10).validate()

    def test_fetch_timeout_below_interval(self):
        """Test that the fetch timeout must be shorter than the interval."""
        with pytest.raises(ValueError, match="shorter"):
            SchedulerConfig(interval_seconds=120, fetch_timeout_seconds=120).validate()

    def test_duplicate_districts_rejected(self):
        """Test that duplicate district names are rejected."""
        config = Configuration(
            telegram=TelegramConfig(bot_token="t"),
            listing_source=ListingSourceConfig(api_token="a"),
            districts=["Ruzafa", "Ruzafa"],
        )
        with pytest.raises(ValueError, match="unique"):
            config.validate()

    def test_missing_bot_token_rejected(self):
        """Test that an empty bot token is rejected."""
        with pytest.raises(ValueError, match="bot_token"):
            TelegramConfig(bot_token=" ").validate()

    def test_invalid_base_url_rejected(self):
        """Test that the listing source URL must be http(s)."""
        with pytest.raises(ValueError, match="base URL"):
            ListingSourceConfig(api_token="a", base_url="ftp://x").validate()
