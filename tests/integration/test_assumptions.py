"""
Validation precondition tests.

Tests include:
- Per-client non-concurrency and interval sanity
- Empty database at start
- Ground truth matching client requests
- Malformed input rejection
"""

import pytest

from kvcheck.assumptions import (
    check_validation_assumptions,
    validate_empty_database_at_start,
    validate_non_concurrent_client_requests,
    validate_persisted_requests_match_client_requests,
    validate_well_formed_input,
)
from kvcheck.errors import AssumptionError
from kvcheck.history import ClientReport
from kvcheck.requests import CompactRequest, LeaseGrantRequest, TxnRequest
from utils import delete, failed, get, kv, put, put_ok, range_ok


class TestNonConcurrentClientRequests:
    """Each client issues one request at a time."""

    def test_sequential_requests_pass(self, builder):
        builder.add(1, 1, 2, put("a", "1"), put_ok(2))
        builder.add(1, 3, 4, get("a"), range_ok(2, kv("a", "1", 2)))
        validate_non_concurrent_client_requests(builder.reports())

    def test_overlapping_requests_fail_with_client_id(self, builder):
        builder.add(3, 1, 5, put("a", "1"), put_ok(2))
        builder.add(3, 4, 6, get("a"), range_ok(2, kv("a", "1", 2)))
        with pytest.raises(AssumptionError) as exc_info:
            validate_non_concurrent_client_requests(builder.reports())
        assert "client 3 has concurrent request" in str(exc_info.value)
        assert exc_info.value.client_id == 3

    def test_other_clients_may_overlap(self, builder):
        builder.add(1, 1, 5, put("a", "1"), put_ok(2))
        builder.add(2, 2, 6, get("a"), range_ok(2, kv("a", "1", 2)))
        validate_non_concurrent_client_requests(builder.reports())

    def test_return_not_after_call_fails(self, builder):
        builder.add(1, 5, 5, put("a", "1"), put_ok(2))
        with pytest.raises(AssumptionError, match="ends before it starts"):
            validate_non_concurrent_client_requests(builder.reports())


class TestEmptyDatabaseAtStart:
    """The first successful write observes revision 2."""

    def test_first_write_at_revision_two(self, builder):
        builder.add(1, 1, 2, put("a", "1"), put_ok(2))
        builder.add(1, 3, 4, put("a", "2"), put_ok(3))
        validate_empty_database_at_start(builder.reports())

    def test_no_writes_passes(self, builder):
        builder.add(1, 1, 2, get("a"), range_ok(1))
        builder.add(1, 3, 4, put("a", "1"), failed())
        validate_empty_database_at_start(builder.reports())

    def test_preexisting_data_fails(self, builder):
        builder.add(1, 1, 2, put("a", "1"), put_ok(7))
        with pytest.raises(AssumptionError, match="non empty database at start"):
            validate_empty_database_at_start(builder.reports())

    def test_read_past_initial_revision_without_write_fails(self, builder):
        builder.add(1, 1, 2, get("a"), range_ok(5, kv("a", "x", 4)))
        with pytest.raises(AssumptionError) as exc_info:
            validate_empty_database_at_start(builder.reports())
        assert exc_info.value.revision == 5


class TestPersistedRequestsMatch:
    """Ground truth only contains what clients sent."""

    def test_matching_ground_truth_passes(self, builder):
        builder.add(1, 1, 2, put("a", "1"), put_ok(2))
        builder.add(2, 3, 4, put("b", "2"), failed())
        builder.add(1, 5, 6, delete("a"), failed())
        validate_persisted_requests_match_client_requests(
            builder.reports(), [put("a", "1"), put("b", "2")])

    def test_unknown_request_fails(self, builder):
        builder.add(1, 1, 2, put("a", "1"), put_ok(2))
        with pytest.raises(AssumptionError, match="was not sent by client"):
            validate_persisted_requests_match_client_requests(
                builder.reports(), [put("a", "1"), put("z", "9")])

    def test_lease_grants_are_exempt(self, builder):
        builder.add(1, 1, 2, put("a", "1"), put_ok(2))
        validate_persisted_requests_match_client_requests(
            builder.reports(), [LeaseGrantRequest(42), put("a", "1")])

    def test_first_successful_write_missing_fails(self, builder):
        builder.add(1, 1, 2, put("a", "1"), put_ok(2))
        builder.add(2, 3, 4, put("b", "2"), put_ok(3))
        with pytest.raises(AssumptionError, match="first successful client write") as exc_info:
            validate_persisted_requests_match_client_requests(builder.reports(), [put("b", "2")])
        assert exc_info.value.client_id == 1

    def test_last_successful_write_missing_fails(self, builder):
        builder.add(1, 1, 2, put("a", "1"), put_ok(2))
        builder.add(2, 3, 4, put("b", "2"), put_ok(3))
        with pytest.raises(AssumptionError, match="last successful client write") as exc_info:
            validate_persisted_requests_match_client_requests(builder.reports(), [put("a", "1")])
        assert exc_info.value.client_id == 2


class TestWellFormedInput:
    """Malformed reports are a setup error, not a crash."""

    def test_no_reports(self):
        with pytest.raises(AssumptionError, match="no client reports"):
            validate_well_formed_input([], None)

    def test_malformed_request(self, builder):
        builder.add(1, 1, 2, "PUT a 1", put_ok(2))
        with pytest.raises(AssumptionError, match="malformed request"):
            validate_well_formed_input(builder.reports(), None)

    def test_malformed_response(self, builder):
        builder.add(1, 1, 2, put("a", "1"), {"revision": 2})
        with pytest.raises(AssumptionError, match="malformed response"):
            validate_well_formed_input(builder.reports(), None)

    def test_malformed_persisted_request(self, builder):
        builder.add(1, 1, 2, put("a", "1"), put_ok(2))
        with pytest.raises(AssumptionError, match="malformed request in persisted requests"):
            validate_well_formed_input(builder.reports(), [put("a", "1"), None])

    def test_negative_read_revision(self, builder):
        builder.add(1, 1, 2, get("k", revision=-1), range_ok(2))
        with pytest.raises(AssumptionError, match="negative revision in client 1 report") as exc_info:
            validate_well_formed_input(builder.reports(), None)
        assert exc_info.value.revision == -1

    def test_negative_limit(self, builder):
        builder.add(1, 1, 2, get("k", limit=-5), range_ok(1))
        with pytest.raises(AssumptionError, match="negative limit"):
            validate_well_formed_input(builder.reports(), None)

    def test_negative_revision_inside_txn(self, builder):
        builder.add(1, 1, 2, TxnRequest(on_success=(get("k", revision=-2),)), put_ok(1))
        with pytest.raises(AssumptionError, match="negative revision"):
            validate_well_formed_input(builder.reports(), None)

    def test_negative_compact_revision(self, builder):
        builder.add(1, 1, 2, put("a", "1"), put_ok(2))
        with pytest.raises(AssumptionError, match="negative revision in persisted requests"):
            validate_well_formed_input(builder.reports(), [put("a", "1"), CompactRequest(-1)])

    @pytest.mark.parametrize("call, ret", [(1.5, 2), (1, "2"), (None, 2)])
    def test_malformed_timestamps(self, builder, call, ret):
        builder.add(1, call, ret, put("a", "1"), put_ok(2))
        with pytest.raises(AssumptionError, match="malformed timestamps") as exc_info:
            validate_well_formed_input(builder.reports(), None)
        assert exc_info.value.client_id == 1

    def test_malformed_report(self):
        with pytest.raises(AssumptionError, match="malformed client report"):
            validate_well_formed_input([ClientReport(1), "client 2"], None)


class TestCheckValidationAssumptions:
    """All preconditions together."""

    def test_valid_trace_passes(self, builder):
        builder.add(1, 1, 2, put("a", "1"), put_ok(2))
        builder.add(2, 1, 3, get("a"), range_ok(2, kv("a", "1", 2)))
        check_validation_assumptions(builder.reports(), [put("a", "1")])

    def test_ground_truth_checks_skipped_without_persisted_requests(self, builder):
        builder.add(1, 1, 2, put("a", "1"), put_ok(2))
        check_validation_assumptions(builder.reports())
