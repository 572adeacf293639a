import pytest

from app.core.errors import AppError, ErrorKind
from app.schemas.enums import AllowedEmailStatus
from app.services.allowlist_validation import (
    EMAIL_MAX_LENGTH,
    LABEL_MAX_LENGTH,
    assert_email,
    assert_status,
    ensure_max_length,
    normalize_email,
)
from app.services.status_transitions import (
    assert_status_transition,
    is_transition_allowed,
)


@pytest.mark.parametrize(
    "raw", ["a@x.com", "  Mixed.Case@Example.ORG ", "\tUSER+tag@sub.domain.io\n"]
)
def test_normalize_email_is_idempotent(raw):
    once = normalize_email(raw)
    assert normalize_email(once) == once
    assert once == once.strip().lower()


def test_assert_email_returns_trimmed_value_with_case():
    assert assert_email("  Jane@Example.com ") == "Jane@Example.com"


@pytest.mark.parametrize("value", [None, "", "   "])
def test_assert_email_required(value):
    with pytest.raises(AppError) as exc:
        assert_email(value)
    assert exc.value.code == "EMAIL_REQUIRED"
    assert exc.value.kind is ErrorKind.VALIDATION


@pytest.mark.parametrize(
    "value", ["not-an-email", "a@b", "a b@x.com", "a@@x.com", "@x.com", "a@x."]
)
def test_assert_email_rejects_malformed(value):
    with pytest.raises(AppError) as exc:
        assert_email(value)
    assert exc.value.code == "EMAIL_INVALID"


def test_assert_email_too_long():
    value = "a" * (EMAIL_MAX_LENGTH - len("@x.com") + 1) + "@x.com"
    with pytest.raises(AppError) as exc:
        assert_email(value)
    assert exc.value.code == "EMAIL_TOO_LONG"
    assert exc.value.details == {"max": EMAIL_MAX_LENGTH}


def test_assert_email_accepts_exact_max_length():
    value = "a" * (EMAIL_MAX_LENGTH - len("@x.com")) + "@x.com"
    assert assert_email(value) == value


def test_assert_status_normalizes_case_and_whitespace():
    assert assert_status(" Active ") is AllowedEmailStatus.ACTIVE


@pytest.mark.parametrize("value", [None, "", "deleted"])
def test_assert_status_rejects_unknown(value):
    with pytest.raises(AppError) as exc:
        assert_status(value)
    assert exc.value.code == "STATUS_INVALID"
    assert exc.value.details == {"allowed": ["pending", "active", "revoked"]}


def test_ensure_max_length_trims_and_collapses_blank():
    assert ensure_max_length("  cohort-a  ", LABEL_MAX_LENGTH) == "cohort-a"
    assert ensure_max_length("   ", LABEL_MAX_LENGTH) is None
    assert ensure_max_length(None, LABEL_MAX_LENGTH) is None


def test_ensure_max_length_boundary():
    assert ensure_max_length("x" * LABEL_MAX_LENGTH, LABEL_MAX_LENGTH) == "x" * LABEL_MAX_LENGTH
    with pytest.raises(AppError) as exc:
        ensure_max_length("x" * (LABEL_MAX_LENGTH + 1), LABEL_MAX_LENGTH)
    assert exc.value.code == "FIELD_TOO_LONG"
    assert exc.value.details == {"max": LABEL_MAX_LENGTH}


# --- Status transitions ---

LEGAL = {
    (AllowedEmailStatus.PENDING, AllowedEmailStatus.ACTIVE),
    (AllowedEmailStatus.ACTIVE, AllowedEmailStatus.REVOKED),
    (AllowedEmailStatus.REVOKED, AllowedEmailStatus.ACTIVE),
}


@pytest.mark.parametrize("current", list(AllowedEmailStatus))
@pytest.mark.parametrize("requested", list(AllowedEmailStatus))
def test_transition_table(current, requested):
    expected = current == requested or (current, requested) in LEGAL
    assert is_transition_allowed(current, requested) is expected

    if expected:
        assert_status_transition(current, requested)
    else:
        with pytest.raises(AppError) as exc:
            assert_status_transition(current, requested)
        assert exc.value.code == "STATUS_TRANSITION_FORBIDDEN"
        assert exc.value.details == {"from": current.value, "to": requested.value}
