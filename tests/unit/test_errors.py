import pytest

from app.core.errors import AppError, ErrorKind


@pytest.mark.parametrize(
    "kind, status_code",
    [
        (ErrorKind.UNAUTHORIZED, 401),
        (ErrorKind.FORBIDDEN, 403),
        (ErrorKind.VALIDATION, 400),
        (ErrorKind.CONFLICT, 409),
        (ErrorKind.NOT_FOUND, 404),
        (ErrorKind.INTERNAL, 500),
    ],
)
def test_kind_status_codes(kind, status_code):
    assert AppError(kind, "CODE", "msg").status_code == status_code


def test_to_dict_omits_empty_details():
    assert AppError(ErrorKind.NOT_FOUND, "ALLOWLIST_NOT_FOUND", "gone").to_dict() == {
        "code": "ALLOWLIST_NOT_FOUND",
        "message": "gone",
    }


def test_to_dict_keeps_details():
    err = AppError(
        ErrorKind.CONFLICT, "ALLOWLIST_EXISTS", "exists", {"emails": ["a@x.com"]}
    )
    assert err.to_dict()["details"] == {"emails": ["a@x.com"]}
    assert str(err) == "exists"
