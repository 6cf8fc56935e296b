import pytest
from datetime import datetime, timezone
from unittest.mock import call

from lending.exceptions import (
    ConstraintViolationError,
    CopyUnavailableError,
    LoanNotExistsError,
    UserNotFoundError,
)
from lending.loans import LoanService
from lending.models import Copy, CopyStatus

NOW = datetime(2024, 3, 8, 12, 30, tzinfo=timezone.utc)


@pytest.fixture
def service(store):
    return LoanService(store, clock=lambda: NOW)


def assert_nothing_saved(store):
    store.close_loan.assert_not_called()
    store.save_copy.assert_not_called()
    store.save_loan.assert_not_called()
    store.commit.assert_not_called()


def test_borrow_sets_copy_status_to_borrowed(service, store, copy):
    service.borrow_copy("central", 42, "a@x.com")

    assert copy.status == CopyStatus.BORROWED
    store.find_available_copies.assert_called_once_with("central", 42)
    store.save_copy.assert_called_once_with(copy)
    store.commit.assert_called_once()


def test_borrow_opens_a_loan(service, store, copy, user):
    loan = service.borrow_copy("central", 42, "a@x.com")

    assert loan.copy is copy
    assert loan.user is user
    assert loan.start_date == NOW
    assert loan.end_date is None
    store.save_loan.assert_called_once_with(loan)


def test_borrow_without_available_copy_raises(service, store):
    store.find_available_copies.return_value = []

    with pytest.raises(CopyUnavailableError):
        service.borrow_copy("central", 42, "a@x.com")

    store.find_users_by_email.assert_not_called()
    assert_nothing_saved(store)


@pytest.mark.parametrize("users", [[], None])
def test_borrow_without_user_raises(service, store, copy, users):
    store.find_users_by_email.return_value = users

    with pytest.raises(UserNotFoundError):
        service.borrow_copy("central", 42, "nobody@x.com")

    assert copy.status == CopyStatus.AVAILABLE
    assert_nothing_saved(store)


def test_borrow_takes_first_copy_returned_by_store(service, store, copy):
    other = Copy(
        id=2,
        status=CopyStatus.AVAILABLE,
        book=copy.book,
        library=copy.library,
    )
    store.find_available_copies.return_value = [copy, other]

    loan = service.borrow_copy("central", 42, "a@x.com")

    assert loan.copy is copy
    assert other.status == CopyStatus.AVAILABLE


def test_borrow_by_copy_id(service, store, copy):
    loan = service.borrow_copy_by_id(1, "a@x.com")

    store.find_copy_by_id.assert_called_once_with(1)
    assert loan.copy is copy
    assert copy.status == CopyStatus.BORROWED


def test_borrow_by_missing_copy_id_raises(service, store):
    store.find_copy_by_id.return_value = None

    with pytest.raises(CopyUnavailableError):
        service.borrow_copy_by_id(404, "a@x.com")

    assert_nothing_saved(store)


def test_borrow_already_borrowed_copy_by_id_raises(service, store, copy):
    copy.status = CopyStatus.BORROWED

    with pytest.raises(CopyUnavailableError):
        service.borrow_copy_by_id(1, "a@x.com")

    assert_nothing_saved(store)


def test_borrow_losing_race_on_commit_raises_copy_unavailable(service, store):
    store.commit.side_effect = ConstraintViolationError("commit", "UNIQUE constraint failed")

    with pytest.raises(CopyUnavailableError):
        service.borrow_copy("central", 42, "a@x.com")


def test_return_sets_copy_status_to_available(service, store, copy):
    copy.status = CopyStatus.BORROWED

    service.return_copy(9)

    assert copy.status == CopyStatus.AVAILABLE
    store.save_copy.assert_called_once_with(copy)


def test_return_sets_loan_end_date(service, store, loan):
    returned = service.return_copy(9)

    assert returned is loan
    assert returned.end_date == NOW
    assert returned.end_date >= returned.start_date
    store.close_loan.assert_called_once_with(loan, NOW)
    store.commit.assert_called_once()


def test_return_missing_loan_raises(service, store):
    store.find_loan_by_id.return_value = None

    with pytest.raises(LoanNotExistsError):
        service.return_copy(9)

    assert_nothing_saved(store)


def test_return_closed_loan_is_a_no_op(service, store, loan, copy):
    closed_at = datetime(2024, 3, 5, tzinfo=timezone.utc)
    loan.end_date = closed_at
    copy.status = CopyStatus.BORROWED

    returned = service.return_copy(9)

    assert returned is loan
    assert returned.end_date == closed_at
    assert copy.status == CopyStatus.BORROWED
    assert_nothing_saved(store)


def test_default_clock_is_timezone_aware(store):
    loan = LoanService(store).borrow_copy("central", 42, "a@x.com")

    assert loan.start_date.tzinfo is not None
    assert (datetime.now(timezone.utc) - loan.start_date).total_seconds() < 5


def test_return_closed_concurrently_leaves_copy_untouched(service, store, loan, copy):
    closed_at = datetime(2024, 3, 8, 12, 29, tzinfo=timezone.utc)

    def closed_elsewhere(loan, end_date):
        loan.end_date = closed_at
        return False

    store.close_loan.side_effect = closed_elsewhere
    copy.status = CopyStatus.BORROWED

    returned = service.return_copy(9)

    assert returned.end_date == closed_at
    assert copy.status == CopyStatus.BORROWED
    store.save_copy.assert_not_called()
    store.commit.assert_not_called()
    store.rollback.assert_called_once()


def test_borrow_adds_loan_before_flushing_copy(service, store, copy):
    loan = service.borrow_copy("central", 42, "a@x.com")

    saves = [c for c in store.method_calls if c[0] in ("save_loan", "save_copy")]
    assert saves == [call.save_loan(loan), call.save_copy(copy)]
