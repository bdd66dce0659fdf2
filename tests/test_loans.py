from datetime import date

import pytest

from conftest import raw_loan
from loans import (BorrowedBook, BorrowedBooksView, LoanNotFound, LoanState, NotAuthenticated,
                   RenewStatus, StudentProfile, UNAUTHENTICATED, UserSession, ValidationFailure,
                   days_remaining, due_status, filter_loans, load_loans, loan_state, loan_stats,
                   matches_all, refresh_overdue, remove_returned, renew)


@pytest.fixture
def records():
    return load_loans([
        raw_loan(id=1, title='Calculus', author='James Stewart', genre='Mathématiques'),
        raw_loan(id=2, title='Modern Physics', author='Kenneth Krane', genre='Physique', renewal_count=2),
        raw_loan(id=3, title='Psychologie', author='David Myers', genre='Sciences humaines', is_overdue=True),
    ])

# ----------------- load -----------------

def test_load_defaults_for_missing_fields():
    [loan] = load_loans([{'id': 4, 'title': 'Algorithms'}])
    assert loan.renewal_count == 0
    assert loan.max_renewals == 2
    assert loan.is_overdue is False
    assert loan.cover_url == ''


def test_load_accepts_both_naming_conventions():
    [snake, camel] = load_loans([
        {'id': 1, 'borrow_date': '2025-01-02', 'due_date': '2025-02-01', 'renewal_count': 1,
         'max_renewals': 3, 'is_overdue': True, 'cover_url': 'http://img/1.png'},
        {'id': 2, 'borrowDate': '2025-01-02', 'dueDate': '2025-02-01', 'renewalCount': 1,
         'maxRenewals': 3, 'isOverdue': True, 'coverImage': 'http://img/2.png'},
    ])
    for loan in (snake, camel):
        assert loan.borrow_date == '2025-01-02'
        assert loan.due_date == '2025-02-01'
        assert (loan.renewal_count, loan.max_renewals, loan.is_overdue) == (1, 3, True)
    assert camel.cover_url == 'http://img/2.png'


def test_load_normalizes_backend_date_formats():
    [loan] = load_loans([{'id': 1, 'borrow_date': 'Wed, 01 Jan 2025 00:00:00 GMT',
                          'due_date': '2025-01-31T00:00:00'}])
    assert loan.borrow_date == '2025-01-01'
    assert loan.due_date == '2025-01-31'


def test_load_tolerates_malformed_fields():
    [loan] = load_loans([{'id': 1, 'renewal_count': 'x', 'due_date': 'someday'}])
    assert loan.renewal_count == 0
    assert loan.due_date == 'someday'


def test_load_reads_string_overdue_flags():
    loans = load_loans([{'id': 1, 'is_overdue': 'false'}, {'id': 2, 'isOverdue': '0'},
                        {'id': 3, 'is_overdue': 'true'}, {'id': 4, 'is_overdue': 'peut-être'},
                        {'id': 5, 'is_overdue': 1}])
    assert [l.is_overdue for l in loans] == [False, False, True, False, True]


def test_string_false_overdue_flag_still_renews():
    records = load_loans([raw_loan(id=1, is_overdue='false')])
    _, outcome = renew(records, 1, today=date(2025, 2, 1))
    assert outcome.status is RenewStatus.RENEWED


def test_load_preserves_order():
    loans = load_loans([{'id': 9}, {'id': 2}, {'id': 5}])
    assert [l.id for l in loans] == [9, 2, 5]


def test_profile_defaults():
    profile = StudentProfile.from_raw({'name': 'Awa', 'email': 'awa@univ.edu'}, '7', date(2025, 2, 1))
    assert profile.student_id == '7'
    assert profile.status == 'active'
    assert profile.max_books == 5
    assert profile.registration_date == '2025-02-01'


def test_profile_from_non_json_body_uses_defaults():
    profile = StudentProfile.from_raw('<html>oops</html>', '7', date(2025, 2, 1))
    assert profile.id == '7'
    assert profile.name == ''
    assert profile.student_id == '7'

# ----------------- days_remaining -----------------

def test_days_remaining_overdue_is_negative():
    assert days_remaining('2025-01-01', today='2025-01-10') == -9


def test_days_remaining_due_today_and_future():
    assert days_remaining('2025-01-10', today=date(2025, 1, 10)) == 0
    assert days_remaining('2025-01-13', today=date(2025, 1, 10)) == 3


def test_days_remaining_rejects_unparsable_date():
    with pytest.raises(ValueError):
        days_remaining('someday', today='2025-01-10')

# ----------------- filter -----------------

def test_empty_query_returns_everything_in_order(records):
    assert list(filter_loans(records, '')) == records


def test_filter_is_case_insensitive(records):
    assert [l.id for l in filter_loans(records, 'calc')] == [1]
    assert [l.id for l in filter_loans(records, 'KRANE')] == [2]
    assert [l.id for l in filter_loans(records, 'humaines')] == [3]


def test_filter_is_restartable_and_does_not_mutate(records):
    before = list(records)
    view = filter_loans(records, 'i')
    assert list(view) == list(view)
    assert len(view) == 3
    assert records == before


def test_matches_all_requires_every_criterion():
    book = {'title': 'Calculus', 'author': 'Stewart', 'genre': 'Maths'}
    assert matches_all(book, {'title': 'calc', 'author': '', 'genre': 'math'})
    assert not matches_all(book, {'title': 'calc', 'author': 'cormen', 'genre': ''})

# ----------------- renew -----------------

def test_renew_valid_record(records):
    renewed, outcome = renew(records, 1, today=date(2025, 2, 1))
    assert outcome.status is RenewStatus.RENEWED
    assert outcome.new_due_date == '2025-03-03'
    assert renewed[0].due_date == '2025-03-03'
    assert renewed[0].renewal_count == records[0].renewal_count + 1
    assert renewed[1:] == records[1:]
    assert [l.id for l in renewed] == [1, 2, 3]


def test_renew_scenario_reaches_limit():
    records = load_loans([{'id': 1, 'renewalCount': 1, 'maxRenewals': 2, 'isOverdue': False,
                           'dueDate': '2025-01-01'}])
    renewed, outcome = renew(records, 1, today='2025-02-01')
    assert renewed[0].renewal_count == 2
    assert renewed[0].due_date == '2025-03-03'
    assert loan_state(renewed[0]) is LoanState.RENEWAL_EXHAUSTED


def test_renew_limit_reached_leaves_state_unchanged(records):
    before = list(records)
    renewed, outcome = renew(records, 2, today=date(2025, 2, 1))
    assert outcome.status is RenewStatus.LIMIT_REACHED
    assert renewed == before


def test_renew_overdue_is_blocked(records):
    before = list(records)
    renewed, outcome = renew(records, 3, today=date(2025, 2, 1))
    assert outcome.status is RenewStatus.BLOCKED_OVERDUE
    assert renewed == before


def test_overdue_check_comes_before_limit_check():
    records = [BorrowedBook(id=1, renewal_count=2, max_renewals=2, is_overdue=True)]
    _, outcome = renew(records, 1, today=date(2025, 2, 1))
    assert outcome.status is RenewStatus.BLOCKED_OVERDUE


def test_renew_unknown_id(records):
    renewed, outcome = renew(records, 42)
    assert outcome.status is RenewStatus.NOT_FOUND
    assert renewed == records

# ----------------- remove_returned -----------------

def test_remove_returned_shrinks_by_one(records):
    remaining = remove_returned(records, 2)
    assert [l.id for l in remaining] == [1, 3]
    assert len(records) == 3


def test_remove_returned_twice_raises(records):
    remaining = remove_returned(records, 2)
    with pytest.raises(LoanNotFound):
        remove_returned(remaining, 2)


def test_remove_returned_drops_a_single_record():
    records = load_loans([{'id': 1}, {'id': 2, 'title': 'first'}, {'id': 2, 'title': 'second'}])
    remaining = remove_returned(records, 2)
    assert len(remaining) == len(records) - 1
    assert [(l.id, l.title) for l in remaining] == [(1, ''), (2, 'second')]

# ----------------- state & display -----------------

def test_loan_states(records):
    assert [loan_state(l) for l in records] == [LoanState.ACTIVE, LoanState.RENEWAL_EXHAUSTED,
                                                LoanState.OVERDUE]


def test_due_status_buckets():
    today = date(2025, 2, 1)
    assert due_status(BorrowedBook(id=1, due_date='2025-02-20'), today) == ('on_time', 19)
    assert due_status(BorrowedBook(id=1, due_date='2025-02-03'), today) == ('due_soon', 2)
    assert due_status(BorrowedBook(id=1, due_date='2025-01-25', is_overdue=True), today) == ('overdue', 7)
    assert due_status(BorrowedBook(id=1, due_date=''), today).kind == 'unknown'


def test_backend_overdue_flag_is_trusted_by_default():
    [loan] = load_loans([raw_loan(due_date='2025-01-01', is_overdue=False)])
    assert due_status(loan, date(2025, 2, 1)).kind == 'due_soon'


def test_refresh_overdue_derives_flag_from_due_date():
    records = load_loans([raw_loan(id=1, due_date='2025-01-01'), raw_loan(id=2, due_date='2025-03-01',
                                                                          is_overdue=True)])
    refreshed = refresh_overdue(records, date(2025, 2, 1))
    assert [l.is_overdue for l in refreshed] == [True, False]


def test_loan_stats(records):
    assert loan_stats(records) == {'borrowed': 3, 'overdue': 1, 'renewals': 2}

# ----------------- BorrowedBooksView -----------------

def test_view_refuses_unauthenticated_session(backend):
    with pytest.raises(NotAuthenticated):
        BorrowedBooksView(UNAUTHENTICATED, backend)


def test_view_backend_renewal_is_sent_before_local_change(backend):
    backend.loans = [raw_loan(id=1)]
    view = BorrowedBooksView(UserSession('7'), backend, today=date(2025, 2, 1))
    view.refresh()
    outcome = view.renew(1, idempotency_key='k1')
    assert backend.called('renew_book') == [('renew_book', ('7', 1, '2025-03-03'), {'idempotency_key': 'k1'})]
    assert view.find(1).due_date == outcome.new_due_date == '2025-03-03'


def test_view_backend_renewal_rejected_keeps_records(backend):
    from backend import BackendRejected
    backend.loans = [raw_loan(id=1)]
    backend.fail['renew_book'] = BackendRejected(404, 'Not Found')
    view = BorrowedBooksView(UserSession('7'), backend, today=date(2025, 2, 1))
    before = view.refresh()
    with pytest.raises(BackendRejected):
        view.renew(1)
    assert view.records == before


def test_view_local_renewal_never_calls_backend(backend):
    backend.loans = [raw_loan(id=1)]
    view = BorrowedBooksView(UserSession('7'), backend, today=date(2025, 2, 1), renewal_mode='local')
    view.refresh()
    view.renew(1)
    assert backend.called('renew_book') == []
    assert view.find(1).renewal_count == 1


def test_view_renewal_validation_failure(backend):
    backend.loans = [raw_loan(id=1, is_overdue=True)]
    view = BorrowedBooksView(UserSession('7'), backend, today=date(2025, 2, 1))
    view.refresh()
    with pytest.raises(ValidationFailure, match='en retard'):
        view.renew(1)
    assert backend.called('renew_book') == []


def test_view_return_calls_backend_then_removes(backend):
    backend.loans = [raw_loan(id=1), raw_loan(id=2)]
    view = BorrowedBooksView(UserSession('7'), backend)
    view.refresh()
    returned = view.return_book(2)
    assert returned.id == 2
    assert [l.id for l in view.records] == [1]
    assert len(backend.called('return_book')) == 1


def test_view_return_unknown_loan_skips_backend(backend):
    view = BorrowedBooksView(UserSession('7'), backend)
    view.refresh()
    with pytest.raises(LoanNotFound):
        view.return_book(5)
    assert backend.called('return_book') == []


def test_view_derive_overdue(backend):
    backend.loans = [raw_loan(id=1, due_date='2025-01-01')]
    view = BorrowedBooksView(UserSession('7'), backend, today=date(2025, 2, 1), derive_overdue=True)
    assert view.refresh()[0].is_overdue is True
