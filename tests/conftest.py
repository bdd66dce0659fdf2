from datetime import date

import pytest

import monlivre

TODAY = date(2025, 2, 1)


def raw_loan(**overrides):
    loan = {
        'id': 1,
        'title': 'Calculus',
        'author': 'James Stewart',
        'genre': 'Mathématiques',
        'isbn': '9781285741550',
        'cover_url': '',
        'borrow_date': '2025-01-05',
        'due_date': '2025-02-20',
        'renewal_count': 0,
        'max_renewals': 2,
        'is_overdue': False,
    }
    loan.update(overrides)
    return loan


class FakeBackend:
    """In-memory stand-in for backend.BackendClient."""

    def __init__(self):
        self.loans = []
        self.books = []
        self.users = []
        self.profile = {'id': 7, 'name': 'Awa Diop', 'email': 'awa@univ.edu', 'student_id': 'ETU-007'}
        self.login_response = {'userId': 7, 'is_admin': False}
        self.calls = []
        self.fail = {}

    def _call(self, name, *args, **kwargs):
        self.calls.append((name, args, kwargs))
        if name in self.fail:
            raise self.fail[name]

    def called(self, name):
        return [c for c in self.calls if c[0] == name]

    def login(self, email, password):
        self._call('login', email, password)
        return self.login_response

    def signup(self, name, email, password):
        self._call('signup', name, email, password)

    def get_profile(self, user_id):
        self._call('get_profile', user_id)
        return self.profile

    def get_borrowed_books(self, user_id):
        self._call('get_borrowed_books', user_id)
        return [dict(l) for l in self.loans]

    def return_book(self, user_id, book_id, idempotency_key=None):
        self._call('return_book', user_id, book_id, idempotency_key=idempotency_key)
        self.loans = [l for l in self.loans if l['id'] != book_id]

    def renew_book(self, user_id, book_id, due_date, idempotency_key=None):
        self._call('renew_book', user_id, book_id, due_date, idempotency_key=idempotency_key)

    def list_books(self):
        self._call('list_books')
        return self.books

    def borrow_book(self, user_id, book_id, book_name, date, idempotency_key=None):
        self._call('borrow_book', user_id, book_id, book_name, date, idempotency_key=idempotency_key)

    def admin_list_books(self):
        self._call('admin_list_books')
        return self.books

    def admin_create_book(self, fields, cover=None):
        self._call('admin_create_book', fields, cover=cover)

    def admin_update_book(self, book_id, fields):
        self._call('admin_update_book', book_id, fields)

    def admin_delete_book(self, book_id):
        self._call('admin_delete_book', book_id)

    def admin_list_users(self):
        self._call('admin_list_users')
        return self.users

    def admin_create_user(self, fields):
        self._call('admin_create_user', fields)

    def admin_update_user(self, user_id, fields):
        self._call('admin_update_user', user_id, fields)

    def admin_delete_user(self, user_id):
        self._call('admin_delete_user', user_id)


@pytest.fixture
def backend(monkeypatch):
    fake = FakeBackend()
    monkeypatch.setattr(monlivre, 'get_backend', lambda: fake)
    return fake


@pytest.fixture
def client(backend, monkeypatch):
    monkeypatch.setitem(monlivre.app.config, 'TESTING', True)
    monkeypatch.setattr(monlivre, 'today', lambda: TODAY)
    with monlivre.app.test_client() as client:
        yield client


def login_as(client, user_id='7', is_admin=False, token='tok'):
    with client.session_transaction() as s:
        s['user_id'] = user_id
        s['is_admin'] = is_admin
        s['action_tokens'] = [token]


def flashes(client):
    with client.session_transaction() as s:
        return s.get('_flashes', [])
