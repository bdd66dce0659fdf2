"""
REST client for the MonLivre backend service.

Every page in monlivre.py talks to the backend through BackendClient. The
backend owns accounts, inventory and loans; this module only moves JSON
back and forth and turns failures into MonLivreError subclasses.
"""
import logging

import requests

logger = logging.getLogger(__name__)

GENERIC_ERROR = 'Erreur inconnue'

# ----------------- Errors -----------------

class MonLivreError(Exception):
    """Base class for every error surfaced to the user as a notification."""


class NetworkFailure(MonLivreError):
    pass


class BackendRejected(MonLivreError):

    def __init__(self, status, message):
        super().__init__(message or GENERIC_ERROR)
        self.status = status

# ----------------- Client -----------------

class BackendClient:

    def __init__(self, base_url, timeout=10, http=None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.http = http or requests.Session()

    def close(self):
        self.http.close()

    def _request(self, method, path, idempotency_key=None, **kwargs):
        url = f'{self.base_url}{path}'
        headers = kwargs.pop('headers', {})
        if idempotency_key:
            headers['Idempotency-Key'] = idempotency_key
        logger.debug('%s %s', method, url)
        try:
            resp = self.http.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning('%s %s failed: %s', method, url, e)
            raise NetworkFailure('Erreur réseau. Veuillez réessayer.') from e
        if not resp.ok:
            logger.warning('%s %s -> %s', method, url, resp.status_code)
            raise BackendRejected(resp.status_code, _error_text(resp))
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            return resp.text

    # --- accounts ---

    def login(self, email, password):
        return self._request('POST', '/user/login', json={'email': email, 'password': password})

    def signup(self, name, email, password):
        return self._request('POST', '/user/signup', json={'name': name, 'email': email, 'password': password})

    def get_profile(self, user_id):
        return self._request('GET', f'/user/profile/{user_id}')

    # --- loans ---

    def get_borrowed_books(self, user_id):
        return self._request('GET', f'/user/borrowed-books/{user_id}') or []

    def return_book(self, user_id, book_id, idempotency_key=None):
        return self._request('POST', f'/user/return-book/{user_id}',
                             idempotency_key=idempotency_key, json={'book_id': book_id})

    def renew_book(self, user_id, book_id, due_date, idempotency_key=None):
        return self._request('POST', f'/user/renew-book/{user_id}',
                             idempotency_key=idempotency_key,
                             json={'book_id': book_id, 'due_date': due_date})

    # --- catalog ---

    def list_books(self):
        return self._request('GET', '/user/books') or []

    def borrow_book(self, user_id, book_id, book_name, date, idempotency_key=None):
        return self._request('POST', f'/user/books/{user_id}/borrow',
                             idempotency_key=idempotency_key,
                             json={'book_id': book_id, 'book_name': book_name, 'date': date})

    # --- admin ---

    def admin_list_books(self):
        return self._request('GET', '/admin/books') or []

    def admin_create_book(self, fields, cover=None):
        # multipart when a cover file is attached, plain form otherwise
        files = {'cover': (cover.filename, cover.stream, cover.mimetype)} if cover else None
        return self._request('POST', '/admin/books', data=fields, files=files)

    def admin_update_book(self, book_id, fields):
        return self._request('PUT', f'/admin/books/{book_id}', json=fields)

    def admin_delete_book(self, book_id):
        return self._request('DELETE', f'/admin/books/{book_id}')

    def admin_list_users(self):
        return self._request('GET', '/admin/users') or []

    def admin_create_user(self, fields):
        return self._request('POST', '/admin/users', json=fields)

    def admin_update_user(self, user_id, fields):
        return self._request('PUT', f'/admin/users/{user_id}', json=fields)

    def admin_delete_user(self, user_id):
        return self._request('DELETE', f'/admin/users/{user_id}')


def _error_text(resp):
    """Body text of a rejected response; JSON bodies contribute their message field."""
    text = (resp.text or '').strip()
    try:
        data = resp.json()
    except ValueError:
        return text
    if isinstance(data, dict):
        return data.get('message') or data.get('error') or text
    return text
