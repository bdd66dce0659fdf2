"""
Borrowed-book view model for the student dashboard.

Records come from the backend, get normalized into BorrowedBook values and
are then filtered, renewed and removed locally. Functions here never touch
the network; BorrowedBooksView is the only piece that calls the backend.
"""
import enum
from collections import namedtuple
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from email.utils import parsedate_to_datetime

from backend import MonLivreError

RENEWAL_DAYS = 30
DEFAULT_MAX_RENEWALS = 2
DUE_SOON_DAYS = 3

# ----------------- Errors -----------------

class NotAuthenticated(MonLivreError):
    def __init__(self, message="Vous n'êtes pas authentifié. Veuillez vous connecter."):
        super().__init__(message)


class ValidationFailure(MonLivreError):
    pass


class LoanNotFound(ValidationFailure):
    def __init__(self, loan_id):
        super().__init__(f'Emprunt {loan_id} introuvable.')
        self.loan_id = loan_id

# ----------------- Session -----------------

@dataclass(frozen=True)
class UserSession:
    user_id: str
    is_admin: bool = False

    authenticated = True


class Unauthenticated:
    authenticated = False
    is_admin = False

    def __repr__(self):
        return 'UNAUTHENTICATED'


UNAUTHENTICATED = Unauthenticated()

# ----------------- Records -----------------

def _first(raw, *keys, default=None):
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return default


def parse_date(value):
    """Return a date for ISO dates, ISO datetimes and RFC 1123 strings, else None."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        pass
    try:
        return parsedate_to_datetime(value).date()
    except (TypeError, ValueError):
        return None


def _iso(value):
    parsed = parse_date(value)
    if parsed is None:
        return value if isinstance(value, str) else ''
    return parsed.isoformat()


def _int(value, default):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _bool(value, default=False):
    if isinstance(value, (bool, int)):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ('true', '1', 'yes'):
            return True
        if text in ('false', '0', 'no', ''):
            return False
    return default


@dataclass(frozen=True)
class BorrowedBook:
    id: int
    title: str = ''
    author: str = ''
    genre: str = ''
    isbn: str = ''
    cover_url: str = ''
    borrow_date: str = ''
    due_date: str = ''
    renewal_count: int = 0
    max_renewals: int = DEFAULT_MAX_RENEWALS
    is_overdue: bool = False

    @classmethod
    def from_raw(cls, raw):
        return cls(
            id=_int(raw.get('id'), raw.get('id')),
            title=raw.get('title') or '',
            author=raw.get('author') or '',
            genre=raw.get('genre') or '',
            isbn=raw.get('isbn') or '',
            cover_url=_first(raw, 'cover_url', 'coverUrl', 'coverImage', default=''),
            borrow_date=_iso(_first(raw, 'borrow_date', 'borrowDate')),
            due_date=_iso(_first(raw, 'due_date', 'dueDate')),
            renewal_count=_int(_first(raw, 'renewal_count', 'renewalCount'), 0),
            max_renewals=_int(_first(raw, 'max_renewals', 'maxRenewals'), DEFAULT_MAX_RENEWALS),
            is_overdue=_bool(_first(raw, 'is_overdue', 'isOverdue')),
        )


@dataclass(frozen=True)
class StudentProfile:
    id: str
    name: str
    email: str
    student_id: str
    registration_date: str
    status: str = 'active'
    max_books: int = 5

    @classmethod
    def from_raw(cls, raw, user_id, today=None):
        raw = raw if isinstance(raw, dict) else {}
        today = today or date.today()
        return cls(
            id=str(raw.get('id') or user_id),
            name=raw.get('name') or '',
            email=raw.get('email') or '',
            student_id=str(_first(raw, 'studentId', 'student_id', 'id', default=user_id)),
            registration_date=_iso(_first(raw, 'registrationDate', 'registration_date',
                                          default=today.isoformat())),
            status=raw.get('status') or 'active',
            max_books=_int(_first(raw, 'maxBooks', 'max_books'), 5),
        )


def load_loans(raw_records):
    """Normalize backend payloads in their original order."""
    return [BorrowedBook.from_raw(raw) for raw in raw_records or []]

# ----------------- Text filters -----------------

def _field(item, name):
    value = item.get(name) if isinstance(item, dict) else getattr(item, name, None)
    return '' if value is None else str(value)


def matches_any(item, query, fields):
    """True when query is a case-insensitive substring of any of fields."""
    needle = (query or '').lower()
    return any(needle in _field(item, f).lower() for f in fields)


def matches_all(item, criteria):
    """criteria maps field name to query; every field must contain its query."""
    return all(matches_any(item, q, (f,)) for f, q in criteria.items())


class FilteredView:
    """Lazy, restartable view over items; the source list is never modified."""

    def __init__(self, items, predicate):
        self._items = items
        self._predicate = predicate

    def __iter__(self):
        return (item for item in self._items if self._predicate(item))

    def __len__(self):
        return sum(1 for _ in self)

    def __bool__(self):
        return any(True for _ in self)


LOAN_SEARCH_FIELDS = ('title', 'author', 'genre')


def filter_loans(records, query):
    return FilteredView(records, lambda r: matches_any(r, query, LOAN_SEARCH_FIELDS))

# ----------------- Due dates & state -----------------

def days_remaining(due_date, today=None):
    due = parse_date(due_date)
    if due is None:
        raise ValueError(f'invalid due date: {due_date!r}')
    today = parse_date(today) if today is not None else date.today()
    return (due - today).days


class LoanState(enum.Enum):
    ACTIVE = 'active'
    RENEWAL_EXHAUSTED = 'renewal_exhausted'
    OVERDUE = 'overdue'


def loan_state(record):
    if record.is_overdue:
        return LoanState.OVERDUE
    if record.renewal_count >= record.max_renewals:
        return LoanState.RENEWAL_EXHAUSTED
    return LoanState.ACTIVE


DueStatus = namedtuple('DueStatus', 'kind days')


def due_status(record, today=None, due_soon_days=DUE_SOON_DAYS):
    """Display bucket for the status column: overdue, due_soon, on_time or unknown."""
    try:
        days = days_remaining(record.due_date, today)
    except ValueError:
        return DueStatus('overdue' if record.is_overdue else 'unknown', None)
    if record.is_overdue:
        return DueStatus('overdue', abs(days))
    if days <= due_soon_days:
        return DueStatus('due_soon', days)
    return DueStatus('on_time', days)


def refresh_overdue(records, today=None):
    """Recompute is_overdue from due_date instead of trusting the fetched flag."""
    today = parse_date(today) if today is not None else date.today()
    refreshed = []
    for r in records:
        due = parse_date(r.due_date)
        overdue = r.is_overdue if due is None else due < today
        refreshed.append(r if overdue == r.is_overdue else replace(r, is_overdue=overdue))
    return refreshed


def loan_stats(records):
    return {
        'borrowed': len(records),
        'overdue': sum(1 for r in records if r.is_overdue),
        'renewals': sum(r.renewal_count for r in records),
    }

# ----------------- Mutations -----------------

class RenewStatus(enum.Enum):
    NOT_FOUND = 'not_found'
    BLOCKED_OVERDUE = 'blocked_overdue'
    LIMIT_REACHED = 'limit_reached'
    RENEWED = 'renewed'


Outcome = namedtuple('Outcome', 'status new_due_date')


def _find(records, loan_id):
    return next((r for r in records if r.id == loan_id), None)


def renew(records, loan_id, today=None, days=RENEWAL_DAYS):
    """Returns (records, Outcome). Only a RENEWED outcome changes anything."""
    record = _find(records, loan_id)
    if record is None:
        return records, Outcome(RenewStatus.NOT_FOUND, None)
    if record.is_overdue:
        return records, Outcome(RenewStatus.BLOCKED_OVERDUE, None)
    if record.renewal_count >= record.max_renewals:
        return records, Outcome(RenewStatus.LIMIT_REACHED, None)
    today = parse_date(today) if today is not None else date.today()
    new_due = (today + timedelta(days=days)).isoformat()
    renewed = replace(record, due_date=new_due, renewal_count=record.renewal_count + 1)
    return [renewed if r is record else r for r in records], Outcome(RenewStatus.RENEWED, new_due)


def remove_returned(records, loan_id):
    record = _find(records, loan_id)
    if record is None:
        raise LoanNotFound(loan_id)
    return [r for r in records if r is not record]


RENEW_MESSAGES = {
    RenewStatus.NOT_FOUND: 'Emprunt introuvable.',
    RenewStatus.BLOCKED_OVERDUE: "Impossible de renouveler un livre en retard. Veuillez le retourner d'abord.",
    RenewStatus.LIMIT_REACHED: 'Vous avez atteint le nombre maximum de renouvellements pour ce livre.',
}

# ----------------- View -----------------

class BorrowedBooksView:
    """
    Borrowed books of one student for the lifetime of a single page render.

    renewal_mode is 'backend' (the backend must accept the renewal before the
    local record changes) or 'local' (advisory, nothing is sent).
    """

    def __init__(self, session, backend, today=None, renewal_mode='backend',
                 renewal_days=RENEWAL_DAYS, derive_overdue=False):
        if not session.authenticated:
            raise NotAuthenticated()
        self.session = session
        self.backend = backend
        self.today = parse_date(today) if today is not None else date.today()
        self.renewal_mode = renewal_mode
        self.renewal_days = renewal_days
        self.derive_overdue = derive_overdue
        self.records = []

    def refresh(self):
        self.records = load_loans(self.backend.get_borrowed_books(self.session.user_id))
        if self.derive_overdue:
            self.records = refresh_overdue(self.records, self.today)
        return self.records

    def find(self, loan_id):
        return _find(self.records, loan_id)

    def visible(self, query=''):
        return filter_loans(self.records, query)

    def stats(self):
        return loan_stats(self.records)

    def renew(self, loan_id, idempotency_key=None):
        records, outcome = renew(self.records, loan_id, self.today, self.renewal_days)
        if outcome.status is not RenewStatus.RENEWED:
            raise ValidationFailure(RENEW_MESSAGES[outcome.status])
        if self.renewal_mode == 'backend':
            self.backend.renew_book(self.session.user_id, loan_id, outcome.new_due_date,
                                    idempotency_key=idempotency_key)
        self.records = records
        return outcome

    def return_book(self, loan_id, idempotency_key=None):
        record = self.find(loan_id)
        if record is None:
            raise LoanNotFound(loan_id)
        self.backend.return_book(self.session.user_id, loan_id, idempotency_key=idempotency_key)
        self.records = remove_returned(self.records, loan_id)
        return record
