"""
MonLivre - university library pages (single Flask app over a REST backend)

Features:
- Landing, login, registration
- Book catalog with title / author / genre filters and borrowing
- Student dashboard: profile, borrowed books, renew and return
- Admin CRUD over books and student accounts

All data lives in the backend service (BACKEND_URL); this app renders pages
and calls it with requests through backend.BackendClient.

Run:
1. pip install -e .
2. BACKEND_URL=http://localhost:5000 python monlivre.py
3. Open http://127.0.0.1:3000 in your browser
"""
from flask import Flask, g, request, redirect, url_for, render_template_string, flash, session
from datetime import date
from functools import wraps
import logging
import os
import secrets

from backend import BackendClient, MonLivreError
from loans import (BorrowedBooksView, StudentProfile, UserSession, UNAUTHENTICATED,
                   LoanNotFound, NotAuthenticated, ValidationFailure,
                   due_status, loan_state, matches_all, matches_any, parse_date)


def _env_flag(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'replace-with-a-secure-key'
    BACKEND_URL = os.environ.get('BACKEND_URL', 'http://localhost:5000')
    BACKEND_TIMEOUT = float(os.environ.get('BACKEND_TIMEOUT', 10))
    # 'backend': the backend must accept a renewal; 'local': advisory only
    RENEWAL_MODE = os.environ.get('RENEWAL_MODE', 'backend')
    RENEWAL_DAYS = int(os.environ.get('RENEWAL_DAYS', 30))
    DUE_SOON_DAYS = int(os.environ.get('DUE_SOON_DAYS', 3))
    DERIVE_OVERDUE = _env_flag('DERIVE_OVERDUE')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    PORT = int(os.environ.get('PORT', 3000))


app = Flask(__name__)
app.config.from_object(Config)

# ----------------- Backend & session helpers -----------------

def get_backend():
    backend = getattr(g, '_backend', None)
    if backend is None:
        backend = g._backend = BackendClient(app.config['BACKEND_URL'],
                                             timeout=app.config['BACKEND_TIMEOUT'])
    return backend


@app.teardown_appcontext
def close_backend(exception):
    backend = getattr(g, '_backend', None)
    if backend is not None:
        backend.close()


def today():
    return date.today()


def current_session():
    user_id = session.get('user_id')
    if not user_id:
        return UNAUTHENTICATED
    return UserSession(str(user_id), bool(session.get('is_admin')))


def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not current_session().authenticated:
            flash(str(NotAuthenticated()), 'error')
            return redirect(url_for('login'))
        return view(*args, **kwargs)
    return wrapped


def admin_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        user = current_session()
        if not user.authenticated:
            flash(str(NotAuthenticated()), 'error')
            return redirect(url_for('login'))
        if not user.is_admin:
            app.logger.warning('Admin page refused for user_id=%s', user.user_id)
            flash('Accès réservé aux administrateurs.', 'error')
            return redirect(url_for('student_dashboard'))
        return view(*args, **kwargs)
    return wrapped


def report(error, action, prefix=''):
    """Push a failed user action onto the notification queue."""
    app.logger.warning('%s failed: %s', action, error)
    flash(f'{prefix}{error}', 'error')

# ----------------- Double-submit guard -----------------

MAX_ACTION_TOKENS = 20


@app.template_global()
def action_token():
    token = getattr(g, '_action_token', None)
    if token is None:
        token = g._action_token = secrets.token_urlsafe(16)
        # oldest pages expire first
        session['action_tokens'] = (session.get('action_tokens', []) + [token])[-MAX_ACTION_TOKENS:]
    return token


def consume_action_token():
    """Returns the submitted token if it was issued and not used yet, else None."""
    submitted = request.form.get('action_token')
    issued = session.get('action_tokens', [])
    if not submitted or submitted not in issued:
        app.logger.info('Stale or repeated action refused on %s', request.path)
        flash('Cette action a déjà été traitée.', 'warning')
        return None
    session['action_tokens'] = [t for t in issued if t != submitted]
    return submitted

# ----------------- Template helpers -----------------

@app.template_filter('frdate')
def frdate(value):
    parsed = parse_date(value)
    return parsed.strftime('%d/%m/%Y') if parsed else (value or '-')


@app.template_filter('status_label')
def status_label(status):
    if status.kind == 'overdue':
        return f'En retard ({status.days} jours)' if status.days is not None else 'En retard'
    if status.kind == 'due_soon':
        plural = 's' if status.days > 1 else ''
        return f'{status.days} jour{plural} restant{plural}'
    if status.kind == 'on_time':
        return f'À jour ({status.days} jours)'
    return '-'


LAYOUT_HTML = '''
<!doctype html>
<title>{{ title }} - MonLivre</title>
<h1><a href="{{ url_for('home') }}">MonLivre</a></h1>
<p>
  <a href="{{ url_for('catalog') }}">Catalogue des livres</a>
  {% if session.get('user_id') %}
    | <a href="{{ url_for('student_dashboard') }}">Mon espace</a>
    {% if session.get('is_admin') %}| <a href="{{ url_for('admin_dashboard') }}">Administration</a>{% endif %}
    | <a href="{{ url_for('logout') }}">Déconnexion</a>
  {% else %}
    | <a href="{{ url_for('login') }}">Connexion</a> | <a href="{{ url_for('register') }}">Inscription</a>
  {% endif %}
</p>
{% with messages = get_flashed_messages(with_categories=true) %}
  {% if messages %}
    <ul class="notifications">
    {% for severity, m in messages %}
      <li class="{{ severity }}">{{ m }}</li>
    {% endfor %}
    </ul>
  {% endif %}
{% endwith %}
<hr>
{{ body|safe }}
'''


def render_page(template, title, **context):
    body = render_template_string(template, **context)
    return render_template_string(LAYOUT_HTML, body=body, title=title)

# ----------------- Routes: Home / Accounts -----------------

POPULAR_BOOKS = [
    {'title': 'Data Structures and Algorithms', 'author': 'Thomas H. Cormen', 'genre': 'Computer Science', 'rating': 4.8},
    {'title': 'Introduction à la Psychologie', 'author': 'David G. Myers', 'genre': 'Psychologie', 'rating': 4.6},
    {'title': 'Calculus: Early Transcendentals', 'author': 'James Stewart', 'genre': 'Mathématiques', 'rating': 4.5},
    {'title': 'Modern Physics', 'author': 'Kenneth S. Krane', 'genre': 'Physiques', 'rating': 4.7},
]

HOME_HTML = '''
<h2>Bienvenue sur MonLivre</h2>
<p>Votre passerelle vers la connaissance. Gérez vos livres empruntés et explorez notre collection.</p>
<h3>Livres populaires</h3>
<ul>
{% for b in books %}
  <li><strong>{{ b['title'] }}</strong> par {{ b['author'] }} ({{ b['genre'] }}) - {{ b['rating'] }}/5</li>
{% endfor %}
</ul>
'''

@app.route('/')
def home():
    return render_page(HOME_HTML, 'Accueil', books=POPULAR_BOOKS)

LOGIN_HTML = '''
<h2>Connexion</h2>
<form method="post">
  Email: <input name="email" type="email" value="{{ email }}"><br>
  Mot de passe: <input name="password" type="password"><br>
  <button>Se connecter</button>
</form>
<p><a href="{{ url_for('register') }}">Créer un compte</a></p>
'''

@app.route('/login', methods=['GET','POST'])
def login():
    email = ''
    if request.method == 'POST':
        email = request.form.get('email','').strip()
        password = request.form.get('password','')
        if not email or not password:
            flash('Veuillez remplir tous les champs.', 'error')
            return render_page(LOGIN_HTML, 'Connexion', email=email)
        try:
            data = get_backend().login(email, password) or {}
        except MonLivreError as e:
            app.logger.warning('Failed login for email=%s: %s', email, e)
            flash(f'Échec de la connexion : {e}', 'error')
            return render_page(LOGIN_HTML, 'Connexion', email=email)
        user_id = (data.get('userId') or data.get('id')) if isinstance(data, dict) else None
        if not user_id:
            flash('Échec de la connexion : réponse du serveur invalide.', 'error')
            return render_page(LOGIN_HTML, 'Connexion', email=email)
        session.clear()
        session['user_id'] = str(user_id)
        session['is_admin'] = bool(data.get('is_admin'))
        app.logger.info('User logged in user_id=%s admin=%s', user_id, session['is_admin'])
        flash('Connexion réussie ! Bienvenue sur MonLivre.', 'success')
        if session['is_admin']:
            return redirect(url_for('admin_dashboard'))
        return redirect(url_for('student_dashboard'))
    return render_page(LOGIN_HTML, 'Connexion', email=email)

REGISTER_HTML = '''
<h2>Inscription</h2>
<form method="post">
  Nom: <input name="name" value="{{ form.get('name','') }}"><br>
  Email: <input name="email" type="email" value="{{ form.get('email','') }}"><br>
  Mot de passe: <input name="password" type="password"><br>
  Confirmer: <input name="confirm_password" type="password"><br>
  <button>Créer le compte</button>
</form>
'''

@app.route('/register', methods=['GET','POST'])
def register():
    form = request.form
    if request.method == 'POST':
        name = form.get('name','').strip()
        email = form.get('email','').strip()
        password = form.get('password','')
        if password != form.get('confirm_password',''):
            flash('Les mots de passe ne correspondent pas.', 'error')
        elif not (name and email and password):
            flash('Veuillez remplir tous les champs.', 'error')
        else:
            try:
                get_backend().signup(name, email, password)
            except MonLivreError as e:
                report(e, 'Signup')
            else:
                app.logger.info('Account created for email=%s', email)
                flash('Compte créé. Veuillez vous connecter.', 'success')
                return redirect(url_for('login'))
    return render_page(REGISTER_HTML, 'Inscription', form=form)

@app.route('/logout')
def logout():
    session.clear()
    flash('Vous êtes déconnecté.', 'info')
    return redirect(url_for('login'))

# ----------------- Catalog -----------------

CATALOG_HTML = '''
<h2>Livres disponibles ({{ books|length }})</h2>
<form method="get">
  <input name="title" placeholder="Titre" value="{{ criteria['title'] }}">
  <input name="author" placeholder="Auteur" value="{{ criteria['author'] }}">
  <input name="genre" placeholder="Genre" value="{{ criteria['genre'] }}">
  <button>Rechercher</button>
</form>
<ul>
{% for b in books %}
  <li>
    <img src="{{ b.get('cover_url') or '/static/placeholder.svg' }}" alt="Couverture de {{ b['title'] }}" width="48">
    <strong>{{ b['title'] }}</strong> par {{ b['author'] }} ({{ b['genre'] }}) - exemplaires: {{ b.get('available_copies', '-') }}
    [<a href="{{ url_for('book_details', book_id=b['id']) }}">détails</a>]
    {% if b.get('available_copies', 1) %}[<a href="{{ url_for('borrow_book', book_id=b['id']) }}">emprunter</a>]{% endif %}
  </li>
{% else %}
  <li>Aucun livre trouvé.</li>
{% endfor %}
</ul>
'''

def fetch_catalog():
    try:
        return get_backend().list_books()
    except MonLivreError as e:
        report(e, 'Catalog load')
        return []


def find_book(books, book_id):
    return next((b for b in books if b.get('id') == book_id), None)


@app.route('/books')
def catalog():
    criteria = {f: request.args.get(f, '').strip() for f in ('title', 'author', 'genre')}
    books = [b for b in fetch_catalog() if matches_all(b, criteria)]
    return render_page(CATALOG_HTML, 'Catalogue', books=books, criteria=criteria)

BOOK_DETAILS_HTML = '''
<h2>{{ book['title'] }}</h2>
<a href="{{ url_for('catalog') }}">Retour au catalogue</a>
{% if book.get('cover_url') %}<p><img src="{{ book['cover_url'] }}" alt="Couverture de {{ book['title'] }}" width="120"></p>{% endif %}
<ul>
  <li>Auteur: {{ book['author'] }}</li>
  <li>Genre: {{ book['genre'] }}</li>
  <li>ISBN: {{ book.get('isbn') or '-' }}</li>
  <li>Année: {{ book.get('published_year') or '-' }}</li>
  <li>Exemplaires disponibles: {{ book.get('available_copies', '-') }}</li>
</ul>
'''

@app.route('/books/<int:book_id>')
def book_details(book_id):
    book = find_book(fetch_catalog(), book_id)
    if not book:
        flash('Livre introuvable.', 'error')
        return redirect(url_for('catalog'))
    return render_page(BOOK_DETAILS_HTML, book['title'], book=book)

BORROW_HTML = '''
<h2>Emprunter « {{ book['title'] }} »</h2>
<a href="{{ url_for('catalog') }}">Retour</a>
<form method="post">
  <input type="hidden" name="action_token" value="{{ action_token() }}">
  Date de retour: <input name="date" type="date" value="{{ return_date }}"><br>
  <button>Confirmer l'emprunt</button>
</form>
'''

@app.route('/books/<int:book_id>/borrow', methods=['GET','POST'])
@login_required
def borrow_book(book_id):
    book = find_book(fetch_catalog(), book_id)
    if not book:
        flash('Livre introuvable.', 'error')
        return redirect(url_for('catalog'))
    return_date = ''
    if request.method == 'POST':
        return_date = request.form.get('date','').strip()
        token = consume_action_token()
        if token is None:
            return redirect(url_for('catalog'))
        if parse_date(return_date) is None:
            flash('Veuillez choisir une date de retour.', 'error')
            return render_page(BORROW_HTML, 'Emprunt', book=book, return_date=return_date)
        user = current_session()
        try:
            get_backend().borrow_book(user.user_id, book_id, book['title'], return_date,
                                      idempotency_key=token)
        except MonLivreError as e:
            report(e, 'Borrow', "Erreur lors de l'emprunt : ")
            return render_page(BORROW_HTML, 'Emprunt', book=book, return_date=return_date)
        app.logger.info('Book borrowed user_id=%s book_id=%s', user.user_id, book_id)
        flash(f'Livre "{book["title"]}" emprunté avec succès!', 'success')
        return redirect(url_for('catalog'))
    return render_page(BORROW_HTML, 'Emprunt', book=book, return_date=return_date)

# ----------------- Student dashboard -----------------

DASHBOARD_HTML = '''
<h2>Bonjour, {{ profile.name }}!</h2>
<p><a href="{{ url_for('student_dashboard', q=query, profile=0 if show_profile else 1) }}">Mon profil</a></p>
{% if show_profile %}
<ul class="profile">
  <li>ID Étudiant: {{ profile.student_id }}</li>
  <li>Email: {{ profile.email }}</li>
  <li>Inscription: {{ profile.registration_date|frdate }}</li>
  <li>Statut: {{ profile.status }}</li>
</ul>
{% endif %}
<p>
  Livres empruntés: {{ stats['borrowed'] }} |
  En retard: {{ stats['overdue'] }} |
  Renouvellements: {{ stats['renewals'] }}
</p>
<form method="get" action="{{ url_for('student_dashboard') }}">
  <input name="q" placeholder="Rechercher dans mes livres..." value="{{ query }}">
  <button>Rechercher</button>
</form>
<h3>Mes livres empruntés ({{ loans|length }})</h3>
{% if not loans %}
  {% if stats['borrowed'] == 0 %}
    <p>Aucun livre emprunté. <a href="{{ url_for('catalog') }}">Parcourir le catalogue</a></p>
  {% else %}
    <p>Aucun livre trouvé. Essayez une recherche différente.</p>
  {% endif %}
{% else %}
<table border="1" cellpadding="6">
<tr><th>Couverture</th><th>Livre</th><th>Genre</th><th>Date d'emprunt</th><th>Date de retour</th><th>Statut</th><th>Renouvellements</th><th>Actions</th></tr>
{% for l in loans %}
  {% set status = due_status(l) %}
  <tr class="{{ loan_state(l).value }}">
    <td><img src="{{ l.cover_url or '/static/placeholder.svg' }}" alt="Couverture de {{ l.title }}" width="48"></td>
    <td>{{ l.title }}<br>par {{ l.author }}<br><code>{{ l.isbn }}</code></td>
    <td>{{ l.genre }}</td>
    <td>{{ l.borrow_date|frdate }}</td>
    <td>{{ l.due_date|frdate }}</td>
    <td class="{{ status.kind }}">{{ status|status_label }}</td>
    <td>{{ l.renewal_count }}/{{ l.max_renewals }}</td>
    <td>
      <a href="{{ url_for('loan_details', loan_id=l.id) }}">détails</a>
      <form method="post" action="{{ url_for('renew_loan', loan_id=l.id) }}" style="display:inline;">
        <input type="hidden" name="action_token" value="{{ action_token() }}">
        <button {% if loan_state(l).value != 'active' %}disabled{% endif %}>Renouveler</button>
      </form>
      <form method="post" action="{{ url_for('return_loan', loan_id=l.id) }}" style="display:inline;" onsubmit="return confirm('Êtes-vous sûr de vouloir retourner « {{ l.title }} » ?');">
        <input type="hidden" name="action_token" value="{{ action_token() }}">
        <button>Retourner</button>
      </form>
    </td>
  </tr>
{% endfor %}
</table>
{% endif %}
<h3>Règles d'emprunt</h3>
<ul>
  <li>Durée d'emprunt : {{ renewal_days }} jours</li>
  <li>Maximum {{ profile.max_books }} livres simultanément</li>
  <li>Pas de renouvellement si le livre est en retard</li>
</ul>
'''

ERROR_HTML = '''
<p class="error">{{ message }}</p>
'''

def dashboard_view():
    return BorrowedBooksView(current_session(), get_backend(), today(),
                             renewal_mode=app.config['RENEWAL_MODE'],
                             renewal_days=app.config['RENEWAL_DAYS'],
                             derive_overdue=app.config['DERIVE_OVERDUE'])


def load_profile(user):
    raw = get_backend().get_profile(user.user_id) or {}
    return StudentProfile.from_raw(raw, user.user_id, today())


def render_dashboard(view, profile):
    query = request.args.get('q', '').strip()
    current_day = today()
    due_soon = app.config['DUE_SOON_DAYS']
    return render_page(DASHBOARD_HTML, 'Mon espace',
                       profile=profile, loans=view.visible(query), stats=view.stats(),
                       query=query, show_profile=request.args.get('profile') == '1',
                       renewal_days=app.config['RENEWAL_DAYS'], loan_state=loan_state,
                       due_status=lambda l: due_status(l, current_day, due_soon))


@app.route('/student')
@login_required
def student_dashboard():
    view = dashboard_view()
    try:
        profile = load_profile(view.session)
        view.refresh()
    except MonLivreError as e:
        app.logger.warning('Dashboard load failed for user_id=%s: %s', view.session.user_id, e)
        return render_page(ERROR_HTML, 'Erreur', message=str(e))
    return render_dashboard(view, profile)

LOAN_DETAILS_HTML = '''
<h2>{{ l.title }}</h2>
<a href="{{ url_for('student_dashboard') }}">Retour</a>
<ul>
  <li>Auteur: {{ l.author }}</li>
  <li>Genre: {{ l.genre }}</li>
  <li>ISBN: {{ l.isbn }}</li>
  <li>Date d'emprunt: {{ l.borrow_date|frdate }}</li>
  <li>Date de retour: {{ l.due_date|frdate }}</li>
  <li>Renouvellements: {{ l.renewal_count }}/{{ l.max_renewals }}</li>
  <li>Statut: {{ 'En retard' if l.is_overdue else 'À jour' }}</li>
</ul>
'''

@app.route('/student/loans/<int:loan_id>')
@login_required
def loan_details(loan_id):
    view = dashboard_view()
    try:
        view.refresh()
    except MonLivreError as e:
        report(e, 'Loan details')
        return redirect(url_for('student_dashboard'))
    loan = view.find(loan_id)
    if loan is None:
        flash(str(LoanNotFound(loan_id)), 'error')
        return redirect(url_for('student_dashboard'))
    return render_page(LOAN_DETAILS_HTML, loan.title, l=loan)


@app.route('/student/loans/<int:loan_id>/renew', methods=['POST'])
@login_required
def renew_loan(loan_id):
    token = consume_action_token()
    if token is None:
        return redirect(url_for('student_dashboard'))
    view = dashboard_view()
    try:
        profile = load_profile(view.session)
        view.refresh()
    except MonLivreError as e:
        report(e, 'Renewal')
        return render_page(ERROR_HTML, 'Erreur', message=str(e))
    try:
        outcome = view.renew(loan_id, idempotency_key=token)
    except ValidationFailure as e:
        flash(str(e), 'warning')
    except MonLivreError as e:
        report(e, 'Renewal')
    else:
        app.logger.info('Loan renewed user_id=%s loan_id=%s due=%s mode=%s',
                        view.session.user_id, loan_id, outcome.new_due_date, view.renewal_mode)
        flash(f'Emprunt renouvelé jusqu\'au {frdate(outcome.new_due_date)}', 'success')
    # rendered in place so a local-mode renewal is visible
    return render_dashboard(view, profile)


@app.route('/student/loans/<int:loan_id>/return', methods=['POST'])
@login_required
def return_loan(loan_id):
    token = consume_action_token()
    if token is None:
        return redirect(url_for('student_dashboard'))
    view = dashboard_view()
    try:
        view.refresh()
        loan = view.return_book(loan_id, idempotency_key=token)
    except MonLivreError as e:
        report(e, 'Return', 'Erreur lors du retour : ')
    else:
        app.logger.info('Book returned user_id=%s loan_id=%s', view.session.user_id, loan_id)
        flash(f'Livre "{loan.title}" retourné avec succès!', 'success')
    return redirect(url_for('student_dashboard'))

# ----------------- Admin -----------------

ADMIN_HTML = '''
<h2>Administration</h2>
<p>
  <a href="{{ url_for('admin_dashboard', tab='books') }}">Livres</a> |
  <a href="{{ url_for('admin_dashboard', tab='students') }}">Étudiants</a>
</p>
<form method="get">
  <input type="hidden" name="tab" value="{{ tab }}">
  <input name="q" placeholder="Rechercher..." value="{{ query }}">
  <button>Rechercher</button>
</form>
{% if tab == 'books' %}
<h3>Liste des livres ({{ items|length }})</h3>
<a href="{{ url_for('admin_add_book') }}">Ajouter un livre</a>
<table border="1" cellpadding="6">
<tr><th>Titre</th><th>Auteur</th><th>Genre</th><th>Année</th><th>Exemplaires</th><th>Actions</th></tr>
{% for b in items %}
  <tr>
    <td>{{ b['title'] }}</td><td>{{ b['author'] }}</td><td>{{ b['genre'] }}</td>
    <td>{{ b.get('published_year') or '-' }}</td><td>{{ b.get('available_copies', '-') }}</td>
    <td>
      <a href="{{ url_for('admin_edit_book', book_id=b['id']) }}">modifier</a>
      <form method="post" action="{{ url_for('admin_delete_book', book_id=b['id']) }}" style="display:inline;" onsubmit="return confirm('Êtes-vous sûr de vouloir supprimer ce livre?');">
        <input type="hidden" name="action_token" value="{{ action_token() }}">
        <button>supprimer</button>
      </form>
    </td>
  </tr>
{% else %}
  <tr><td colspan="6">Aucun livre</td></tr>
{% endfor %}
</table>
{% else %}
<h3>Liste des étudiants ({{ items|length }})</h3>
<a href="{{ url_for('admin_add_student') }}">Ajouter un étudiant</a>
<table border="1" cellpadding="6">
<tr><th>Nom</th><th>Email</th><th>Livres empruntés</th><th>Actions</th></tr>
{% for s in items %}
  <tr>
    <td>{{ s['name'] }}</td><td>{{ s['email'] }}</td><td>{{ s.get('borrowedBooks', s.get('borrowed_books', 0)) }}</td>
    <td>
      <a href="{{ url_for('admin_edit_student', student_id=s['id']) }}">modifier</a>
      <form method="post" action="{{ url_for('admin_delete_student', student_id=s['id']) }}" style="display:inline;" onsubmit="return confirm('Êtes-vous sûr de vouloir supprimer cet étudiant?');">
        <input type="hidden" name="action_token" value="{{ action_token() }}">
        <button>supprimer</button>
      </form>
    </td>
  </tr>
{% else %}
  <tr><td colspan="4">Aucun étudiant</td></tr>
{% endfor %}
</table>
{% endif %}
'''

BOOK_SEARCH_FIELDS = ('title', 'author', 'genre')
STUDENT_SEARCH_FIELDS = ('name', 'email')


@app.route('/admin')
@admin_required
def admin_dashboard():
    tab = 'students' if request.args.get('tab') == 'students' else 'books'
    query = request.args.get('q','').strip()
    backend = get_backend()
    try:
        if tab == 'books':
            items = [b for b in backend.admin_list_books() if matches_any(b, query, BOOK_SEARCH_FIELDS)]
        else:
            items = [s for s in backend.admin_list_users() if matches_any(s, query, STUDENT_SEARCH_FIELDS)]
    except MonLivreError as e:
        report(e, 'Admin load')
        items = []
    return render_page(ADMIN_HTML, 'Administration', tab=tab, query=query, items=items)

BOOK_FORM_HTML = '''
<h2>{{ heading }}</h2>
<a href="{{ url_for('admin_dashboard', tab='books') }}">Retour</a>
<form method="post" enctype="multipart/form-data">
  <input type="hidden" name="action_token" value="{{ action_token() }}">
  Titre: <input name="title" value="{{ book.get('title','') }}"><br>
  Auteur: <input name="author" value="{{ book.get('author','') }}"><br>
  Genre: <input name="genre" value="{{ book.get('genre','') }}"><br>
  ISBN: <input name="isbn" value="{{ book.get('isbn') or '' }}"><br>
  Année de publication: <input name="published_year" type="number" value="{{ book.get('published_year','') }}"><br>
  Exemplaires disponibles: <input name="available_copies" type="number" min="0" value="{{ book.get('available_copies', 1) }}"><br>
  URL de couverture: <input name="cover_url" value="{{ book.get('cover_url') or '' }}"><br>
  {% if creating %}Fichier de couverture: <input name="cover" type="file" accept="image/*"><br>{% endif %}
  <button>Enregistrer</button>
</form>
'''

BOOK_REQUIRED = ('title', 'author', 'genre', 'isbn')


def book_fields(form):
    def as_int(name, default):
        try:
            return int(form.get(name, default))
        except ValueError:
            return default
    return {
        'title': form.get('title','').strip(),
        'author': form.get('author','').strip(),
        'genre': form.get('genre','').strip(),
        'isbn': form.get('isbn','').strip(),
        'published_year': as_int('published_year', today().year),
        'available_copies': as_int('available_copies', 1),
        'cover_url': form.get('cover_url','').strip(),
    }


def missing_fields(fields, required):
    if any(not fields[f] for f in required):
        flash('Veuillez remplir tous les champs obligatoires.', 'error')
        return True
    return False


def find_admin_item(items, item_id):
    return next((i for i in items if i.get('id') == item_id), None)


@app.route('/admin/books/add', methods=['GET','POST'])
@admin_required
def admin_add_book():
    if request.method == 'POST':
        fields = book_fields(request.form)
        if missing_fields(fields, BOOK_REQUIRED):
            return render_page(BOOK_FORM_HTML, 'Livre', heading='Ajouter un livre', book=fields, creating=True)
        if consume_action_token() is None:
            return redirect(url_for('admin_dashboard', tab='books'))
        cover = request.files.get('cover')
        try:
            get_backend().admin_create_book(fields, cover=cover if cover and cover.filename else None)
        except MonLivreError as e:
            report(e, 'Book creation')
            return render_page(BOOK_FORM_HTML, 'Livre', heading='Ajouter un livre', book=fields, creating=True)
        app.logger.info('Book created title=%s', fields['title'])
        flash('Livre ajouté avec succès!', 'success')
        return redirect(url_for('admin_dashboard', tab='books'))
    return render_page(BOOK_FORM_HTML, 'Livre', heading='Ajouter un livre', book={}, creating=True)


@app.route('/admin/books/<int:book_id>/edit', methods=['GET','POST'])
@admin_required
def admin_edit_book(book_id):
    if request.method == 'POST':
        fields = book_fields(request.form)
        if missing_fields(fields, BOOK_REQUIRED):
            return render_page(BOOK_FORM_HTML, 'Livre', heading='Modifier le livre', book=fields, creating=False)
        if consume_action_token() is None:
            return redirect(url_for('admin_dashboard', tab='books'))
        try:
            get_backend().admin_update_book(book_id, fields)
        except MonLivreError as e:
            report(e, 'Book update')
            return render_page(BOOK_FORM_HTML, 'Livre', heading='Modifier le livre', book=fields, creating=False)
        app.logger.info('Book updated book_id=%s', book_id)
        flash('Livre modifié avec succès!', 'success')
        return redirect(url_for('admin_dashboard', tab='books'))
    try:
        book = find_admin_item(get_backend().admin_list_books(), book_id)
    except MonLivreError as e:
        report(e, 'Book load')
        return redirect(url_for('admin_dashboard', tab='books'))
    if not book:
        flash('Livre introuvable.', 'error')
        return redirect(url_for('admin_dashboard', tab='books'))
    return render_page(BOOK_FORM_HTML, 'Livre', heading='Modifier le livre', book=book, creating=False)


@app.route('/admin/books/<int:book_id>/delete', methods=['POST'])
@admin_required
def admin_delete_book(book_id):
    if consume_action_token() is not None:
        try:
            get_backend().admin_delete_book(book_id)
        except MonLivreError as e:
            report(e, 'Book deletion')
        else:
            app.logger.info('Book deleted book_id=%s', book_id)
            flash('Livre supprimé avec succès!', 'success')
    return redirect(url_for('admin_dashboard', tab='books'))

STUDENT_FORM_HTML = '''
<h2>{{ heading }}</h2>
<a href="{{ url_for('admin_dashboard', tab='students') }}">Retour</a>
<form method="post">
  <input type="hidden" name="action_token" value="{{ action_token() }}">
  Nom: <input name="name" value="{{ student.get('name','') }}"><br>
  Email: <input name="email" type="email" value="{{ student.get('email','') }}"><br>
  <button>Enregistrer</button>
</form>
'''

def student_fields(form):
    return {'name': form.get('name','').strip(), 'email': form.get('email','').strip()}


@app.route('/admin/students/add', methods=['GET','POST'])
@admin_required
def admin_add_student():
    if request.method == 'POST':
        fields = student_fields(request.form)
        if missing_fields(fields, ('name', 'email')):
            return render_page(STUDENT_FORM_HTML, 'Étudiant', heading='Ajouter un étudiant', student=fields)
        if consume_action_token() is None:
            return redirect(url_for('admin_dashboard', tab='students'))
        try:
            get_backend().admin_create_user(fields)
        except MonLivreError as e:
            report(e, 'Student creation')
            return render_page(STUDENT_FORM_HTML, 'Étudiant', heading='Ajouter un étudiant', student=fields)
        app.logger.info('Student created email=%s', fields['email'])
        flash('Étudiant ajouté avec succès!', 'success')
        return redirect(url_for('admin_dashboard', tab='students'))
    return render_page(STUDENT_FORM_HTML, 'Étudiant', heading='Ajouter un étudiant', student={})


@app.route('/admin/students/<int:student_id>/edit', methods=['GET','POST'])
@admin_required
def admin_edit_student(student_id):
    if request.method == 'POST':
        fields = student_fields(request.form)
        if missing_fields(fields, ('name', 'email')):
            return render_page(STUDENT_FORM_HTML, 'Étudiant', heading="Modifier l'étudiant", student=fields)
        if consume_action_token() is None:
            return redirect(url_for('admin_dashboard', tab='students'))
        try:
            get_backend().admin_update_user(student_id, fields)
        except MonLivreError as e:
            report(e, 'Student update')
            return render_page(STUDENT_FORM_HTML, 'Étudiant', heading="Modifier l'étudiant", student=fields)
        app.logger.info('Student updated student_id=%s', student_id)
        flash('Étudiant modifié avec succès!', 'success')
        return redirect(url_for('admin_dashboard', tab='students'))
    try:
        student = find_admin_item(get_backend().admin_list_users(), student_id)
    except MonLivreError as e:
        report(e, 'Student load')
        return redirect(url_for('admin_dashboard', tab='students'))
    if not student:
        flash('Étudiant introuvable.', 'error')
        return redirect(url_for('admin_dashboard', tab='students'))
    return render_page(STUDENT_FORM_HTML, 'Étudiant', heading="Modifier l'étudiant", student=student)


@app.route('/admin/students/<int:student_id>/delete', methods=['POST'])
@admin_required
def admin_delete_student(student_id):
    if consume_action_token() is not None:
        try:
            get_backend().admin_delete_user(student_id)
        except MonLivreError as e:
            report(e, 'Student deletion')
        else:
            app.logger.info('Student deleted student_id=%s', student_id)
            flash('Étudiant supprimé avec succès!', 'success')
    return redirect(url_for('admin_dashboard', tab='students'))

# ----------------- Run -----------------

if __name__ == '__main__':
    logging.basicConfig(level=app.config['LOG_LEVEL'],
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    app.run(port=app.config['PORT'], debug=True)
