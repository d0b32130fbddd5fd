"""
HTML parsing for Aluno Online pages.

Everything that touches BeautifulSoup lives here: the login form, the paginated
discipline listing and the per-discipline class page. Raw HTML goes in, typed
records come out; a page without the expected structure raises ParseError.
"""

import re
import unicodedata
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urljoin, urlparse

from bs4 import BeautifulSoup

from ...core.exceptions import ParseError
from ...core.models import ClassRecord, DisciplineRecord, DisciplineRef

LISTING_TABLE_SELECTOR = 'table.disciplinas'
NEXT_PAGE_SELECTOR = 'a.proxima, a[rel=next]'
DISCIPLINE_NAME_SELECTOR = '.nome-disciplina'
CLASS_TABLE_SELECTOR = 'table.turmas'
LOGIN_ERROR_SELECTOR = '.erro, .alert'

# Normalized header text -> ClassRecord field
CLASS_COLUMNS = {
    'turma': 'number',
    'horario': 'schedule',
    'docente': 'professor',
    'vagas': 'vacancies',
}


def normalize_text(text):
    """Collapse whitespace (including non-breaking spaces) and strip."""
    if not text:
        return ''
    text = text.replace('\xa0', ' ').replace('\u200b', '')
    return re.sub(r'\s+', ' ', text).strip()


def _fold(text):
    """Lowercase and strip accents so 'Horário' matches 'horario'."""
    decomposed = unicodedata.normalize('NFKD', normalize_text(text))
    return ''.join(c for c in decomposed if not unicodedata.combining(c)).lower()


# ---------------------- Login ----------------------

def is_login_page(html):
    """Return True when the page asks for a password, i.e. the session is gone."""
    if not html:
        return False
    soup = BeautifulSoup(html, 'html.parser')
    return soup.find('input', {'name': 'senha'}) is not None


def extract_login_form(html) -> Tuple[str, Dict[str, str]]:
    """
    Extract the login form action and its hidden fields.

    Returns:
        tuple: (action, {hidden field name: value})

    Raises:
        ParseError: If the page has no login form
    """
    soup = BeautifulSoup(html or '', 'html.parser')
    password_box = soup.find('input', {'name': 'senha'})
    form = password_box.find_parent('form') if password_box else None
    if form is None:
        raise ParseError("Login form not found")

    fields = {}
    for hidden in form.find_all('input', {'type': 'hidden'}):
        name = hidden.get('name')
        if name:
            fields[name] = hidden.get('value', '')
    return form.get('action') or '', fields


def extract_login_error(html):
    """Return the portal's login error message, if it shows one."""
    soup = BeautifulSoup(html or '', 'html.parser')
    box = soup.select_one(LOGIN_ERROR_SELECTOR)
    return normalize_text(box.get_text(' ')) if box else ''


# ---------------------- Discipline listing ----------------------

def _discipline_id_from_href(href):
    query = parse_qs(urlparse(href).query)
    values = query.get('disciplina')
    if not values:
        return None
    return normalize_text(values[0]) or None


def parse_discipline_list(html, base_url) -> Tuple[List[DisciplineRef], Optional[str]]:
    """
    Parse one page of the discipline listing.

    Args:
        html: Listing page HTML
        base_url: URL the page was fetched from, used to resolve links

    Returns:
        tuple: (discipline references on this page, absolute URL of the next page or None)

    Raises:
        ParseError: If the listing table is missing
    """
    soup = BeautifulSoup(html or '', 'html.parser')
    table = soup.select_one(LISTING_TABLE_SELECTOR)
    if table is None:
        raise ParseError("Discipline listing table not found")

    refs = []
    seen = set()
    for anchor in table.find_all('a', href=True):
        discipline_id = _discipline_id_from_href(anchor['href'])
        if not discipline_id or discipline_id in seen:
            continue
        seen.add(discipline_id)

        name = normalize_text(anchor.get_text(' '))
        # Listing shows "IME01-10834 - CALCULO I"
        prefix = f"{discipline_id} - "
        if name.startswith(prefix):
            name = name[len(prefix):]

        refs.append(DisciplineRef(
            discipline_id=discipline_id,
            name=name,
            url=urljoin(base_url, anchor['href']),
        ))

    next_link = soup.select_one(NEXT_PAGE_SELECTOR)
    next_url = urljoin(base_url, next_link['href']) if next_link and next_link.get('href') else None
    return refs, next_url


# ---------------------- Class page ----------------------

def _leading_int(text):
    match = re.search(r'\d+', text or '')
    return int(match.group()) if match else None


def _column_map(header_row):
    columns = {}
    for index, cell in enumerate(header_row.find_all(['th', 'td'])):
        field_name = CLASS_COLUMNS.get(_fold(cell.get_text(' ')))
        if field_name:
            columns[field_name] = index

    missing = [name for name in CLASS_COLUMNS.values() if name not in columns]
    if missing:
        raise ParseError(f"Class table is missing columns: {', '.join(missing)}")
    return columns


def parse_class_page(html, ref: DisciplineRef) -> DisciplineRecord:
    """
    Parse a discipline's class page into a DisciplineRecord.

    Args:
        html: Class page HTML
        ref: The listing entry the page belongs to

    Returns:
        DisciplineRecord: The discipline with its classes in portal order

    Raises:
        ParseError: If the name, the class table or a class number is missing,
            or a class number repeats
    """
    soup = BeautifulSoup(html or '', 'html.parser')

    name_box = soup.select_one(DISCIPLINE_NAME_SELECTOR)
    name = normalize_text(name_box.get_text(' ')) if name_box else ''
    if not name:
        raise ParseError(f"Discipline name not found for {ref.discipline_id}")

    table = soup.select_one(CLASS_TABLE_SELECTOR)
    if table is None:
        raise ParseError(f"Class table not found for {ref.discipline_id}")

    rows = table.find_all('tr')
    if not rows:
        raise ParseError(f"Class table has no header for {ref.discipline_id}")
    columns = _column_map(rows[0])

    classes = []
    numbers = set()
    for row in rows[1:]:
        cells = [normalize_text(c.get_text(' ')) for c in row.find_all('td')]
        if not cells:
            continue
        if len(cells) <= max(columns.values()):
            raise ParseError(f"Short class row for {ref.discipline_id}: {cells}")

        number = _leading_int(cells[columns['number']])
        if number is None:
            raise ParseError(f"Invalid class number {cells[columns['number']]!r} for {ref.discipline_id}")
        if number in numbers:
            raise ParseError(f"Class {number} listed twice for {ref.discipline_id}")
        numbers.add(number)

        classes.append(ClassRecord(
            number=number,
            schedule=cells[columns['schedule']],
            professor=cells[columns['professor']],
            vacancies=_leading_int(cells[columns['vacancies']]) or 0,
        ))

    return DisciplineRecord(discipline_id=ref.discipline_id, name=name, classes=classes)
