"""Search, filter and sort over file records (linear scans)."""
from datetime import date

from .errors import ValidationError

FILE_TYPES = ('all', 'image', 'video', 'audio')
SORT_ORDERS = ('asc', 'desc')


def _parse_date(value, label):
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"Invalid {label}: {value}")


def _record_date(record):
    """Capture date when known, otherwise the upload date."""
    value = record.get('captureDate') or record.get('createdAt')
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _searchable_text(record):
    parts = [record.get('name') or '', record.get('description') or '', record.get('notes') or '']
    parts.extend(record.get('tags') or [])
    return ' '.join(str(p) for p in parts).lower()


def filter_files(records, query='', file_type='all', date_from=None, date_to=None, tags=None):
    file_type = file_type or 'all'
    if file_type not in FILE_TYPES:
        raise ValidationError(f"Unknown file type filter: {file_type}")
    query = (query or '').strip().lower()
    start = _parse_date(date_from, 'dateFrom')
    end = _parse_date(date_to, 'dateTo')
    wanted_tags = {t.strip().lower() for t in (tags or []) if t and t.strip()}

    matched = []
    for record in records:
        if query and query not in _searchable_text(record):
            continue
        if file_type != 'all' and not (record.get('type') or '').startswith(f"{file_type}/"):
            continue
        if start or end:
            record_date = _record_date(record)
            if record_date is not None:
                if start and record_date < start:
                    continue
                if end and record_date > end:
                    continue
        if wanted_tags and not wanted_tags.issubset({t.lower() for t in record.get('tags') or []}):
            continue
        matched.append(record)
    return matched


def _name_key(record):
    return (record.get('name') or '').lower()


def _date_key(record):
    return record.get('captureDate') or record.get('createdAt') or ''


def _size_key(record):
    return record.get('size') or 0


def _created_key(record):
    return record.get('createdAt') or ''


SORT_KEYS = {
    'name': _name_key,
    'date': _date_key,
    'size': _size_key,
    'created': _created_key,
}


def sort_files(records, sort='name', order='asc'):
    sort = sort or 'name'
    order = order or 'asc'
    if sort not in SORT_KEYS:
        raise ValidationError(f"Unknown sort key: {sort}")
    if order not in SORT_ORDERS:
        raise ValidationError(f"Unknown sort order: {order}")
    return sorted(records, key=SORT_KEYS[sort], reverse=(order == 'desc'))
