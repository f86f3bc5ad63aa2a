import re

MAX_HANDLE_LENGTH = 80

_NON_ALNUM = re.compile(r'[^a-z0-9]+')


def slugify(value) -> str:
    """Turns a roster value into a usergroup handle.

    >>> slugify("People & Organisation")
    'people-and-organisation'
    """
    s = str(value).strip().lower().replace('&', 'and')
    s = _NON_ALNUM.sub('-', s).strip('-')
    return s[:MAX_HANDLE_LENGTH].rstrip('-')


def with_prefix(prefix: str, value: str) -> str:
    s = (prefix or '') + slugify(value)
    return re.sub(r'--+', '-', s).lstrip('-')


def display_name(handle: str, prefix: str = "") -> str:
    """Un-slugifies a handle: 'business-development' -> 'Business Development'."""
    if prefix and handle.startswith(prefix):
        handle = handle[len(prefix):]
    return ' '.join(w[:1].upper() + w[1:] for w in handle.split('-') if w)
