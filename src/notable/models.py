"""Defines classes for representing queries over notes and the outcome of refreshing a repository.

The most important classes are :class:`NoteQuery` and :class:`RefreshStats`. This module also holds the helpers
for the timestamp format used in note headers.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import re
from typing import TYPE_CHECKING, Dict, Iterable, Iterator, List, Optional, Set, Union
from urllib.parse import unquote_plus

if TYPE_CHECKING:
    from notable.note import Note


TIMESTAMP_FORMAT = '%Y-%m-%dT%H:%M:%SZ'


def format_timestamp(value: datetime) -> str:
    """Formats a datetime the way note headers store it, e.g. ``2020-01-02T03:04:05Z``.

    Naive datetimes are assumed to be UTC already; aware ones are converted.
    """
    if value.tzinfo:
        value = value.astimezone(timezone.utc)
    return value.strftime(TIMESTAMP_FORMAT)


def now_iso() -> str:
    """Returns the current time formatted by :func:`format_timestamp`."""
    return format_timestamp(datetime.now(timezone.utc))


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Converts a header timestamp into a timezone-aware datetime.

    Accepts the ``Z`` suffix as well as explicit offsets; values without any offset are taken to be UTC.
    Returns None for missing or unparsable values.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        result = value
    else:
        text = str(value).strip()
        if text.endswith(('Z', 'z')):
            text = text[:-1] + '+00:00'
        try:
            result = datetime.fromisoformat(text)
        except ValueError:
            return None
    if not result.tzinfo:
        result = result.replace(tzinfo=timezone.utc)
    return result


@dataclass
class RefreshStats:
    """Describes what :meth:`notable.repo.Repository.open` did while reconciling its cache with the directory.

    Every list holds file names, in file name order.
    """

    added: List[str] = field(default_factory=list)
    """Files that were not in the cache and were parsed."""

    removed: List[str] = field(default_factory=list)
    """Cache entries dropped because their file no longer exists."""

    refreshed: List[str] = field(default_factory=list)
    """Cached files whose modification time changed, so their header was parsed again."""

    reused: List[str] = field(default_factory=list)
    """Cached files taken as-is without reading them."""

    failed: Dict[str, Exception] = field(default_factory=dict)
    """Files that could not be read or parsed, mapped to the exception. They are left out of the repository."""

    @property
    def parsed(self) -> List[str]:
        """Every file whose header was actually read from disk."""
        return sorted(self.added + self.refreshed)


class NoteQuerySortField(Enum):
    CREATED = 'created'
    FILENAME = 'filename'
    MODIFIED = 'modified'
    TAGS_COUNT = 'tags'
    TITLE = 'title'


@dataclass
class NoteQuerySort:
    field: NoteQuerySortField

    reverse: bool = False
    """If True, sort descending."""

    ignore_case: bool = True
    """If True, strings are sorted as if they were lower case."""

    missing_first: bool = False
    """Affects the behavior for None values and empty strings.

    If True, they should come before other values; if False, they should come after.
    This definition is based on the assumption that reverse=False; when reverse=True, the ultimate result
    will be the opposite.
    """

    def key(self, note: Note) -> Union[str, int, datetime]:
        """Returns sort key for the given note for the :attr:`field` specified in this instance.

        This is affected by the values of :attr:`ignore_case` and :attr:`missing_first`, but not the
        value of :attr:`reverse`.
        """
        if self.field in (NoteQuerySortField.CREATED, NoteQuerySortField.MODIFIED):
            stamp = note.created if self.field == NoteQuerySortField.CREATED else note.modified
            if stamp:
                return stamp
            if self.missing_first:
                return datetime(1, 1, 1, tzinfo=timezone.utc)
            return datetime(9999, 12, 31, 23, 59, 59, 999999, tzinfo=timezone.utc)
        elif self.field == NoteQuerySortField.FILENAME:
            return note.name.lower() if self.ignore_case else note.name
        elif self.field == NoteQuerySortField.TAGS_COUNT:
            return len(note.tags)
        elif self.field == NoteQuerySortField.TITLE:
            if note.title:
                title = str(note.title)
                return title.lower() if self.ignore_case else title
            return '' if self.missing_first else chr(0x10ffff)


@dataclass
class NoteQuery:
    """Represents criteria for searching for notes.

    Some methods that take a NoteQuery parameter also accept strings as a convenience, which they
    pass to :meth:`parse`

    If multiple criteria are specified, the query only returns notes that satisfy *all* of them.
    Deleted and archived notes never match.
    """

    include_tags: Set[str] = field(default_factory=set)
    """If non-empty, the query should only return notes that have *all* of the specified tags."""

    exclude_tags: Set[str] = field(default_factory=set)
    """If non-empty, the query should only return notes that have *none* of the specified tags."""

    notebooks: Set[str] = field(default_factory=set)
    """If non-empty, the query should only return notes that belong to *all* of the specified notebooks."""

    title: Optional[str] = None
    """If set, a regular expression searched for (case-insensitively) in each note's title."""

    sort_by: List[NoteQuerySort] = field(default_factory=list)
    """Indicates how to sort the results.

    For example, ``[NoteQuerySort(NoteQuerySortField.CREATED, reverse=True), NoteQuerySort(NoteQuerySortField.TITLE)]``
    puts the newest notes first; notes created at the same moment are sorted by title.
    """

    @classmethod
    def parse(cls, strquery: NoteQueryIsh) -> NoteQuery:
        """Converts the parameter to a NoteQuery, if it isn't one already.

        Query strings are split on spaces. Each part can be one of the following:

        * ``tag:TAG1,TAG2`` - notes must include all the specified tags
        * ``-tag:TAG1,TAG2`` - notes must not include any of the specified tags
        * ``notebook:NB1,NB2`` - notes must be in all the specified notebooks
        * ``title:REGEX`` - the title must match the expression, ignoring case
        * ``sort:FIELD1,FIELD2`` - sort by the given fields
            * fields on the left take higher priority, e.g. ``sort:created,title`` sorts by created date first
            * a minus sign in front of a field name indicates to sort descending, e.g. ``sort:-modified``
            * supported fields: ``created``, ``filename``, ``modified``, ``tags`` (count), ``title``

        Values are unquoted like URL query parameters, so ``tag:to+do`` means the tag "to do".

        Examples:

        * ``"tag:journal,food -tag:personal"`` - notes that are tagged both "journal" and "food" but not "personal"
        * ``"notebook:Kitchen sort:-created"`` - notes in the Kitchen notebook, newest first
        """
        if isinstance(strquery, NoteQuery):
            return strquery
        query = cls()
        for term in strquery.split():
            term = term.strip()
            lower = term.lower()
            if lower.startswith('tag:'):
                query.include_tags.update(unquote_plus(t) for t in term[4:].split(',') if t)
            elif lower.startswith('-tag:'):
                query.exclude_tags.update(unquote_plus(t) for t in term[5:].split(',') if t)
            elif lower.startswith('notebook:'):
                query.notebooks.update(unquote_plus(n) for n in term[9:].split(',') if n)
            elif lower.startswith('title:'):
                query.title = unquote_plus(term[6:]) or None
            elif lower.startswith('sort:'):
                for sortstr in lower[5:].split(','):
                    reverse = sortstr.startswith('-')
                    if reverse:
                        sortstr = sortstr[1:]
                    query.sort_by.append(NoteQuerySort(NoteQuerySortField(sortstr), reverse=reverse))
        return query

    def apply_filtering(self, notes: Iterable[Note]) -> Iterator[Note]:
        """Yields the notes from the given iterable which match the criteria of this query."""
        title_re = compile_title_pattern(self.title) if self.title else None
        for note in notes:
            if not note.is_active:
                continue
            tags = set(note.tags)
            if self.include_tags and not self.include_tags.issubset(tags):
                continue
            if self.exclude_tags and not self.exclude_tags.isdisjoint(tags):
                continue
            if self.notebooks and not self.notebooks.issubset(note.notebooks):
                continue
            if title_re and not (note.title and title_re.search(str(note.title))):
                continue
            yield note

    def apply_sorting(self, notes: Iterable[Note]) -> List[Note]:
        """Returns a copy of the given note collection sorted using this query's sort_by."""
        result = list(notes)
        for sort in reversed(self.sort_by):
            result.sort(key=sort.key, reverse=sort.reverse)
        return result


NoteQueryIsh = Union[str, NoteQuery]


def compile_title_pattern(pattern: str) -> re.Pattern:
    """Compiles a case-insensitive title pattern; text that is not a valid expression is matched literally."""
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error:
        return re.compile(re.escape(pattern), re.IGNORECASE)
