"""Provides the :class:`Note` class, which reads and writes a single note file.

A note file is Markdown with an optional YAML metadata header:

.. code-block:: markdown

   ---
   title: Apple
   created: 2020-01-02T03:04:05Z
   modified: 2020-01-02T03:04:05Z
   tags:
   - Fruit
   - Notebooks/Kitchen
   ---

   Everything after the header is the body.
"""

from __future__ import annotations
import copy
from datetime import datetime, timezone
import os
import os.path
import re
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

import yaml

from notable.errors import NoteExistsError, NoteNotFoundError, ParseError
from notable.models import format_timestamp, now_iso, parse_timestamp

EXTENSION = '.md'
HEADER_DELIMITER = '---'
HEADER_TERMINATORS = ('---', '...')
NOTEBOOK_PREFIX = 'Notebooks/'
ATTACHMENT_PREFIX = '@attachment/'
INLINE_LINK_RE = re.compile(r'\[.*?\]\((.*?)\)')
DEFAULTABLE_FIELDS = ('title', 'created', 'modified')

_TIMESTAMP_TAG = 'tag:yaml.org,2002:timestamp'

MetaPath = Union[str, Tuple[str, ...]]


def _without_timestamps(resolvers: dict) -> dict:
    return {first: [(tag, regexp) for tag, regexp in entries if tag != _TIMESTAMP_TAG]
            for first, entries in resolvers.items()}


class HeaderLoader(yaml.SafeLoader):
    """Safe loader that leaves timestamps as the strings they were written as."""
    yaml_implicit_resolvers = _without_timestamps(yaml.SafeLoader.yaml_implicit_resolvers)


class HeaderDumper(yaml.SafeDumper):
    """Safe dumper matching :class:`HeaderLoader`, so timestamp strings are written without quotes."""
    yaml_implicit_resolvers = _without_timestamps(yaml.SafeDumper.yaml_implicit_resolvers)


def dump_yaml(data: Any, explicit_start: bool = False) -> str:
    return yaml.dump(data, Dumper=HeaderDumper, explicit_start=explicit_start, allow_unicode=True,
                     sort_keys=False, default_flow_style=False)


def load_yaml(text: str) -> Any:
    return yaml.load(text, Loader=HeaderLoader)


def _split_path(path: MetaPath) -> Tuple[str, ...]:
    if isinstance(path, str):
        return (path,)
    return tuple(path)


def _unique(values: Iterable) -> list:
    result = []
    for value in values:
        if value not in result:
            result.append(value)
    return result


def _read_file(path: str, header_only: bool) -> Tuple[Optional[str], str]:
    """Splits a note file into the raw header text (None if there is no header) and the body.

    When header_only is True, the body holds at most the first line following the header.
    """
    try:
        return _split_file(path, header_only)
    except UnicodeDecodeError as e:
        raise ParseError('Note is not valid UTF-8', path, e)


def _split_file(path: str, header_only: bool) -> Tuple[Optional[str], str]:
    with open(path, 'r', encoding='utf-8', newline='') as file:
        first = file.readline()
        if not first.startswith(HEADER_DELIMITER):
            return None, first if header_only else first + file.read()
        lines = []
        while True:
            line = file.readline()
            if not line:
                raise ParseError('Metadata header is not terminated', path)
            if line.rstrip() in HEADER_TERMINATORS:
                break
            lines.append(line)
        # a blank separator line after the header is dropped, anything else is body
        following = file.readline()
        body = following if following.strip() else ''
        if not header_only:
            body += file.read()
        return ''.join(lines), body


def _parse_header(text: Optional[str], path: str) -> Dict[str, Any]:
    if text is None:
        return {}
    try:
        meta = load_yaml(text)
    except yaml.YAMLError as e:
        raise ParseError('Metadata header is not valid YAML', path, e)
    if meta is None:
        return {}
    if not isinstance(meta, dict):
        raise ParseError('Metadata header is not a mapping', path)
    return meta


class Note:
    """A single note file: its metadata header, and its body (loaded only on request).

    Instances are normally obtained through :meth:`open` or :meth:`create`, or from a
    :class:`notable.repo.Repository`. Changes are kept in memory until :meth:`save` is called.

    .. attribute:: path
       :type: str

       Absolute path of the note file. The file does not need to exist yet.

    .. attribute:: meta
       :type: dict

       The parsed header, in file order. Keys the class does not know about are kept as they are.

    .. attribute:: edited
       :type: bool

       If True, indicates the instance has changes that have not been written by :meth:`save`.

    .. attribute:: defaulted
       :type: set

       Which of ``title``, ``created`` and ``modified`` were filled in by :meth:`fill_defaults` rather than
       read from the header.
    """
    def __init__(self, path: str, meta: Dict[str, Any] = None):
        self.path = os.path.abspath(path)
        self.directory, self.name = os.path.split(self.path)
        self.meta = meta if meta is not None else {}
        self.defaulted: Set[str] = set()
        self.edited = False
        self._content = ''
        self._content_loaded = False

    def __repr__(self):
        return f'Note({self.path!r})'

    @classmethod
    def open(cls, path: str) -> Note:
        """Opens an existing note, parsing its header. The body is not read until :meth:`read_content`.

        Raises :exc:`notable.errors.NoteNotFoundError` if there is no such file, and
        :exc:`notable.errors.ParseError` if the header is malformed.
        """
        if not os.path.isfile(path):
            raise NoteNotFoundError(f'Note does not exist: {os.path.abspath(path)}')
        note = cls(path)
        note.read_header()
        return note

    @classmethod
    def create(cls, directory: str, title: str = None, name: str = None, overwrite: bool = False) -> Note:
        """Creates a new, empty note. Nothing is written until :meth:`save` is called.

        If name is omitted it is derived from the title; if the title is omitted it is derived from the name.

        Raises :exc:`ValueError` if neither is given, and :exc:`notable.errors.NoteExistsError` if a file
        already exists at the resulting path (unless overwrite is True).
        """
        if not name and title:
            name = str(title).replace('/', '-').replace(os.sep, '-') + EXTENSION
        if not name:
            raise ValueError('A title or a file name is required to create a note.')
        path = os.path.join(directory, name)
        if os.path.isfile(path) and not overwrite:
            raise NoteExistsError(f'Note already exists: {os.path.abspath(path)}')
        note = cls(path)
        note._content_loaded = True
        if title:
            note.meta['title'] = title
        note.meta['created'] = now_iso()
        note.meta['modified'] = note.meta['created']
        note.fill_defaults()
        note.edited = True
        return note

    @classmethod
    def from_meta(cls, path: str, meta: Dict[str, Any], defaulted: Iterable[str] = ()) -> Note:
        """Rebuilds a note from previously parsed metadata without reading the file."""
        note = cls(path, copy.deepcopy(meta))
        note.defaulted = set(defaulted)
        return note

    def read_header(self) -> None:
        """Parses the header from disk, replacing any metadata and body held in memory.

        May raise :exc:`notable.errors.ParseError` or an IO-related exception.
        """
        header, _ = _read_file(self.path, header_only=True)
        self.meta = _parse_header(header, self.path)
        self.unload_content()
        self.edited = False
        self.fill_defaults()

    def fill_defaults(self) -> None:
        """Fills in missing title and timestamps, and removes duplicate tags and attachments.

        The title comes from the file name, and the created time from the file's modification time
        (or the current time if the file does not exist). A missing modified time copies the created time.
        """
        self.defaulted = set()
        if not self.meta.get('title'):
            self.meta['title'] = re.sub(re.escape(EXTENSION) + '$', '', self.name, flags=re.IGNORECASE)
            self.defaulted.add('title')
        if not self.meta.get('created'):
            if os.path.isfile(self.path):
                mtime = os.stat(self.path).st_mtime
                self.meta['created'] = format_timestamp(datetime.fromtimestamp(mtime, tz=timezone.utc))
            else:
                self.meta['created'] = now_iso()
            self.defaulted.add('created')
        if not self.meta.get('modified'):
            self.meta['modified'] = self.meta['created']
            self.defaulted.add('modified')
        for key in ('tags', 'attachments'):
            if isinstance(self.meta.get(key), list):
                self.meta[key] = _unique(self.meta[key])

    @property
    def content_loaded(self) -> bool:
        return self._content_loaded

    def read_content(self) -> str:
        """Returns the body, reading it from the file the first time if the file exists.

        The header is not parsed again, so unsaved metadata changes are kept.
        """
        if not self._content_loaded:
            if os.path.isfile(self.path):
                _, self._content = _read_file(self.path, header_only=False)
            else:
                self._content = ''
            self._content_loaded = True
        return self._content

    def set_content(self, content: str) -> None:
        self._content = content
        self._content_loaded = True
        self.touch()

    def unload_content(self) -> None:
        """Forgets the body, so the next :meth:`read_content` reads it from disk again."""
        self._content = ''
        self._content_loaded = False

    def render(self) -> str:
        """Returns the full text of the note file, as :meth:`save` would write it."""
        return f'{dump_yaml(self.meta, explicit_start=True)}{HEADER_DELIMITER}\n\n{self.read_content()}'

    def save(self) -> None:
        """Writes the note to its path, replacing the file if it exists.

        Raises an IO-related exception if the file cannot be written.
        """
        # render first: it may need to read the body from the file we are about to truncate
        text = self.render()
        with open(self.path, 'w', encoding='utf-8', newline='') as file:
            file.write(text)
        self.edited = False
        self.defaulted = set()

    def touch(self) -> None:
        """Marks the note as changed and sets its modified time to now."""
        self.meta['modified'] = now_iso()
        self.edited = True

    def get(self, path: MetaPath, default: Any = None) -> Any:
        """Looks up a metadata value by key, or by a tuple of keys for nested mappings."""
        value = self.meta
        for key in _split_path(path):
            if not (isinstance(value, dict) and key in value):
                return default
            value = value[key]
        return value

    def has(self, path: MetaPath) -> bool:
        """Returns True if the key (or tuple of nested keys) is present in the metadata."""
        marker = object()
        return self.get(path, marker) is not marker

    def set(self, path: MetaPath, value: Any) -> None:
        """Sets a metadata value, creating intermediate mappings for nested keys as needed.

        Raises :exc:`ValueError` if an intermediate key already holds something other than a mapping.
        Lists assigned to ``tags`` or ``attachments`` are deduplicated.
        """
        keys = _split_path(path)
        target = self.meta
        for key in keys[:-1]:
            if key not in target:
                target[key] = {}
            elif not isinstance(target[key], dict):
                raise ValueError(f'Metadata value at {key!r} is not a mapping: {target[key]!r}')
            target = target[key]
        if keys in (('tags',), ('attachments',)) and isinstance(value, list):
            value = _unique(value)
        target[keys[-1]] = value
        if keys == ('modified',):
            self.edited = True
        else:
            self.touch()

    def delete(self, path: MetaPath) -> None:
        """Removes a metadata value if present."""
        keys = _split_path(path)
        parent = self.get(keys[:-1]) if len(keys) > 1 else self.meta
        if isinstance(parent, dict) and keys[-1] in parent:
            del parent[keys[-1]]
            self.touch()

    @property
    def title(self) -> Optional[str]:
        return self.meta.get('title')

    @title.setter
    def title(self, value: str) -> None:
        self.set('title', value)

    @property
    def created(self) -> Optional[datetime]:
        return parse_timestamp(self.meta.get('created'))

    @created.setter
    def created(self, value: Union[datetime, str]) -> None:
        self.set('created', format_timestamp(value) if isinstance(value, datetime) else value)

    @property
    def modified(self) -> Optional[datetime]:
        return parse_timestamp(self.meta.get('modified'))

    @modified.setter
    def modified(self, value: Union[datetime, str]) -> None:
        self.set('modified', format_timestamp(value) if isinstance(value, datetime) else value)

    @property
    def deleted(self) -> bool:
        return bool(self.meta.get('deleted'))

    @deleted.setter
    def deleted(self, value: bool) -> None:
        self.set('deleted', bool(value))

    @property
    def archived(self) -> bool:
        return bool(self.meta.get('archived'))

    @archived.setter
    def archived(self, value: bool) -> None:
        self.set('archived', bool(value))

    @property
    def is_active(self) -> bool:
        """True unless the note is deleted or archived."""
        return not (self.deleted or self.archived)

    @property
    def all_tags(self) -> List:
        """Every tag in the header, notebook tags included."""
        tags = self.meta.get('tags')
        if isinstance(tags, list):
            return list(tags)
        if tags:
            return [tags]
        return []

    @property
    def tags(self) -> List:
        """Tags, excluding the ``Notebooks/`` ones."""
        return [t for t in self.all_tags if not (isinstance(t, str) and t.startswith(NOTEBOOK_PREFIX))]

    @property
    def notebooks(self) -> List[str]:
        """Names of the notebooks the note belongs to, taken from its ``Notebooks/<name>`` tags."""
        return [t[len(NOTEBOOK_PREFIX):] for t in self.all_tags
                if isinstance(t, str) and t.startswith(NOTEBOOK_PREFIX)]

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags

    def in_notebook(self, notebook: str) -> bool:
        return notebook in self.notebooks

    def add_tags(self, *tags: str) -> None:
        """Appends tags that are not already present."""
        current = self.all_tags
        added = [t for t in _unique(tags) if t and t not in current]
        if added:
            self.meta['tags'] = current + added
            self.touch()

    def remove_tags(self, *tags: str) -> None:
        current = self.all_tags
        remaining = [t for t in current if t not in tags]
        if len(remaining) != len(current):
            self.meta['tags'] = remaining
            self.touch()

    def add_notebooks(self, *notebooks: str) -> None:
        self.add_tags(*(NOTEBOOK_PREFIX + n for n in notebooks if n))

    def remove_notebooks(self, *notebooks: str) -> None:
        self.remove_tags(*(NOTEBOOK_PREFIX + n for n in notebooks if n))

    @property
    def attachments(self) -> List[str]:
        """Attachment file names listed in the header."""
        attachments = self.meta.get('attachments')
        if isinstance(attachments, list):
            return list(attachments)
        if attachments:
            return [attachments]
        return []

    def add_attachments(self, *attachments: str) -> None:
        current = self.attachments
        added = [a for a in _unique(attachments) if a and a not in current]
        if added:
            self.meta['attachments'] = current + added
            self.touch()

    def remove_attachments(self, *attachments: str) -> None:
        current = self.attachments
        remaining = [a for a in current if a not in attachments]
        if len(remaining) != len(current):
            self.meta['attachments'] = remaining
            self.touch()

    def existing_attachments(self, attachments_dir: str) -> List[str]:
        """Header attachments for which a file exists in the given directory."""
        return [a for a in self.attachments if os.path.isfile(os.path.join(attachments_dir, str(a)))]

    def missing_attachments(self, attachments_dir: str) -> List[str]:
        """Header attachments for which no file exists in the given directory."""
        return [a for a in self.attachments if not os.path.isfile(os.path.join(attachments_dir, str(a)))]

    def links(self) -> List[str]:
        """Destinations of inline Markdown links (``[label](destination)``) in the body, in order.

        Reads the body if it has not been loaded yet.
        """
        return INLINE_LINK_RE.findall(self.read_content())

    def linked_attachments(self) -> List[str]:
        """Attachment names linked from the body as ``@attachment/<name>``."""
        return [link[len(ATTACHMENT_PREFIX):] for link in self.links() if link.startswith(ATTACHMENT_PREFIX)]

    def one_line(self) -> str:
        """Returns the title, followed by the notebooks in parentheses if there are any."""
        line = str(self.title)
        if self.notebooks:
            line += f' ({", ".join(self.notebooks)})'
        return line

    def describe(self) -> str:
        """Returns a human-readable summary of the note, followed by its body."""
        indent = '\n' + ' ' * 14
        return (f'===\n'
                f'Title:        {self.title}\n'
                f'File:         {self.name}\n'
                f'Tags:         {indent.join(str(t) for t in self.tags)}\n'
                f'Attachments:  {indent.join(str(a) for a in self.attachments)}\n'
                f'---\n'
                f'{self.read_content()}')

    def as_json(self) -> dict:
        """Returns a dict representing the note's metadata, suitable for serializing as json."""
        return {
            'name': self.name,
            'path': self.path,
            'title': self.title,
            'created': self.meta.get('created'),
            'modified': self.meta.get('modified'),
            'tags': self.tags,
            'notebooks': self.notebooks,
            'attachments': self.attachments,
            'deleted': self.deleted,
            'archived': self.archived,
        }
