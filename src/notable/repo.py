"""Provides the :class:`Repository` class, the entry point for reading and querying a Notable data directory."""

from __future__ import annotations
from collections import defaultdict
import logging
import os
import os.path
from typing import Any, Dict, Iterable, List, Optional, Union

from notable.cache import CacheEntry, CacheStore
from notable.conf import RepoConf
from notable.errors import Error, InvalidDataDirError, NoteNotFoundError, RepositoryClosedError
from notable.models import NoteQuery, NoteQueryIsh, RefreshStats, compile_title_pattern
from notable.note import EXTENSION, MetaPath, Note


def _as_list(value: Union[str, Iterable[str], None]) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [v for v in value if v]


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if value is None:
        return ''
    return str(value)


def _matches(found: Any, value: Any) -> bool:
    if found == value:
        return True
    if isinstance(value, str) and not isinstance(found, (dict, list)):
        return _scalar_text(found) == value
    return False


class Repository:
    """Keeps the notes of one data directory in memory, backed by a cache of their parsed metadata.

    The modification time of every note file is stored in the cache. Each time :meth:`open` is called, the
    notes directory is scanned: new files are parsed, files whose modification time changed have their header
    parsed again, files that disappeared are dropped, and everything else is taken from the cache without being
    read. Bodies are never cached; they are read on demand by :meth:`notable.note.Note.read_content`.

    Changes made to the files by other programs while the repository is open are not noticed until it is
    opened again.

    Remember to call :meth:`close` when done with the instance, or use the instance as a context manager.
    Closing writes the cache.

    .. attribute:: conf
       :type: notable.conf.RepoConf

    .. attribute:: last_refresh
       :type: notable.models.RefreshStats

       What the most recent :meth:`open` did.
    """
    def __init__(self, conf: RepoConf, logger: logging.Logger = None, cache_store: CacheStore = None):
        self.conf = conf
        self.logger = logger or logging.getLogger(__name__)
        self.cache_store = cache_store or CacheStore(conf.cache_path, logger=self.logger)
        self.last_refresh: Optional[RefreshStats] = None
        self._open = False
        self._notes: Dict[str, Note] = {}
        self._mtimes: Dict[str, Optional[int]] = {}
        self._attachments: Optional[List[str]] = None

    @property
    def is_open(self) -> bool:
        return self._open

    def _require_open(self) -> None:
        if not self._open:
            raise RepositoryClosedError(f'Repository is not open: {self.conf.data_dir}')

    def _stat_files(self) -> Dict[str, int]:
        notes_dir = self.conf.notes_dir
        files = {}
        for entry in os.scandir(notes_dir):
            if not entry.name.lower().endswith(EXTENSION):
                continue
            if self.conf.ignore(notes_dir, entry.name):
                continue
            if not entry.is_file():
                continue
            files[entry.name] = entry.stat().st_mtime_ns
        return files

    def open(self) -> Repository:
        """Scans the notes directory and brings the in-memory notes up to date with it.

        Raises :exc:`notable.errors.InvalidDataDirError` if the data directory has no ``notes`` directory.
        Files that cannot be read or parsed are logged and left out rather than failing the whole scan; they are
        listed in :attr:`last_refresh`.

        Returns the instance itself.
        """
        if not os.path.isdir(self.conf.notes_dir):
            raise InvalidDataDirError(f'Invalid data directory {self.conf.data_dir}: no notes directory')
        files = self._stat_files()
        cached = self.cache_store.load()
        stats = RefreshStats()
        notes = {}
        mtimes = {}

        for name in sorted(set(cached).difference(files)):
            self.logger.debug('cache: remove deleted file %r', name)
            stats.removed.append(name)

        for name in sorted(files):
            mtime = files[name]
            path = os.path.join(self.conf.notes_dir, name)
            entry = cached.get(name)
            try:
                if entry is None:
                    self.logger.debug('cache: add new file %r', name)
                    note = Note.open(path)
                    stats.added.append(name)
                elif entry.mtime != mtime:
                    self.logger.debug('cache: refresh changed file %r', name)
                    note = Note.from_meta(path, entry.meta, entry.defaulted)
                    note.read_header()
                    stats.refreshed.append(name)
                else:
                    note = Note.from_meta(path, entry.meta, entry.defaulted)
                    stats.reused.append(name)
            except (Error, OSError) as e:
                self.logger.warning('skipping note %r: %s', name, e)
                stats.failed[name] = e
                continue
            notes[name] = note
            mtimes[name] = mtime

        self._notes = notes
        self._mtimes = mtimes
        self._attachments = None
        self.last_refresh = stats
        self._open = True
        self.logger.info('opened %s: %d notes (%d parsed, %d from cache, %d removed, %d failed)',
                         self.conf.data_dir, len(notes), len(stats.parsed), len(stats.reused),
                         len(stats.removed), len(stats.failed))
        return self

    def close(self) -> None:
        """Writes the metadata cache and releases the in-memory notes.

        Notes with unsaved changes, and notes that were never written to disk, are left out of the cache, so they
        will be parsed from their files next time.
        """
        if not self._open:
            return
        try:
            entries = {}
            for name, note in self._notes.items():
                mtime = self._mtimes.get(name)
                if mtime is None or note.edited or not os.path.isfile(note.path):
                    continue
                entries[name] = CacheEntry.of(note, mtime)
            self.cache_store.save(entries)
        finally:
            self._notes = {}
            self._mtimes = {}
            self._attachments = None
            self._open = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def notes(self) -> List[Note]:
        """Returns every note, including deleted and archived ones, ordered by file name."""
        self._require_open()
        return [self._notes[name] for name in sorted(self._notes)]

    def select_all(self) -> List[Note]:
        """Returns the notes that are neither deleted nor archived, ordered by file name."""
        return [note for note in self.notes() if note.is_active]

    def _input(self, notes: Optional[Iterable[Note]]) -> List[Note]:
        return self.select_all() if notes is None else list(notes)

    def select_tag(self, tag: str, notes: Iterable[Note] = None) -> List[Note]:
        """Narrows notes (by default, :meth:`select_all`) to those with the given tag."""
        notes = self._input(notes)
        if not tag:
            return notes
        return [n for n in notes if n.has_tag(tag)]

    def select_notebook(self, notebook: str, notes: Iterable[Note] = None) -> List[Note]:
        """Narrows notes (by default, :meth:`select_all`) to those in the given notebook."""
        notes = self._input(notes)
        if not notebook:
            return notes
        return [n for n in notes if n.in_notebook(notebook)]

    def select_title(self, pattern: str, notes: Iterable[Note] = None) -> List[Note]:
        """Narrows notes (by default, :meth:`select_all`) to those whose title matches the pattern.

        The pattern is a regular expression searched for anywhere in the title, ignoring case. If it is not a valid
        expression, it is matched as plain text.
        """
        notes = self._input(notes)
        if not pattern:
            return notes
        title_re = compile_title_pattern(pattern)
        return [n for n in notes if n.title and title_re.search(str(n.title))]

    def select_meta(self, path: MetaPath, value: Any, notes: Iterable[Note] = None) -> List[Note]:
        """Narrows notes (by default, :meth:`select_all`) to those whose metadata value at path equals value.

        path is a key, or a tuple of keys to look inside nested mappings, e.g. ``('source', 'url')``.
        Scalars also match by their text, so ``'true'`` matches a boolean true and ``'3'`` matches 3.
        A value of None applies no filter.
        """
        notes = self._input(notes)
        if value is None:
            return notes
        marker = object()
        return [n for n in notes if _matches(n.get(path, marker), value)]

    def select_has(self, path: MetaPath, notes: Iterable[Note] = None) -> List[Note]:
        """Narrows notes (by default, :meth:`select_all`) to those that have the metadata key (or nested keys)."""
        return [n for n in self._input(notes) if n.has(path)]

    def select(self, notebook: Union[str, Iterable[str]] = None, tag: Union[str, Iterable[str]] = None,
               title: str = None) -> List[Note]:
        """Returns active notes that are in every given notebook, have every given tag, and match the title.

        The result is sorted by title.
        """
        notes = self.select_all()
        for nb in _as_list(notebook):
            notes = self.select_notebook(nb, notes)
        for t in _as_list(tag):
            notes = self.select_tag(t, notes)
        if title:
            notes = self.select_title(title, notes)
        return sorted(notes, key=lambda n: str(n.title))

    def query(self, query: NoteQueryIsh = '') -> List[Note]:
        """Returns the active notes matching a :class:`notable.models.NoteQuery` or query string."""
        query = NoteQuery.parse(query)
        return query.apply_sorting(query.apply_filtering(self.select_all()))

    def tag_counts(self, notes: Iterable[Note] = None) -> Dict[str, int]:
        """Returns a map of tag names to the number of notes (by default, the active ones) having each tag."""
        result = defaultdict(int)
        for note in self._input(notes):
            for tag in note.tags:
                result[tag] += 1
        return dict(result)

    def notebook_counts(self, notes: Iterable[Note] = None) -> Dict[str, int]:
        """Returns a map of notebook names to the number of notes (by default, the active ones) in each."""
        result = defaultdict(int)
        for note in self._input(notes):
            for notebook in note.notebooks:
                result[notebook] += 1
        return dict(result)

    def attachments(self) -> List[str]:
        """Returns the names of the files in the attachments directory, sorted.

        The directory is only listed once per :meth:`open`.
        """
        self._require_open()
        if self._attachments is None:
            attachments_dir = self.conf.attachments_dir
            if os.path.isdir(attachments_dir):
                self._attachments = sorted(e.name for e in os.scandir(attachments_dir) if e.is_file())
            else:
                self._attachments = []
        return list(self._attachments)

    def linked_attachments(self, include_content_links: bool = False) -> Dict[str, List[str]]:
        """Maps each attachment referenced by an active note to the titles of the notes referencing it.

        References come from the ``attachments`` header field. If include_content_links is True, ``@attachment/``
        links in the bodies count too, which means reading every body.
        """
        result = defaultdict(list)
        for note in self.select_all():
            names = note.attachments
            if include_content_links:
                names = names + [a for a in note.linked_attachments() if a not in names]
            for name in names:
                result[name].append(note.title)
        return dict(result)

    def orphaned_attachments(self, include_content_links: bool = False) -> List[str]:
        """Attachment files that no active note references."""
        linked = self.linked_attachments(include_content_links)
        return [a for a in self.attachments() if a not in linked]

    def missing_attachments(self, include_content_links: bool = False) -> List[str]:
        """Attachments referenced by active notes that have no file in the attachments directory."""
        present = set(self.attachments())
        return sorted(a for a in self.linked_attachments(include_content_links) if a not in present)

    def add_note(self, title: str = None, name: str = None, overwrite: bool = False,
                 content: str = None) -> Note:
        """Creates a new note in the notes directory and adds it to the repository.

        The note is not written to disk; call :meth:`notable.note.Note.save` for that.
        See :meth:`notable.note.Note.create` for the meaning of the arguments and the errors raised.
        """
        self._require_open()
        note = Note.create(self.conf.notes_dir, title=title, name=name, overwrite=overwrite)
        if content is not None:
            note.set_content(content)
        self._notes[note.name] = note
        self._mtimes[note.name] = None
        return note

    def open_note(self, name: str) -> Note:
        """Returns the note with the given file name, opening it if the repository does not hold it yet.

        Raises :exc:`notable.errors.NoteNotFoundError` if it is neither held nor on disk.
        """
        self._require_open()
        note = self._notes.get(name)
        if note is None:
            path = os.path.join(self.conf.notes_dir, name)
            if not os.path.isfile(path):
                raise NoteNotFoundError(f'Note does not exist: {path}')
            mtime = os.stat(path).st_mtime_ns
            note = Note.open(path)
            self._notes[name] = note
            self._mtimes[name] = mtime
        return note
