"""Provides the :class:`CacheStore` class, which persists parsed note metadata between runs."""

from __future__ import annotations
import copy
from dataclasses import dataclass, field
import logging
import os
import os.path
from typing import Any, Dict, List, Optional

import yaml

from notable.note import Note, dump_yaml, load_yaml

CACHE_VERSION = 1


@dataclass
class CacheEntry:
    """Metadata for one note file, and the file's modification time when that metadata was parsed."""

    meta: Dict[str, Any]
    """The note's header, after defaults were filled in. Never includes the body."""

    mtime: Optional[int]
    """The file's ``st_mtime_ns`` at the time it was parsed."""

    defaulted: List[str] = field(default_factory=list)
    """See :attr:`notable.note.Note.defaulted`."""

    @classmethod
    def of(cls, note: Note, mtime: Optional[int]) -> CacheEntry:
        """Takes a snapshot of the note's metadata, so later edits to the note do not affect the entry."""
        return cls(meta=copy.deepcopy(note.meta), mtime=mtime, defaulted=sorted(note.defaulted))

    def as_yaml(self) -> dict:
        return {'mtime': self.mtime, 'defaulted': list(self.defaulted), 'meta': self.meta}


class CacheStore:
    """Reads and writes the metadata cache file.

    The file is only a cache: you can safely delete it, and it will be rebuilt the next time the repository is
    closed. It is read in one piece and written in one piece; nothing locks it against other processes.

    .. attribute:: path
       :type: str
    """
    def __init__(self, path: str, logger: logging.Logger = None):
        self.path = path
        self.logger = logger or logging.getLogger(__name__)

    def load(self) -> Dict[str, CacheEntry]:
        """Returns the cached entries by file name.

        A missing file is the normal first-run state and yields an empty dict. So does a file that cannot be
        read or understood; in that case a warning is logged.
        """
        if not os.path.isfile(self.path):
            self.logger.debug('cache: no cache file at %s', self.path)
            return {}
        self.logger.debug('cache: read %s', self.path)
        try:
            with open(self.path, 'r', encoding='utf-8') as file:
                data = load_yaml(file)
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
            self.logger.warning('cache: ignoring unreadable cache file %s: %s', self.path, e)
            return {}
        if not (isinstance(data, dict) and data.get('version') == CACHE_VERSION
                and isinstance(data.get('notes'), dict)):
            self.logger.warning('cache: ignoring cache file %s with unexpected format', self.path)
            return {}
        entries = {}
        for name, raw in data['notes'].items():
            if not (isinstance(name, str) and isinstance(raw, dict) and isinstance(raw.get('meta'), dict)):
                self.logger.warning('cache: skipping malformed entry %r', name)
                continue
            entries[name] = CacheEntry(meta=raw['meta'], mtime=raw.get('mtime'),
                                       defaulted=list(raw.get('defaulted') or []))
        return entries

    def save(self, entries: Dict[str, CacheEntry]) -> None:
        """Replaces the cache file with the given entries.

        Raises an IO-related exception if the file cannot be written.
        """
        data = {
            'version': CACHE_VERSION,
            'notes': {name: entries[name].as_yaml() for name in sorted(entries)},
        }
        text = dump_yaml(data)
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        self.logger.debug('cache: write %s (%d entries)', self.path, len(entries))
        with open(self.path, 'w', encoding='utf-8') as file:
            file.write(text)
