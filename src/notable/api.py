"""Provides the main entry point for using the library, :class:`Notable`"""

from __future__ import annotations
import logging
import os.path
from typing import Iterable, List, Optional, Set, Tuple

from notable import export
from notable.conf import NotableConf
from notable.note import Note


class Notable:
    """Main entry point for working programmatically with a Notable data directory.

    Generally, you should get an instance using the :meth:`Notable.for_user` method. Call :meth:`close` when you're
    done with it, or else use it as a context manager; closing writes the metadata cache.

    This class contains methods such as :meth:`Notable.change` and :meth:`Notable.backfill` for performing
    higher-level operations that also save the affected notes. The :attr:`repo` attribute, which is an instance of
    :class:`notable.repo.Repository`, provides the queries and lower-level operations.

    .. attribute:: conf
       :type: notable.conf.NotableConf

       Typically loaded from the variable ``conf`` in the file ``~/.notable.conf.py``

    .. attribute:: repo
       :type: notable.repo.Repository

    Here's an example of how to use this class. This would add the tag "personal" to every note tagged "journal".

    .. code-block:: python

       from notable.api import Notable
       with Notable.for_user() as nb:
           notes = nb.repo.select(tag='journal')
           nb.change({n.name for n in notes}, add_tags={'personal'})
    """

    @staticmethod
    def for_user() -> Notable:
        """Creates an instance using the user's ``~/.notable.conf.py`` file.

        Raises :exc:`Exception` if it does not exist or does not define configuration.
        """
        return NotableConf.for_user().instantiate()

    def __init__(self, conf: NotableConf, logger: logging.Logger = None):
        self.conf = conf
        self.repo = conf.repo_conf.instantiate(logger=logger)

    def new(self, title: str, content: str = '', tags: Iterable[str] = (), notebooks: Iterable[str] = ()) -> Note:
        """Creates a note, saves it, and returns it.

        Raises :exc:`notable.errors.NoteExistsError` if a note with the derived file name already exists.
        """
        note = self.repo.add_note(title=title)
        note.add_tags(*tags)
        note.add_notebooks(*notebooks)
        if content:
            note.set_content(content)
        note.save()
        return note

    def change(self, names: Set[str], add_tags: Set[str] = frozenset(), del_tags: Set[str] = frozenset(),
               title: Optional[str] = None, add_notebooks: Set[str] = frozenset(),
               del_notebooks: Set[str] = frozenset()) -> None:
        """Applies all the specified changes to the notes with the given file names, and saves them.

        Tags and notebooks are added in sorted order.
        """
        for name in sorted(names):
            note = self.repo.open_note(name)
            note.add_tags(*sorted(add_tags))
            note.remove_tags(*del_tags)
            note.add_notebooks(*sorted(add_notebooks))
            note.remove_notebooks(*del_notebooks)
            if title is not None:
                note.title = title
            if note.edited:
                note.save()

    def backfill(self) -> Tuple[List[str], List[Exception]]:
        """Writes the defaulted title, created and modified values into notes whose headers lack them.

        Missing titles come from the file name, and missing timestamps from the file's modification time.

        Returns a list of the file names of changed notes, and a list of exceptions encountered for other notes.
        """
        modified = []
        exceptions = []
        for note in self.repo.notes():
            if not (note.defaulted and os.path.isfile(note.path)):
                continue
            try:
                note.save()
                modified.append(note.name)
            except Exception as ex:
                exceptions.append(ex)
        return modified, exceptions

    def export(self, name: str, output: str) -> None:
        """Renders a note to the output file with the configured renderer. See :func:`notable.export.export`."""
        note = self.repo.open_note(name)
        export.export(note, output, renderer=self.conf.export_renderer, args=self.conf.export_args)

    def close(self):
        """Closes the associated repository, writing its cache."""
        self.repo.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
