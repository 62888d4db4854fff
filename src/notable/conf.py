from __future__ import annotations
from dataclasses import dataclass, field, replace
import logging
import os.path
from typing import Callable, List


def default_ignore(parentpath: str, filename: str) -> bool:
    return filename.startswith('.') or filename.endswith('.icloud')


@dataclass
class RepoConf:
    """Configures where a Notable data directory lives and which of its files are considered notes."""

    data_dir: str
    """The data directory. Notes are read from its ``notes`` subdirectory, attachments from ``attachments``,
    and the metadata cache is kept in ``.notable``."""

    ignore: Callable[[str, str], bool] = default_ignore
    """Use this to indicate files in the notes directory that should not be processed at all.

    The first argument is the path to the directory containing the file, and the second argument is
    the filename.

    The current default behavior is to ignore all files whose name begins with a period (``.``), and also
    ``.icloud`` files.
    """

    @property
    def notes_dir(self) -> str:
        return os.path.join(self.data_dir, 'notes')

    @property
    def attachments_dir(self) -> str:
        return os.path.join(self.data_dir, 'attachments')

    @property
    def config_dir(self) -> str:
        return os.path.join(self.data_dir, '.notable')

    @property
    def cache_path(self) -> str:
        return os.path.join(self.config_dir, 'cache.yaml')

    def standardize(self) -> RepoConf:
        return replace(self, data_dir=os.path.realpath(os.path.expanduser(self.data_dir)))

    def instantiate(self, logger: logging.Logger = None):
        """Returns an opened :class:`notable.repo.Repository` for this data directory."""
        from notable.repo import Repository
        return Repository(self.standardize(), logger=logger).open()


@dataclass
class NotableConf:
    repo_conf: RepoConf
    """Configures which data directory to use."""

    export_renderer: str = 'pandoc'
    """The program :meth:`notable.api.Notable.export` runs to render notes.

    It is invoked as ``RENDERER --standalone --from markdown --output OUTPUT [export_args...]`` with the
    document on standard input.
    """

    export_args: List[str] = field(default_factory=list)
    """Extra arguments passed to the export renderer, e.g. ``['--pdf-engine', 'xelatex']``."""

    @classmethod
    def user_config_path(cls) -> str:
        return os.path.expanduser(os.path.join('~', '.notable.conf.py'))

    @classmethod
    def for_user(cls) -> NotableConf:
        """Loads the configuration from ``~/.notable.conf.py``.

        The file is a Python script which must assign an instance of this class to the variable ``conf``, e.g.:

        .. code-block:: python

           from notable.conf import *
           conf = NotableConf(repo_conf=RepoConf(data_dir='~/Notable'))
        """
        path = cls.user_config_path()
        if not os.path.exists(path):
            raise Exception(f'You need to create the config file: {path}')
        with open(path, 'r') as file:
            conf_script = file.read()
        context = {}
        exec(conf_script, context)
        if 'conf' not in context or not isinstance(context['conf'], cls):
            raise Exception('You need to assign an instance of NotableConf to the variable `conf` '
                            f'in your config file: {path}')
        return context['conf']

    def standardize(self) -> NotableConf:
        return replace(self, repo_conf=self.repo_conf.standardize())

    def instantiate(self, logger: logging.Logger = None):
        from notable.api import Notable
        return Notable(self.standardize(), logger=logger)
