import logging
import os
from pathlib import Path

import pytest

from notable.conf import RepoConf
from notable.errors import InvalidDataDirError, NoteNotFoundError, RepositoryClosedError
from notable.note import load_yaml
from notable.repo import Repository


def set_mtime(path, seconds):
    os.utime(path, ns=(seconds * 1_000_000_000, seconds * 1_000_000_000))


def write_note(fs, name, header, body='', mtime=None):
    path = f'/data/notes/{name}'
    fs.create_file(path, contents=f'---\n{header}---\n\n{body}')
    if mtime is not None:
        set_mtime(path, mtime)
    return path


@pytest.fixture
def conf(fs):
    write_note(fs, 'a.md', 'title: Apple\ntags:\n- Fruit\n- Notebooks/Kitchen\n'
                           'attachments:\n- apple.png\n- gone.png\n',
               'An [inline picture](@attachment/inline.png).\n', mtime=1_000)
    write_note(fs, 'b.md', 'title: Banana\ntags:\n- Fruit\narchived: true\n', mtime=2_000)
    write_note(fs, 'c.md', 'title: Carrot\ntags:\n- Vegetable\n- Notebooks/Kitchen\n- Notebooks/Garden\n'
                           'source:\n  market: Saturday\npinned: 3\nfavorited: true\n', mtime=3_000)
    write_note(fs, 'd.md', 'title: Durian\ntags:\n- Fruit\ndeleted: true\n', mtime=4_000)
    for name in ['apple.png', 'orphan.png', 'inline.png']:
        fs.create_file(f'/data/attachments/{name}')
    return RepoConf('/data')


def names(notes):
    return [n.name for n in notes]


def titles(notes):
    return [n.title for n in notes]


def read_cache():
    return load_yaml(Path('/data/.notable/cache.yaml').read_text())


def test_invalid_data_dir(fs):
    fs.create_dir('/data/attachments')
    with pytest.raises(InvalidDataDirError):
        Repository(RepoConf('/data')).open()


def test_closed(conf):
    repo = Repository(conf)
    with pytest.raises(RepositoryClosedError):
        repo.notes()
    repo.open()
    assert repo.is_open
    repo.close()
    assert not repo.is_open
    with pytest.raises(RepositoryClosedError):
        repo.select_all()
    repo.close()


def test_first_open(conf):
    with Repository(conf).open() as repo:
        assert repo.last_refresh.added == ['a.md', 'b.md', 'c.md', 'd.md']
        assert repo.last_refresh.parsed == ['a.md', 'b.md', 'c.md', 'd.md']
        assert repo.last_refresh.reused == []
        assert names(repo.notes()) == ['a.md', 'b.md', 'c.md', 'd.md']
        assert names(repo.select_all()) == ['a.md', 'c.md']
    cache = read_cache()
    assert cache['version'] == 1
    assert list(cache['notes']) == ['a.md', 'b.md', 'c.md', 'd.md']
    assert cache['notes']['a.md']['mtime'] == 1_000_000_000_000
    assert cache['notes']['a.md']['meta']['title'] == 'Apple'
    assert 'An [inline' not in Path('/data/.notable/cache.yaml').read_text()


def test_reopen_uses_cache(conf):
    Repository(conf).open().close()
    with Repository(conf).open() as repo:
        assert repo.last_refresh.parsed == []
        assert repo.last_refresh.reused == ['a.md', 'b.md', 'c.md', 'd.md']
        assert titles(repo.select_all()) == ['Apple', 'Carrot']
        assert repo.select_all()[0].attachments == ['apple.png', 'gone.png']


def test_unchanged_mtime_is_trusted(conf):
    Repository(conf).open().close()
    Path('/data/notes/a.md').write_text('---\ntitle: Avocado\n---\n\n')
    set_mtime('/data/notes/a.md', 1_000)
    with Repository(conf).open() as repo:
        assert repo.last_refresh.parsed == []
        assert repo.open_note('a.md').title == 'Apple'


def test_changed_file_is_reparsed(conf):
    Repository(conf).open().close()
    Path('/data/notes/a.md').write_text('---\ntitle: Avocado\ntags:\n- Fruit\n---\n\n')
    set_mtime('/data/notes/a.md', 5_000)
    with Repository(conf).open() as repo:
        assert repo.last_refresh.refreshed == ['a.md']
        assert repo.last_refresh.parsed == ['a.md']
        assert repo.last_refresh.reused == ['b.md', 'c.md', 'd.md']
        note = repo.open_note('a.md')
        assert note.title == 'Avocado'
        assert note.notebooks == []
        assert not note.content_loaded
    assert read_cache()['notes']['a.md']['mtime'] == 5_000_000_000_000


def test_added_and_removed_files(conf, fs):
    Repository(conf).open().close()
    os.remove('/data/notes/c.md')
    write_note(fs, 'e.md', 'title: Eggplant\n')
    with Repository(conf).open() as repo:
        assert repo.last_refresh.added == ['e.md']
        assert repo.last_refresh.removed == ['c.md']
        assert names(repo.notes()) == ['a.md', 'b.md', 'd.md', 'e.md']
    assert list(read_cache()['notes']) == ['a.md', 'b.md', 'd.md', 'e.md']


def test_unparsable_file_is_skipped(conf, fs, caplog):
    fs.create_file('/data/notes/broken.md', contents='---\ntitle: never terminated\n')
    with Repository(conf).open() as repo:
        assert 'broken.md' not in names(repo.notes())
        assert list(repo.last_refresh.failed) == ['broken.md']
        assert names(repo.select_all()) == ['a.md', 'c.md']
    assert 'broken.md' in caplog.text
    assert 'broken.md' not in read_cache()['notes']


def test_undecodable_file_is_skipped(conf, fs, caplog):
    fs.create_file('/data/notes/bad.md', contents=b'title: \xff\xfe bad')
    with Repository(conf).open() as repo:
        assert names(repo.notes()) == ['a.md', 'b.md', 'c.md', 'd.md']
        assert list(repo.last_refresh.failed) == ['bad.md']
        assert repo.open_note('a.md').title == 'Apple'
    assert 'not valid UTF-8' in caplog.text
    assert 'bad.md' not in read_cache()['notes']


def test_ignored_files(conf, fs):
    fs.create_file('/data/notes/.hidden.md', contents='hidden')
    fs.create_file('/data/notes/readme.txt', contents='not a note')
    fs.create_file('/data/notes/Upper.MD', contents='shouting')
    fs.create_dir('/data/notes/folder.md')
    with Repository(conf).open() as repo:
        assert names(repo.notes()) == ['Upper.MD', 'a.md', 'b.md', 'c.md', 'd.md']
        assert repo.open_note('Upper.MD').title == 'Upper'


def test_custom_ignore(conf):
    conf.ignore = lambda parent, name: name == 'a.md'
    with Repository(conf).open() as repo:
        assert names(repo.notes()) == ['b.md', 'c.md', 'd.md']


def test_select(conf):
    with Repository(conf).open() as repo:
        assert names(repo.select(tag='Fruit')) == ['a.md']
        assert names(repo.select(notebook='Kitchen')) == ['a.md', 'c.md']
        assert names(repo.select(notebook=['Kitchen', 'Garden'])) == ['c.md']
        assert names(repo.select(tag=['Fruit', 'Vegetable'])) == []
        assert names(repo.select(title='APP')) == ['a.md']
        assert names(repo.select(title='r+o')) == ['c.md']
        assert names(repo.select(title='(unbalanced')) == []
        assert titles(repo.select()) == ['Apple', 'Carrot']


def test_select_sorts_by_title(conf, fs):
    write_note(fs, 'z.md', 'title: Aardvark\n')
    write_note(fs, 'y.md', 'title: apricot\n')
    with Repository(conf).open() as repo:
        assert titles(repo.select()) == ['Aardvark', 'Apple', 'Carrot', 'apricot']


def test_select_primitives(conf):
    with Repository(conf).open() as repo:
        everything = repo.notes()
        assert names(repo.select_tag('Fruit')) == ['a.md']
        assert names(repo.select_tag('Fruit', everything)) == ['a.md', 'b.md', 'd.md']
        assert names(repo.select_tag('Notebooks/Kitchen')) == []
        assert names(repo.select_notebook('Garden')) == ['c.md']
        assert names(repo.select_title('an', everything)) == ['b.md', 'd.md']
        assert names(repo.select_meta(('source', 'market'), 'Saturday')) == ['c.md']
        assert names(repo.select_meta('pinned', 3)) == ['c.md']
        assert names(repo.select_meta('pinned', '3')) == ['c.md']
        assert names(repo.select_meta('favorited', 'true')) == ['c.md']
        assert names(repo.select_meta('archived', True, everything)) == ['b.md']
        assert names(repo.select_meta('source', None)) == ['a.md', 'c.md']
        assert names(repo.select_has('source')) == ['c.md']
        assert names(repo.select_has(('source', 'market'))) == ['c.md']
        assert names(repo.select_has('deleted', everything)) == ['d.md']


def test_query(conf):
    with Repository(conf).open() as repo:
        assert titles(repo.query('notebook:Kitchen sort:-title')) == ['Carrot', 'Apple']
        assert titles(repo.query('-tag:Fruit')) == ['Carrot']
        assert titles(repo.query('title:^c')) == ['Carrot']
        assert titles(repo.query()) == ['Apple', 'Carrot']


def test_counts(conf):
    with Repository(conf).open() as repo:
        assert repo.tag_counts() == {'Fruit': 1, 'Vegetable': 1}
        assert repo.tag_counts(repo.notes()) == {'Fruit': 3, 'Vegetable': 1}
        assert repo.notebook_counts() == {'Kitchen': 2, 'Garden': 1}


def test_attachments(conf):
    with Repository(conf).open() as repo:
        assert repo.attachments() == ['apple.png', 'inline.png', 'orphan.png']
        assert repo.linked_attachments() == {'apple.png': ['Apple'], 'gone.png': ['Apple']}
        assert repo.linked_attachments(include_content_links=True) == {
            'apple.png': ['Apple'], 'gone.png': ['Apple'], 'inline.png': ['Apple']}
        assert repo.orphaned_attachments() == ['inline.png', 'orphan.png']
        assert repo.orphaned_attachments(include_content_links=True) == ['orphan.png']
        assert repo.missing_attachments() == ['gone.png']


def test_attachments_listed_once_per_open(conf, fs):
    with Repository(conf).open() as repo:
        assert repo.attachments() == ['apple.png', 'inline.png', 'orphan.png']
        fs.create_file('/data/attachments/new.png')
        assert repo.attachments() == ['apple.png', 'inline.png', 'orphan.png']
    with Repository(conf).open() as repo:
        assert 'new.png' in repo.attachments()


def test_no_attachments_dir(fs):
    fs.create_dir('/data/notes')
    with Repository(RepoConf('/data')).open() as repo:
        assert repo.attachments() == []


def test_add_note(conf):
    with Repository(conf).open() as repo:
        note = repo.add_note(title='Fig', content='Sweet')
        assert note.path == '/data/notes/Fig.md'
        assert repo.open_note('Fig.md') is note
        assert 'Fig.md' in names(repo.select_all())
        assert not os.path.exists(note.path)
    assert 'Fig.md' not in read_cache()['notes']


def test_saved_new_note_is_parsed_next_time(conf):
    with Repository(conf).open() as repo:
        repo.add_note(title='Fig').save()
    assert 'Fig.md' not in read_cache()['notes']
    with Repository(conf).open() as repo:
        assert repo.last_refresh.added == ['Fig.md']
        assert repo.open_note('Fig.md').title == 'Fig'


def test_unsaved_changes_are_not_cached(conf):
    with Repository(conf).open() as repo:
        repo.open_note('a.md').title = 'Unsaved'
    assert 'a.md' not in read_cache()['notes']
    with Repository(conf).open() as repo:
        assert repo.last_refresh.added == ['a.md']
        assert repo.open_note('a.md').title == 'Apple'


def test_open_note(conf, fs):
    with Repository(conf).open() as repo:
        write_note(fs, 'late.md', 'title: Late\n')
        assert repo.open_note('late.md').title == 'Late'
        assert 'late.md' in names(repo.notes())
        with pytest.raises(NoteNotFoundError):
            repo.open_note('missing.md')
    assert 'late.md' in read_cache()['notes']


def test_logging(conf, caplog):
    logger = logging.getLogger('test_repo')
    with caplog.at_level(logging.DEBUG, logger='test_repo'):
        Repository(conf, logger=logger).open().close()
    assert "cache: add new file 'a.md'" in caplog.text
    assert 'opened /data: 4 notes (4 parsed, 0 from cache, 0 removed, 0 failed)' in caplog.text
