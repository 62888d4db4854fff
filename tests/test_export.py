import subprocess

import pytest

from notable.errors import ExportError
from notable.export import export, prepare_export, render_export_document
from notable.note import Note


def make_note(body, **meta):
    note = Note('/notes/doc.md', {'title': 'Original', **meta})
    note.set_content(body)
    return note


def test_prepare_export():
    body = '# Title\n\nIntro\n\n## Section\n\n```\n# not a heading\n```\n\n# Second top\n#hashtag\n'
    meta, result = prepare_export(make_note(body, tags=['x']))
    assert meta == {'title': 'Title', 'tags': ['x'], 'modified': meta['modified']}
    assert result == '\nIntro\n\n### Section\n\n```\n# not a heading\n```\n\n## Second top\n#hashtag\n'


def test_prepare_export_without_heading():
    # level 6 is already the deepest heading
    note = make_note('Some text\n\n### Deep\n###### Deepest\n')
    meta, result = prepare_export(note)
    assert meta['title'] == 'Original'
    assert result == 'Some text\n\n#### Deep\n###### Deepest\n'
    assert note.meta['title'] == 'Original'


def test_render_export_document():
    assert render_export_document({'title': 'T', 'created': '2020-01-02T03:04:05Z'}, 'body\n') == \
        '---\ntitle: T\ncreated: 2020-01-02T03:04:05Z\n---\n\nbody\n'


def test_export(monkeypatch):
    calls = []

    def fake_run(command, **kwargs):
        calls.append((command, kwargs))

    monkeypatch.setattr(subprocess, 'run', fake_run)
    export(make_note('# Hi\ntext\n'), '/tmp/out.html')
    command, kwargs = calls[0]
    assert command == ['pandoc', '--standalone', '--from', 'markdown', '--output', '/tmp/out.html']
    assert kwargs['check']
    assert kwargs['input'].startswith('---\ntitle: Hi\n')
    assert kwargs['input'].endswith('---\n\ntext\n')


def test_export_renderer_missing(monkeypatch):
    def fake_run(command, **kwargs):
        raise FileNotFoundError(command[0])

    monkeypatch.setattr(subprocess, 'run', fake_run)
    with pytest.raises(ExportError, match='Renderer not found: nope'):
        export(make_note('text'), '/tmp/out.pdf', renderer='nope')


def test_export_renderer_fails(monkeypatch):
    def fake_run(command, **kwargs):
        raise subprocess.CalledProcessError(43, command, stderr='bad input\n')

    monkeypatch.setattr(subprocess, 'run', fake_run)
    with pytest.raises(ExportError, match='pandoc failed with exit status 43: bad input'):
        export(make_note('text'), '/tmp/out.pdf')
