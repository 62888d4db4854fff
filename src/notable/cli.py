"""Command-line interface for notable."""


import argparse
import json
import logging
import sys
from typing import List

from terminaltables import AsciiTable

from notable.api import Notable
from notable.note import Note


def _split_csv(values: List[str]) -> set:
    return {v.strip() for value in (values or []) for v in value.split(',') if v.strip()}


def _date(value) -> str:
    return value.strftime('%Y-%m-%d') if value else ''


def _print_notes(notes: List[Note], as_json: bool) -> None:
    if as_json:
        print(json.dumps([n.as_json() for n in notes]))
        return
    data = [('Title', 'Notebooks', 'Created', 'Modified')]
    for note in notes:
        data.append((str(note.title), '\n'.join(note.notebooks), _date(note.created), _date(note.modified)))
    table = AsciiTable(data)
    print(table.table)


def _list(args, nb: Notable) -> int:
    notes = nb.repo.select(notebook=args.notebook, tag=args.tag, title=args.title)
    _print_notes(notes, args.json)
    return 0


def _query(args, nb: Notable) -> int:
    notes = nb.repo.query(args.query or '')
    _print_notes(notes, args.json)
    return 0


def _show(args, nb: Notable) -> int:
    note = nb.repo.open_note(args.name[0])
    if args.json:
        info = note.as_json()
        info['content'] = note.read_content()
        print(json.dumps(info))
    else:
        print(note.describe())
    return 0


def _new(args, nb: Notable) -> int:
    note = nb.new(args.title[0], content=args.content[0] if args.content else '',
                  tags=sorted(_split_csv(args.tags)), notebooks=sorted(_split_csv(args.notebooks)))
    print(f'Created {note.path}')
    return 0


def _change(args, nb: Notable) -> int:
    nb.change(set(args.names),
              add_tags=_split_csv(args.add_tags),
              del_tags=_split_csv(args.del_tags),
              title=args.title[0] if args.title else None,
              add_notebooks=_split_csv(args.add_notebooks),
              del_notebooks=_split_csv(args.del_notebooks))
    return 0


def _backfill(args, nb: Notable) -> int:
    changed, errors = nb.backfill()
    for name in changed:
        print(f'Updated {name}')
    for error in errors:
        print(repr(error), file=sys.stderr)
    return 0


def _print_counts(heading: str, counts: dict, as_json: bool) -> None:
    if as_json:
        print(json.dumps(counts))
        return
    data = [(heading, 'Count')] + [(k, counts[k]) for k in sorted(counts)]
    table = AsciiTable(data)
    table.justify_columns[1] = 'right'
    print(table.table)


def _tags(args, nb: Notable) -> int:
    _print_counts('Tag', nb.repo.tag_counts(), args.json)
    return 0


def _notebooks(args, nb: Notable) -> int:
    _print_counts('Notebook', nb.repo.notebook_counts(), args.json)
    return 0


def _attachments(args, nb: Notable) -> int:
    if args.orphaned:
        names = nb.repo.orphaned_attachments(args.content_links)
    elif args.missing:
        names = nb.repo.missing_attachments(args.content_links)
    else:
        names = None
    if names is not None:
        if args.json:
            print(json.dumps(names))
        else:
            for name in names:
                print(name)
        return 0
    linked = nb.repo.linked_attachments(args.content_links)
    present = nb.repo.attachments()
    if args.json:
        print(json.dumps({a: linked.get(a, []) for a in sorted(set(present).union(linked))}))
        return 0
    data = [('Attachment', 'Present', 'Notes')]
    for name in sorted(set(present).union(linked)):
        data.append((name, 'yes' if name in present else 'no', '\n'.join(str(t) for t in linked.get(name, []))))
    print(AsciiTable(data).table)
    return 0


def _export(args, nb: Notable) -> int:
    nb.export(args.name[0], args.output[0])
    return 0


def argparser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser()
    parser.set_defaults(func=None)
    parser.add_argument('--debug', action='store_true', help='Log debugging output to stderr.')

    subs = parser.add_subparsers(title='Commands')

    p_list = subs.add_parser('list', help='List active notes, sorted by title.')
    p_list.add_argument('-n', '--notebook', action='append',
                        help='Only notes in this notebook. May be repeated; notes must be in all of them.')
    p_list.add_argument('-t', '--tag', action='append',
                        help='Only notes with this tag. May be repeated; notes must have all of them.')
    p_list.add_argument('-s', '--title', help='Only notes whose title matches this regular expression (any case).')
    p_list.add_argument('-j', '--json', action='store_true', help='Output as JSON.')
    p_list.set_defaults(func=_list)

    p_q = subs.add_parser(
        'query',
        help='Query for notes. For full query syntax, see the documentation of '
             'notable.models.NoteQuery.parse - an example query is "tag:foo notebook:Work sort:-modified".')
    p_q.add_argument('query', nargs='?', help='Query string. If omitted, the query matches all active notes.')
    p_q.add_argument('-j', '--json', action='store_true', help='Output as JSON.')
    p_q.set_defaults(func=_query)

    p_show = subs.add_parser('show', help='Show the metadata and content of a note.')
    p_show.add_argument('name', nargs=1, help='File name of the note, e.g. "Apple.md".')
    p_show.add_argument('-j', '--json', action='store_true', help='Output as JSON.')
    p_show.set_defaults(func=_show)

    p_new = subs.add_parser('new', help='Create a new note. The file name is derived from the title.')
    p_new.add_argument('title', nargs=1)
    p_new.add_argument('-c', '--content', nargs=1, help='Initial content.')
    p_new.add_argument('-t', '--tags', action='append', help='Comma-separated list of tags.')
    p_new.add_argument('-n', '--notebooks', action='append', help='Comma-separated list of notebooks.')
    p_new.set_defaults(func=_new)

    p_change = subs.add_parser('change', help='Update metadata of the specified notes.')
    p_change.add_argument('names', nargs='+', help='File names of the notes to update.')
    p_change.add_argument('-a', '--add-tags', action='append',
                          help='Comma-separated list of tags to add (if not already present).')
    p_change.add_argument('-d', '--del-tags', action='append',
                          help='Comma-separated list of tags to remove (if present).')
    p_change.add_argument('--add-notebooks', action='append',
                          help='Comma-separated list of notebooks to add the notes to.')
    p_change.add_argument('--del-notebooks', action='append',
                          help='Comma-separated list of notebooks to remove the notes from.')
    p_change.add_argument('--title', nargs=1, help='New title for the notes.')
    p_change.set_defaults(func=_change)

    p_backfill = subs.add_parser(
        'backfill',
        help='Backfill missing metadata. Notes whose headers lack a title, created or modified value are '
             'rewritten with the defaults: the title from the file name and timestamps from the file\'s '
             'modification time. Errors are printed but do not result in a nonzero return status.')
    p_backfill.set_defaults(func=_backfill)

    p_tags = subs.add_parser('tags', help='Show a list of tags and the number of active notes that have each tag.')
    p_tags.add_argument('-j', '--json', action='store_true', help='Output as JSON.')
    p_tags.set_defaults(func=_tags)

    p_nbs = subs.add_parser('notebooks', help='Show a list of notebooks and the number of active notes in each.')
    p_nbs.add_argument('-j', '--json', action='store_true', help='Output as JSON.')
    p_nbs.set_defaults(func=_notebooks)

    p_att = subs.add_parser('attachments', help='Show attachments and the notes that reference them.')
    p_att_which = p_att.add_mutually_exclusive_group()
    p_att_which.add_argument('--orphaned', action='store_true',
                             help='Only list attachment files that no note references.')
    p_att_which.add_argument('--missing', action='store_true',
                             help='Only list referenced attachments that have no file.')
    p_att.add_argument('-l', '--content-links', action='store_true',
                       help='Also count @attachment/ links in note bodies as references (slower).')
    p_att.add_argument('-j', '--json', action='store_true', help='Output as JSON.')
    p_att.set_defaults(func=_attachments)

    p_export = subs.add_parser(
        'export',
        help='Render a note with the configured renderer (Pandoc by default). The first top-level heading '
             'becomes the document title.')
    p_export.add_argument('name', nargs=1, help='File name of the note.')
    p_export.add_argument('output', nargs=1, help='Output file; its extension usually selects the format.')
    p_export.set_defaults(func=_export)

    return parser


def main(args=None) -> int:
    """Runs the tool and returns its exit code.

    args may be an array of string command-line arguments; if absent,
    the process's arguments are used.
    """
    parser = argparser()
    args = parser.parse_args(args)
    if args.debug:
        logging.basicConfig(level=logging.DEBUG)
    if not args.func:
        parser.print_help()
        return 1
    with Notable.for_user() as nb:
        return args.func(args, nb)
