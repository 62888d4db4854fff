"""Prepares notes for an external document renderer such as Pandoc, and runs it."""

import copy
import re
import subprocess
from typing import Any, Dict, Iterable, List, Tuple

from notable.errors import ExportError
from notable.note import HEADER_DELIMITER, Note, dump_yaml

FENCED_CODE_RE = re.compile(r'(?ms)^\s*```.*?^\s*```[^\n]*$')
ATX_HEADING_RE = re.compile(r'(?m)^(#{1,6})([ \t]+.*?)?[ \t]*$')
TITLE_HEADING_RE = re.compile(r'(?m)^#[ \t]+(.+?)[ \t#]*(\n|$)')


def _split(doc: str) -> List[Tuple[bool, str]]:
    result = []
    prev = 0
    for match in re.finditer(FENCED_CODE_RE, doc):
        start, end = match.span()
        result.append((True, doc[prev:start]))
        result.append((False, match.group()))
        prev = end
    result.append((True, doc[prev:]))
    return result


def _demote(part: str) -> str:
    def replace(match):
        level = min(len(match.group(1)) + 1, 6)
        return '#' * level + (match.group(2) or '')
    return ATX_HEADING_RE.sub(replace, part)


def prepare_export(note: Note) -> Tuple[Dict[str, Any], str]:
    """Returns the metadata and body to hand to a renderer.

    The first top-level heading (``# Heading``) becomes the ``title`` and is removed from the body. All other
    headings are demoted by one level, since the title now sits above them; level 6 is the deepest Markdown
    allows, so those headings stay at level 6. Fenced code blocks are left alone.
    """
    meta = copy.deepcopy(note.meta)
    parts = _split(note.read_content())
    title_found = False
    result = []
    for parsable, part in parts:
        if parsable:
            if not title_found:
                match = TITLE_HEADING_RE.search(part)
                if match:
                    meta['title'] = match.group(1)
                    part = part[:match.start()] + part[match.end():]
                    title_found = True
            part = _demote(part)
        result.append(part)
    return meta, ''.join(result)


def render_export_document(meta: Dict[str, Any], body: str) -> str:
    """Returns a Markdown document with a YAML metadata block, in the form Pandoc reads."""
    return f'{dump_yaml(meta, explicit_start=True)}{HEADER_DELIMITER}\n\n{body}'


def export(note: Note, output: str, renderer: str = 'pandoc', args: Iterable[str] = ()) -> None:
    """Renders the note into the output file using the external renderer.

    Raises :exc:`notable.errors.ExportError` if the renderer cannot be started or exits with an error.
    """
    meta, body = prepare_export(note)
    document = render_export_document(meta, body)
    command = [renderer, '--standalone', '--from', 'markdown', '--output', output, *args]
    try:
        subprocess.run(command, input=document, text=True, encoding='utf-8', check=True,
                       stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except FileNotFoundError as e:
        raise ExportError(f'Renderer not found: {renderer}') from e
    except subprocess.CalledProcessError as e:
        raise ExportError(f'{renderer} failed with exit status {e.returncode}: {e.stderr.strip()}') from e
