"""Manages a Notable data directory: Markdown notes with YAML metadata headers, plus their attachments.

If you installed via ``pip``, run ``notable -h`` to get help.

To use the Python API, look at :class:`notable.api.Notable`, or :class:`notable.repo.Repository` for the
lower-level queries.
"""
