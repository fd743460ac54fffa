"""Errors raised while setting up an export."""


class ExportSetupError(Exception):
    """The shared Drive resources of an export could not be prepared.

    No table of the export has been dispatched when this is raised.
    """
