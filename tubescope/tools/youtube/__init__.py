"""YouTube transcript acquisition.

Caption tracks are resolved through a strategy ladder (innertube player
API, then the watch page), cue files are fetched through a format ladder
(json3, then XML), and every attempt is recorded in ``Diagnostics``.
"""
