"""compiletrace: diagnostic reports from structured compiler trace logs."""

__version__ = "0.2.0"
