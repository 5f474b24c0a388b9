"""teamcal: push organization events into members' Google Calendars."""

__version__ = "0.1.0"
