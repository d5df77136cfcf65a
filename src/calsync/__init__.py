"""calsync: keeps local calendars consistent with Google Calendar and ICS imports."""

__version__ = "0.1.0"
