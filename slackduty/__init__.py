"""Keep Slack usergroups in sync with PagerDuty rosters."""

__version__ = "0.3.0"
