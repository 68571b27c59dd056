"""
CloudVote - replicated two-option voting service.

Every pod records votes into one shared PostgreSQL store and serves a
live tally plus the most recent audit entries.
"""

__version__ = '1.0.0'
