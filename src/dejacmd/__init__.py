"""
dejacmd - Shell command history recorded to local and central SQL databases.

dejacmd normalizes bash and zsh history (and a foreign SQLite "recent"
history file) into one schema and writes every entry to up to two
independently configured databases:
- A local store (SQLite by default)
- An optional central store (SQLite, PostgreSQL, MySQL or SQL Server)

Database passwords are kept AES-256-GCM encrypted in the settings file.

Example usage:
    $ dejacmd import ~/.bash_history
    $ dejacmd search "rsync -avz" -n 10
    $ dejacmd export history.zsh -E zsh
    $ dejacmd-log "$(history 1)" -s $?
"""

__version__ = "0.1.0"
__author__ = "dejacmd Contributors"

__all__ = [
    "__version__",
    "__author__",
]
