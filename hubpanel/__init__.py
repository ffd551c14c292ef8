"""
HubPanel: a web console for administering managed PostgreSQL, MySQL,
MariaDB and Supabase databases.
"""

__version__ = "1.0.0"
