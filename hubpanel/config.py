import os
import secrets
from typing import Dict, List, Optional


SUPPORTED_DB_TYPES = ["postgresql", "mysql", "mariadb", "supabase"]


class Config:
    """Configuration management for HubPanel."""

    # Console metadata database (users, activity log, stored connections)
    DB_URL: str = os.getenv("HUBPANEL_DB_URL", "sqlite:///./hubpanel.db")

    # Default admin account created on startup
    ADMIN_USERNAME: str = os.getenv("HUBPANEL_ADMIN_USERNAME", "admin")
    ADMIN_PASSWORD: str = os.getenv("HUBPANEL_ADMIN_PASSWORD", "HubPanel")

    # Comma-separated list of usernames allowed to sign in (empty allows everyone)
    AUTHORIZED_USERS: str = os.getenv("AUTHORIZED_USERS", "")

    # Bearer token signing; without a key sessions end when the process restarts
    SESSION_SECRET_KEY: Optional[str] = os.getenv("HUBPANEL_SECRET_KEY")
    SESSION_TTL_MINUTES: int = int(os.getenv("HUBPANEL_SESSION_TTL_MINUTES", "60"))

    # Managed database driver configuration
    DRIVER_POOL_SIZE: int = int(os.getenv("HUBPANEL_DRIVER_POOL_SIZE", "10"))
    DRIVER_MAX_OVERFLOW: int = int(os.getenv("HUBPANEL_DRIVER_MAX_OVERFLOW", "0"))
    DRIVER_POOL_RECYCLE: int = int(os.getenv("HUBPANEL_DRIVER_POOL_RECYCLE", "1800"))
    CONNECT_TIMEOUT: int = int(os.getenv("HUBPANEL_CONNECT_TIMEOUT", "5"))
    APPLICATION_NAME: str = os.getenv("HUBPANEL_APPLICATION_NAME", "HubPanel")
    PG_SSL_MODE: Optional[str] = os.getenv("HUBPANEL_PG_SSL_MODE", "prefer")
    MYSQL_CHARSET: str = os.getenv("HUBPANEL_MYSQL_CHARSET", "utf8mb4")

    # Introspection
    DEFAULT_SCHEMA: str = os.getenv("HUBPANEL_DEFAULT_SCHEMA", "public")

    # Activity log paging
    LOG_QUERY_DEFAULT_LIMIT: int = 50
    LOG_QUERY_MAX_LIMIT: int = int(os.getenv("HUBPANEL_LOG_MAX_LIMIT", "500"))
    # Largest offset the metadata database accepts (signed 64-bit)
    LOG_QUERY_MAX_OFFSET: int = 2**63 - 1

    # Table data browsing
    TABLE_DATA_DEFAULT_PAGE_SIZE: int = 50
    TABLE_DATA_MAX_PAGE_SIZE: int = int(os.getenv("HUBPANEL_TABLE_DATA_MAX_PAGE_SIZE", "500"))

    # Backups
    BACKUP_ROW_LIMIT: int = int(os.getenv("HUBPANEL_BACKUP_ROW_LIMIT", "50000"))

    # Number of DB_<i>_* slots scanned for managed databases
    MAX_ENV_DATABASES: int = 10

    @classmethod
    def get_database_url(cls) -> str:
        """Get the metadata database URL."""
        return cls.DB_URL

    @classmethod
    def get_connect_timeout(cls) -> int:
        """Get the connection timeout ceiling in seconds."""
        return cls.CONNECT_TIMEOUT

    @classmethod
    def get_session_secret(cls) -> str:
        """Get the token signing key, generating one for this process if unset."""
        if not cls.SESSION_SECRET_KEY:
            cls.SESSION_SECRET_KEY = secrets.token_hex(32)
        return cls.SESSION_SECRET_KEY

    @classmethod
    def get_authorized_users(cls) -> List[str]:
        """Get the sign-in allow-list, lowercased."""
        return [u.strip().lower() for u in cls.AUTHORIZED_USERS.split(",") if u.strip()]

    @classmethod
    def get_env_database_configs(cls) -> List[Dict[str, Optional[str]]]:
        """
        Read managed database configurations from environment variables.

        Expects DB_<i>_NAME, DB_<i>_HOST, DB_<i>_PORT, DB_<i>_USER,
        DB_<i>_PASSWORD and DB_<i>_TYPE for i from 1 to 10. Entries missing
        a name, host, user or password are skipped.

        Returns:
            List of raw configuration dictionaries in slot order
        """
        configs = []

        for i in range(1, cls.MAX_ENV_DATABASES + 1):
            name = os.getenv(f"DB_{i}_NAME")
            host = os.getenv(f"DB_{i}_HOST")
            port = os.getenv(f"DB_{i}_PORT")
            user = os.getenv(f"DB_{i}_USER")
            password = os.getenv(f"DB_{i}_PASSWORD")
            db_type = os.getenv(f"DB_{i}_TYPE", "postgresql").lower()

            if not (name and host and user and password):
                continue

            if db_type not in SUPPORTED_DB_TYPES:
                db_type = "postgresql"

            if port:
                port_value = int(port)
            else:
                port_value = 3306 if db_type in ("mysql", "mariadb") else 5432

            configs.append({
                "name": name,
                "host": host,
                "port": port_value,
                "user": user,
                "password": password,
                "database": name,
                "type": db_type,
                "source": "env",
            })

        return configs
