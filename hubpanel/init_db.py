"""
Initialize the metadata database with default data.
This creates the default admin user if it doesn't exist.
"""

import logging
from sqlmodel import Session, select

from .config import Config
from .database import get_engine
from .models import User
from .security import hash_password


def init_default_admin():
    """
    Create the default admin user if it doesn't exist.
    Credentials come from HUBPANEL_ADMIN_USERNAME / HUBPANEL_ADMIN_PASSWORD.
    """
    with Session(get_engine()) as session:
        admin = session.exec(select(User).where(User.username == Config.ADMIN_USERNAME)).first()

        if not admin:
            logging.info(f"Creating default admin user '{Config.ADMIN_USERNAME}'")
            admin = User(
                username=Config.ADMIN_USERNAME,
                hashed_password=hash_password(Config.ADMIN_PASSWORD),
            )
            session.add(admin)
            session.commit()
            logging.info("Default admin user created successfully")
        else:
            logging.info("Default admin user already exists")


def init_db():
    """
    Initialize the database with default data.
    """
    init_default_admin()
