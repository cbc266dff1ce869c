from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Every shopledger table inherits from this."""
    pass
