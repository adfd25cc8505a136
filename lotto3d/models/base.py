from sqlalchemy.orm import DeclarativeBase
from lotto3d.db.metadata import metadata_obj


class Base(DeclarativeBase):
    metadata = metadata_obj
