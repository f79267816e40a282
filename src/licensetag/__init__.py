"""licensetag: decide which institutions may see a bibliographic record."""

__version__ = "0.3.0"
