from pydantic import BaseModel
from openpyxl.utils import get_column_letter


class CellRef(BaseModel):
    """A 1-based (row, col) cell position."""

    row: int
    col: int

    model_config = {"frozen": True}

    @property
    def key(self) -> tuple:
        return (self.row, self.col)

    @property
    def a1(self) -> str:
        return f"{get_column_letter(self.col)}{self.row}"
