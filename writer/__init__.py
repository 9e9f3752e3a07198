from writer.workbook_writer import write_outcomes

__all__ = ["write_outcomes"]
