"""Spreadsheet, document and planning tool declarations."""

from __future__ import annotations

from typing import Mapping

from .schema import (
    ArraySchema,
    BooleanSchema,
    EnumSchema,
    NullSchema,
    NumberSchema,
    ObjectSchema,
    OptionalSchema,
    StringSchema,
    UnionSchema,
)
from .types import ToolCategory, ToolSpec

__all__ = ["SPREADSHEET_TOOLS", "DOCUMENT_TOOLS", "PLAN_TOOLS", "EXIT_PLAN_TOOL", "agent_tool_specs"]

EXIT_PLAN_TOOL = "ExitPlanMode"

_ARTIFACT_ID = StringSchema("ID of the spreadsheet artifact")
_CELL_VALUE = UnionSchema(
    [StringSchema(), NumberSchema(), BooleanSchema(), NullSchema()],
    description="Cell value",
)
_HEX = "as hex (e.g., #FF0000)"


def _spec(name: str, description: str, properties: Mapping, *, category: str, is_write: bool = True) -> ToolSpec:
    return ToolSpec(
        name=name,
        description=description,
        schema=ObjectSchema(dict(properties)),
        category=category,
        is_write=is_write,
    )


_FORMAT = ObjectSchema(
    {
        "bold": OptionalSchema(BooleanSchema("Make text bold")),
        "italic": OptionalSchema(BooleanSchema("Make text italic")),
        "underline": OptionalSchema(BooleanSchema("Underline text")),
        "strikethrough": OptionalSchema(BooleanSchema("Strikethrough text")),
        "fontSize": OptionalSchema(NumberSchema("Font size in points (e.g., 12, 14, 18)")),
        "fontColor": OptionalSchema(StringSchema(f"Text color {_HEX}")),
        "fontFamily": OptionalSchema(StringSchema("Font family name (e.g., Arial)")),
        "backgroundColor": OptionalSchema(StringSchema(f"Background color {_HEX}")),
        "horizontalAlign": OptionalSchema(
            EnumSchema(["left", "center", "right"], "Horizontal text alignment")
        ),
        "verticalAlign": OptionalSchema(EnumSchema(["top", "middle", "bottom"], "Vertical text alignment")),
        "textWrap": OptionalSchema(BooleanSchema("Enable text wrapping in cells")),
        "numberFormat": OptionalSchema(
            StringSchema("Number format pattern (e.g., #,##0.00, 0.00%, $#,##0.00)")
        ),
        "border": OptionalSchema(
            ObjectSchema(
                {
                    "style": OptionalSchema(EnumSchema(["thin", "medium", "thick", "dashed", "dotted"])),
                    "color": OptionalSchema(StringSchema(f"Border color {_HEX}")),
                    "sides": OptionalSchema(
                        ArraySchema(EnumSchema(["top", "bottom", "left", "right", "all"])),
                        description="Which sides to apply border",
                    ),
                }
            ),
            description="Border styling options",
        ),
    },
    description="Formatting options to apply",
)

_S = ToolCategory.SPREADSHEET

SPREADSHEET_TOOLS: tuple[ToolSpec, ...] = (
    _spec(
        "create_spreadsheet",
        "Create a new spreadsheet with column headers and optional initial data.",
        {
            "name": StringSchema("Name of the spreadsheet"),
            "columns": ArraySchema(StringSchema(), "Column headers (array of strings)"),
            "rows": OptionalSchema(
                StringSchema(
                    "JSON string of a 2D array of initial rows, e.g. "
                    '[["John", 25, true], ["Jane", 30, false]]; null when no initial data is needed'
                )
            ),
        },
        category=_S,
    ),
    _spec(
        "update_cells",
        "Update multiple cells in a spreadsheet",
        {
            "artifactId": _ARTIFACT_ID,
            "updates": ArraySchema(
                ObjectSchema(
                    {
                        "row": NumberSchema("Row index (0-based, 0 is header)"),
                        "column": NumberSchema("Column index (0-based)"),
                        "value": _CELL_VALUE,
                    }
                ),
                "Array of cell updates",
            ),
        },
        category=_S,
    ),
    _spec(
        "insert_formula",
        "Insert a formula into a spreadsheet cell",
        {
            "artifactId": _ARTIFACT_ID,
            "cell": StringSchema("Cell reference (e.g., A1, B2)"),
            "formula": StringSchema("Excel-style formula (e.g., =SUM(A1:A10))"),
        },
        category=_S,
    ),
    _spec(
        "format_cells",
        "Apply formatting to a range of cells: fonts, colors, alignment, borders and number formats",
        {
            "artifactId": _ARTIFACT_ID,
            "range": StringSchema("Cell range (e.g., A1:B5 or just A1 for single cell)"),
            "format": _FORMAT,
        },
        category=_S,
    ),
    _spec(
        "merge_cells",
        "Merge a range of cells into one",
        {"artifactId": _ARTIFACT_ID, "range": StringSchema("Cell range to merge (e.g., A1:C1)")},
        category=_S,
    ),
    _spec(
        "set_column_width",
        "Set the width of one or more columns",
        {
            "artifactId": _ARTIFACT_ID,
            "columns": ArraySchema(StringSchema(), 'Column letters (e.g., ["A", "B", "C"])'),
            "width": NumberSchema("Width in pixels (e.g., 100, 150, 200)"),
        },
        category=_S,
    ),
    _spec(
        "set_row_height",
        "Set the height of one or more rows",
        {
            "artifactId": _ARTIFACT_ID,
            "rows": ArraySchema(NumberSchema(), "Row numbers (1-based, e.g., [1, 2, 3])"),
            "height": NumberSchema("Height in pixels (e.g., 25, 40, 60)"),
        },
        category=_S,
    ),
    _spec(
        "add_row",
        "Add a new row of data to an existing spreadsheet",
        {
            "artifactId": _ARTIFACT_ID,
            "values": ArraySchema(_CELL_VALUE, "Values for the new row"),
            "position": OptionalSchema(
                EnumSchema(["append", "prepend"]),
                default="append",
                description="Where to add the row (defaults to append)",
            ),
        },
        category=_S,
    ),
    _spec(
        "delete_row",
        "Delete one or more rows from a spreadsheet",
        {
            "artifactId": _ARTIFACT_ID,
            "rows": ArraySchema(NumberSchema(), "Row numbers to delete (1-based, header is row 1)"),
        },
        category=_S,
    ),
    _spec(
        "get_spreadsheet_summary",
        "Get a summary of spreadsheet contents including headers, row count, and sample data. "
        "Use this to understand the current state before making modifications.",
        {
            "artifactId": _ARTIFACT_ID,
            "maxRows": OptionalSchema(
                NumberSchema(), default=10, description="Maximum rows to include in summary (default 10)"
            ),
        },
        category=_S,
        is_write=False,
    ),
)

_D = ToolCategory.DOCUMENT

DOCUMENT_TOOLS: tuple[ToolSpec, ...] = (
    _spec(
        "create_document",
        "Create a new markdown document artifact. Use this when the user asks for a document, "
        "report, article, or any other text-based content.",
        {
            "name": StringSchema("Name/title of the document"),
            "content": StringSchema("Markdown content of the document"),
            "description": OptionalSchema(StringSchema("Brief description of what the document is about")),
        },
        category=_D,
    ),
    _spec(
        "update_document",
        "Update an existing document's content.",
        {
            "artifactId": StringSchema("ID of the document artifact to update"),
            "content": StringSchema("New markdown content"),
            "appendMode": OptionalSchema(
                BooleanSchema(), default=False, description="If true, append content instead of replacing"
            ),
        },
        category=_D,
    ),
    _spec(
        "get_document_content",
        "Get the content of an existing document. Use this to read a document before modifying it.",
        {"artifactId": StringSchema("ID of the document artifact")},
        category=_D,
        is_write=False,
    ),
)

PLAN_TOOLS: tuple[ToolSpec, ...] = (
    _spec(
        EXIT_PLAN_TOOL,
        "Call this tool when you have finished creating the execution plan. "
        "Include the complete plan as markdown with numbered steps.",
        {
            "plan": StringSchema(
                "The complete execution plan in markdown format with numbered steps. "
                "Each step should describe what will be done."
            )
        },
        category=ToolCategory.PLAN,
        is_write=False,
    ),
)


def agent_tool_specs() -> tuple[ToolSpec, ...]:
    return SPREADSHEET_TOOLS + DOCUMENT_TOOLS
