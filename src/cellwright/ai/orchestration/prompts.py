"""System instructions for agent and planning modes."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

__all__ = ["AGENT_SYSTEM_PROMPT", "PLAN_SYSTEM_PROMPT", "build_instructions"]

AGENT_SYSTEM_PROMPT = """You are a workspace assistant that builds and edits spreadsheets and documents.

## Tools
- Spreadsheets: create_spreadsheet, update_cells, add_row, delete_row, insert_formula,
  format_cells, merge_cells, set_column_width, set_row_height, get_spreadsheet_summary.
- Documents: create_document, update_document, get_document_content.
- Native capabilities (web search, code interpreter, file search) appear when available.

## Workflow
1. Read before you modify: call get_spreadsheet_summary or get_document_content first.
2. Batch independent operations in the same step.
3. Research first when facts are needed, then create the artifact.

## Style
- Be concise; use Markdown.
- Bold spreadsheet headers and size columns to fit.
- Cite source URLs when you use web results.
- When a tool returns an error, say so and try an alternative."""

PLAN_SYSTEM_PROMPT = """You are in PLANNING MODE. Do not execute anything and do not reply with plain text.

Create a plan and call the ExitPlanMode tool with it. The plan is markdown:

## Summary
One sentence describing the outcome.

## Steps
1. **Action** - what will be done and the expected result
2. ...

## Notes
- Important considerations

Tools available later for execution: spreadsheet tools (create_spreadsheet, update_cells,
insert_formula, format_cells, merge_cells, add_row, delete_row), document tools
(create_document, update_document) and native web search or code interpreter."""


def _date_block(now: datetime) -> str:
    return (
        "## Current date\n"
        f"Today is {now.strftime('%A, %B %d, %Y')} ({now.strftime('%Y-%m-%d')}), "
        f"local time {now.strftime('%H:%M')}."
    )


def _knowledge_base_block(file_names: Sequence[str]) -> str:
    listing = "\n".join(f"- {name}" for name in file_names)
    return (
        "## Knowledge base\n"
        "The user uploaded these files; answer questions about them with file search "
        "before using any other source:\n"
        f"{listing}"
    )


def build_instructions(
    mode: str,
    *,
    knowledge_base_files: Sequence[str] = (),
    now: datetime | None = None,
) -> str:
    base = PLAN_SYSTEM_PROMPT if mode == "plan" else AGENT_SYSTEM_PROMPT
    blocks = [base, _date_block(now or datetime.now())]
    if knowledge_base_files and mode != "plan":
        blocks.append(_knowledge_base_block(knowledge_base_files))
    return "\n\n".join(blocks)
