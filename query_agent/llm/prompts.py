"""
System Prompts for the Query Agent
Contains the step-by-step instructions and the exact output contract per mode.
"""

from ..models import OutputMode

DEFAULT_SCHEMA_TOOL = "getTablesInfoPostgres"
DEFAULT_QUERY_TOOL = "queryDatabasePostgres"

_TABLE_FORMAT = """{
  "success": true,
  "type": "table",
  "data": [...rows from result...],
  "columns": [...column names...]
}"""

_CHART_FORMAT = """{
  "success": true,
  "type": "chart",
  "data": [...rows from result...],
  "columns": [...column names...],
  "chartType": "bar" | "line" | "pie",
  "xAxis": "column_name_for_x_axis",
  "yAxis": "column_name_for_y_axis"
}"""

_FAILURE_FORMAT = '{"success":false,"error":"error message"}'

OUTPUT_REPAIR_PROMPT = (
    "Your previous reply was not a valid result object. "
    "Reply again with ONLY the JSON object in the exact format from your instructions, "
    "with no markdown, code fences or additional text."
)


class SystemPrompts:
    """System instructions handed to the model, one template per output mode."""

    def __init__(self, schema_tool: str = DEFAULT_SCHEMA_TOOL, query_tool: str = DEFAULT_QUERY_TOOL):
        self.schema_tool = schema_tool
        self.query_tool = query_tool

    def get_prompt(self, mode: OutputMode) -> str:
        if mode == OutputMode.CHART:
            return self.get_chart_prompt()
        return self.get_table_prompt()

    def get_table_prompt(self) -> str:
        return self._render(
            intro="You are an SQL query assistant.",
            convert_step=(
                "Convert the user's request into proper SQL, using the correct "
                "table and column names based on step 1"
            ),
            success_format=_TABLE_FORMAT,
        )

    def get_chart_prompt(self) -> str:
        return self._render(
            intro="You are an SQL query assistant specialized in generating data for charts.",
            convert_step=(
                "Convert the user's request into proper SQL, using only the table and "
                "column names from step 1 and focusing on data suitable for visualization"
            ),
            success_format=_CHART_FORMAT,
        )

    def _render(self, intro: str, convert_step: str, success_format: str) -> str:
        return f"""{intro} Follow these steps exactly in order:

1. FIRST call the {self.schema_tool} tool to retrieve all available tables and their schemas
2. Analyze the table schemas to understand relationships and available columns
3. {convert_step}
4. Consider if JOINs are needed based on the relationships between tables
5. Execute the SQL query using the {self.query_tool} tool
6. If the query fails, fix any table or column name issues and retry once
7. When the query succeeds, return a JSON object in this exact format:
{success_format}
8. If all attempts fail, return: {_FAILURE_FORMAT}

IMPORTANT: Output only the JSON object, no markdown or additional text."""


def compose_system_prompt(
    mode: OutputMode,
    schema_tool: str = DEFAULT_SCHEMA_TOOL,
    query_tool: str = DEFAULT_QUERY_TOOL,
) -> str:
    return SystemPrompts(schema_tool, query_tool).get_prompt(OutputMode(mode))
