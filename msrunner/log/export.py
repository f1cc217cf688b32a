import sqlite3
import logging
import pandas as pd
from pathlib import Path
from typing import Any, Dict, Optional
from openpyxl.styles import PatternFill, Font
from openpyxl.styles.numbers import BUILTIN_FORMATS

log = logging.getLogger(__name__)

HEADER_FONT = Font(bold=True, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="4F81BD", end_color="4F81BD", fill_type="solid")
YELLOW_FILL = PatternFill(start_color="FFFFA0", end_color="FFFFA0", fill_type="solid")
RED_FILL = PatternFill(start_color="FF9696", end_color="FF9696", fill_type="solid")
BLUE_FILL = PatternFill(start_color="E6E6FF", end_color="E6E6FF", fill_type="solid")
GREEN_FILL = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")
TEXT_FORMAT = BUILTIN_FORMATS[49]  # '@'

LOG_QUERY = """
SELECT
    datetime(timestamp, 'unixepoch', 'localtime') as Timestamp,
    level as 'Log Level',
    module as 'Module',
    funcName || ':' || lineno as 'Func Source',
    message as 'Message'
FROM logs
ORDER BY id ASC;
"""

RUN_QUERY = """
SELECT
    datetime(timestamp, 'unixepoch', 'localtime') as Timestamp,
    job as 'Job',
    tool as 'Tool',
    stage as 'Stage',
    outcome as 'Outcome',
    exit_code as 'Exit Code',
    progress as 'Progress',
    version as 'Version',
    elapsed_seconds as 'Elapsed (s)'
FROM tool_runs
ORDER BY id ASC;
"""


def escape_formula(value: Any) -> Any:
    """
    Prepends a single quote to a string if it starts with a character
    that Excel might interpret as a formula, to prevent formula injection.

    :param value: The value to check and potentially escape.
    :return: The escaped string or the original value if no escape was needed.
    """
    if isinstance(value, str) and value.startswith(('=', '-', '+', '@')):
        return f"'{value}"
    return value

def read_table(db_path: Path, query: str) -> Optional[pd.DataFrame]:
    """
    Run a query against the log database.

    :param db_path: The file path to the SQLite database.
    :param query: The SELECT statement to execute.
    :return: DataFrame with the result or None if an error occurred.
    """
    log.debug(f"Connecting to database: {db_path}")
    try:
        with sqlite3.connect(db_path) as con:
            return pd.read_sql_query(query, con)
    except (sqlite3.Error, pd.errors.DatabaseError) as e:
        log.error(f"An error occurred while reading the database: {e}")
        return None

def sanitize_data(df: pd.DataFrame) -> pd.DataFrame:
    """
    Sanitize text columns to prevent Excel formula injection.

    :param df: DataFrame read from the log database.
    :return: Sanitized DataFrame.
    """
    for col in df.columns:
        if df[col].dtype == object or pd.api.types.is_string_dtype(df[col].dtype):
            df[col] = df[col].apply(escape_formula)
    return df

def style_header(ws):
    for cell in ws[1]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL

def apply_row_styling(ws, key_col_idx: int, fill_map: Dict[str, PatternFill]):
    """
    Colour each row based on the value in one column.

    :param ws: Excel worksheet.
    :param key_col_idx: 1-based index of the column that selects the fill.
    :param fill_map: Mapping of column value to fill.
    """
    for row in ws.iter_rows(min_row=2, max_row=ws.max_row):
        fill_to_apply = fill_map.get(row[key_col_idx - 1].value)
        if fill_to_apply:
            for cell in row:
                cell.fill = fill_to_apply

        for cell in row[1:]:
            cell.number_format = TEXT_FORMAT

def adjust_column_widths(ws):
    column_widths = {}
    for row in ws.iter_rows():
        for i, cell in enumerate(row):
            if cell.value:
                column_widths[i] = max(column_widths.get(i, 0), len(str(cell.value)))

    for i, width in column_widths.items():
        ws.column_dimensions[ws.cell(row=1, column=i + 1).column_letter].width = min(width + 2, 120)

def write_to_excel(logs_df: pd.DataFrame, runs_df: Optional[pd.DataFrame], output_path: Path) -> bool:
    """
    Write the log and tool-run sheets to Excel with styling.

    :param logs_df: DataFrame with log entries.
    :param runs_df: DataFrame with tool runs, or None to skip the sheet.
    :param output_path: Path where Excel file will be saved.
    :return: True if successful, False otherwise.
    """
    log.info(f"Writing data to Excel file: {output_path}")
    level_fills = {
        'WARNING': YELLOW_FILL,
        'ERROR': RED_FILL,
        'CRITICAL': RED_FILL,
        'DEBUG': BLUE_FILL
    }
    outcome_fills = {
        'COMPLETED': GREEN_FILL,
        'ABORTED': YELLOW_FILL,
        'FAILED_EXIT_CODE': RED_FILL,
        'FAILED_TIMEOUT': RED_FILL,
        'FAILED_PARSE_INDICATED_ERROR': RED_FILL,
    }
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with pd.ExcelWriter(output_path, engine='openpyxl') as writer:
            logs_df.to_excel(writer, index=False, sheet_name='Logs')
            ws = writer.sheets['Logs']
            style_header(ws)
            apply_row_styling(ws, logs_df.columns.get_loc('Log Level') + 1, level_fills)
            adjust_column_widths(ws)

            if runs_df is not None and not runs_df.empty:
                runs_df.to_excel(writer, index=False, sheet_name='Tool Runs')
                ws = writer.sheets['Tool Runs']
                style_header(ws)
                apply_row_styling(ws, runs_df.columns.get_loc('Outcome') + 1, outcome_fills)
                adjust_column_widths(ws)

        log.info(f"Export successful. File saved to: {output_path.resolve()}")
        return True
    except (OSError, ValueError) as e:
        log.error(f"An error occurred while writing or styling the Excel file: {e}")
        return False

def export_logs_to_excel(db_path: Path, output_path: Path) -> bool:
    """
    Exports log entries and tool-run history from the SQLite database to a styled Excel file.

    :param db_path: The file path to the SQLite database.
    :param output_path: The file path where the Excel file will be saved.
    :return: True if a file was written.
    """
    if not db_path.exists():
        log.error(f"Error: Database file not found at '{db_path}'")
        return False

    logs_df = read_table(db_path, LOG_QUERY)
    if logs_df is None:
        return False

    if logs_df.empty:
        log.warning("No log entries to export.")
        return False
    log.info(f"Read {len(logs_df)} log entries from the database.")

    runs_df = read_table(db_path, RUN_QUERY)
    if runs_df is not None:
        runs_df = sanitize_data(runs_df)

    return write_to_excel(sanitize_data(logs_df), runs_df, output_path)
