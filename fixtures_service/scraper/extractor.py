"""
Structured extraction from the rendered origin page.

Pure functions: no network, no store, no suspension. The upstream markup
is not schema-guaranteed, so malformed rows are skipped rather than raised.
"""
from typing import List

from bs4 import BeautifulSoup
from bs4.element import Tag

from fixtures_service.schemas import ScheduleRecord, WeekOption

FIXTURE_ROW_SELECTOR = "#table tbody tr"
WEEK_OPTION_SELECTOR = "select option"

# Column positions in the results table (index 2 holds the "vs" column)
COL_NUMBER = 0
COL_HOME = 1
COL_AWAY = 3
COL_RESULT = 4
COL_STATUS = 5


def _cell_text(cells: List[Tag], index: int) -> str:
    """Trimmed text of a cell, or '' when the row is too short."""
    if index >= len(cells):
        return ""
    return cells[index].get_text().strip()


def extract_records(html: str) -> List[ScheduleRecord]:
    """Parse fixture rows from the results table."""
    soup = BeautifulSoup(html or "", "html.parser")
    records = []

    for row in soup.select(FIXTURE_ROW_SELECTOR):
        cells = row.find_all("td")
        number = _cell_text(cells, COL_NUMBER)
        home = _cell_text(cells, COL_HOME)
        away = _cell_text(cells, COL_AWAY)

        if not (number and home and away):
            continue

        records.append(ScheduleRecord(
            number=number,
            home=home,
            away=away,
            result=_cell_text(cells, COL_RESULT),
            status=_cell_text(cells, COL_STATUS),
        ))

    return records


def extract_week_options(html: str) -> List[WeekOption]:
    """
    Parse the week dropdown.

    Only options whose value looks like a date (contains '-') are kept;
    placeholders such as "Select week" are dropped.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    weeks = []

    for option in soup.select(WEEK_OPTION_SELECTOR):
        value = option.get("value")
        if value and "-" in value:
            weeks.append(WeekOption(date=value, label=option.get_text().strip()))

    return weeks
