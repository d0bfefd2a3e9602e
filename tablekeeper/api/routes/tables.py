"""Published league table endpoints."""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from tablekeeper.api.dependencies import get_automation
from tablekeeper.services.automation import TableAutomation

router = APIRouter(prefix="/api/tables", tags=["tables"])


class TableEntryItem(BaseModel):
    """One row of a league table."""

    position: int
    team_id: int | str
    team_name: str | None
    played: int
    won: int
    drawn: int
    lost: int
    goals_for: int
    goals_against: int
    goal_difference: int
    points: int


class TableResponse(BaseModel):
    """Published table for a league and season."""

    league_id: int
    season_id: int
    entries: list[TableEntryItem]


@router.get("/{league_id}/{season_id}", response_model=TableResponse)
async def get_table(
    league_id: int,
    season_id: int,
    automation: TableAutomation = Depends(get_automation),
):
    """Get the currently published table, ordered by position."""
    table = await automation.get_table(league_id, season_id)
    if table is None:
        raise HTTPException(
            status_code=404,
            detail=f"No table for league {league_id}, season {season_id}",
        )
    return TableResponse(
        league_id=league_id,
        season_id=season_id,
        entries=[TableEntryItem(**entry.to_dict()) for entry in table.entries],
    )
