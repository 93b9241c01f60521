# ============================================================================
# CALLBACK OUTPUT SCHEMAS
# ============================================================================
# STATUS: Service - Advisory output validation
# PURPOSE: Expected output shapes for specific executors
# CREATED: 19 OCT 2026
# ============================================================================
"""
Callback Output Schemas

Validation here is advisory: a mismatch is reported, never enforced.
Extra keys are always allowed.
"""

from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, ValidationError


class ResearchSource(BaseModel):
    title: str
    url: str


class ResearchFramework(BaseModel):
    name: str
    description: Optional[str] = None
    link: Optional[str] = None
    what_it_is: Optional[str] = None
    strengths: Optional[List[str]] = None
    good_for: Optional[List[str]] = None


class SelectionGuideEntry(BaseModel):
    pick: str
    if_you_need: str


class ResearchOutput(BaseModel):
    """Output reported by claw:research."""
    model_config = ConfigDict(extra="allow")

    summary: str
    sources: Optional[List[ResearchSource]] = None
    frameworks: Optional[List[ResearchFramework]] = None
    key_trends_2024: Optional[List[str]] = None
    selection_guide: Optional[List[SelectionGuideEntry]] = None
    generated_at: Optional[str] = None
    topic: Optional[str] = None
    depth: Optional[str] = None
    notes: Optional[str] = None


OUTPUT_SCHEMAS: Dict[str, Type[BaseModel]] = {
    "claw:research": ResearchOutput,
}


def validate_output(executor: str, output: Dict[str, Any]) -> Optional[List[Dict[str, Any]]]:
    """
    Check output against the executor's expected shape.

    Returns:
        None if there is no schema for the executor or the output matches,
        otherwise a JSON-safe list of issues {loc, msg, type}
    """
    schema = OUTPUT_SCHEMAS.get(executor)
    if schema is None:
        return None

    try:
        schema.model_validate(output)
    except ValidationError as e:
        return [
            {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
            for err in e.errors()
        ]
    return None


__all__ = ["ResearchOutput", "OUTPUT_SCHEMAS", "validate_output"]
